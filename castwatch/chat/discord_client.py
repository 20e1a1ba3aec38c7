"""Minimal Discord REST client (bot token auth).

Only what the announcer needs: look up a channel, open a thread, post
messages, and read recent channel messages for operator commands.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import requests

logger = logging.getLogger(__name__)

API_BASE = "https://discord.com/api/v10"
USER_AGENT = "DiscordBot (https://github.com/castwatch/castwatch, 1.0)"

# Discord limits
MAX_THREAD_NAME_LENGTH = 100
MAX_MESSAGE_LENGTH = 2000
MAX_AUTO_ARCHIVE_MINUTES = 10080  # one week; the API has no "never"

PUBLIC_THREAD = 11


class DiscordAPIError(Exception):
    """Non-2xx response from the Discord API."""

    def __init__(self, status: int, message: str, retry_after: Optional[float] = None):
        super().__init__(f"Discord API error {status}: {message}")
        self.status = status
        self.message = message
        self.retry_after = retry_after


def truncate(text: str, limit: int) -> str:
    return text if len(text) <= limit else text[: limit - 1] + "…"


class DiscordClient:
    def __init__(self, token: str, *, timeout: float = 15, session: Optional[requests.Session] = None):
        self.token = token
        self.timeout = timeout
        self.session = session or requests.Session()

    def _request(self, method: str, path: str, *, json: Any = None, params: Any = None, reason: Optional[str] = None) -> Any:
        headers = {
            "Authorization": f"Bot {self.token}",
            "User-Agent": USER_AGENT,
        }
        if reason:
            headers["X-Audit-Log-Reason"] = reason
        resp = self.session.request(
            method,
            f"{API_BASE}{path}",
            json=json,
            params=params,
            headers=headers,
            timeout=self.timeout,
        )
        if resp.status_code >= 400:
            retry_after = None
            message = resp.text[:300]
            try:
                body = resp.json()
                message = body.get("message", message)
                retry_after = body.get("retry_after")
            except ValueError:
                pass
            if resp.status_code == 429:
                logger.warning(f"Discord rate limited on {method} {path} (retry after {retry_after}s)")
            raise DiscordAPIError(resp.status_code, message, retry_after)
        if resp.status_code == 204 or not resp.content:
            return None
        return resp.json()

    def current_user(self) -> Dict[str, Any]:
        return self._request("GET", "/users/@me")

    def get_channel(self, channel_id: str) -> Optional["Channel"]:
        """Return the channel, or None when it does not exist or is not visible."""
        try:
            data = self._request("GET", f"/channels/{channel_id}")
        except DiscordAPIError as e:
            logger.error(f"Channel {channel_id} unavailable: {e}")
            return None
        except requests.RequestException as e:
            logger.error(f"Failed to look up channel {channel_id}: {e}")
            return None
        return Channel(client=self, id=str(data["id"]), name=data.get("name") or "")


@dataclass
class ThreadHandle:
    client: DiscordClient
    id: str
    name: str

    def send(self, text: str) -> Dict[str, Any]:
        return self.client._request(
            "POST",
            f"/channels/{self.id}/messages",
            json={"content": truncate(text, MAX_MESSAGE_LENGTH)},
        )


@dataclass
class Channel:
    client: DiscordClient
    id: str
    name: str = ""

    def create_thread(self, name: str, *, auto_archive_minutes: int = MAX_AUTO_ARCHIVE_MINUTES, reason: Optional[str] = None) -> ThreadHandle:
        data = self.client._request(
            "POST",
            f"/channels/{self.id}/threads",
            json={
                "name": truncate(name, MAX_THREAD_NAME_LENGTH),
                "auto_archive_duration": auto_archive_minutes,
                "type": PUBLIC_THREAD,
            },
            reason=reason,
        )
        return ThreadHandle(client=self.client, id=str(data["id"]), name=data.get("name") or name)

    def send(self, text: str) -> Dict[str, Any]:
        return self.client._request(
            "POST",
            f"/channels/{self.id}/messages",
            json={"content": truncate(text, MAX_MESSAGE_LENGTH)},
        )

    def fetch_messages(self, *, after: Optional[str] = None, limit: int = 50) -> List[Dict[str, Any]]:
        """Messages newer than `after`, oldest first."""
        params: Dict[str, Any] = {"limit": max(1, min(limit, 100))}
        if after:
            params["after"] = after
        data = self.client._request("GET", f"/channels/{self.id}/messages", params=params) or []
        return sorted(data, key=lambda m: int(m["id"]))
