"""Operator text commands read from the announcement channel.

Commands are literal strings (case-insensitive) and each one maps to a single
checker operation. `CommandListener` polls the channel over REST; the first poll
only records where the conversation currently ends so old commands are never
replayed after a restart.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Dict, Optional, Tuple

import requests

from castwatch.chat.discord_client import Channel, DiscordAPIError
from castwatch.checks.content_check import ContentChecker

logger = logging.getLogger(__name__)

HELP_TEXT = (
    "**Commands**\n"
    "`{p}checkpodcast` - check the podcast feed now\n"
    "`{p}checkpatreon` - check the Patreon page now\n"
    "`{p}checknow` - check both sources now\n"
    "`{p}clearcache` - forget announced episodes (next check starts fresh)\n"
    "`{p}status` - show the last check and ledger state\n"
    "`{p}announce <title> | <url>` - announce one episode by hand\n"
    "`{p}help` - this message"
)


def parse_announce_args(args: str) -> Tuple[str, Optional[str]]:
    """Split "Title | URL" into (title, url); the URL part is optional."""
    title, sep, url = args.partition("|")
    title = title.strip()
    url = url.strip() if sep else ""
    return title, (url or None)


class CommandRouter:
    """Turns one message into a reply, or None when it is not a command."""

    def __init__(self, checker: ContentChecker, prefix: str = "!"):
        self.checker = checker
        self.prefix = prefix
        self._handlers: Dict[str, Callable[[str], str]] = {
            "checkpodcast": lambda _: self._check("feed"),
            "checkpatreon": lambda _: self._check("page"),
            "checknow": lambda _: self._check("all"),
            "clearcache": lambda _: self._clear(),
            "status": lambda _: self.checker.status(),
            "announce": self._announce,
            "help": lambda _: HELP_TEXT.format(p=self.prefix),
        }

    def parse(self, content: str) -> Optional[Tuple[str, str]]:
        text = (content or "").strip()
        if not text.startswith(self.prefix):
            return None
        name, _, args = text[len(self.prefix):].partition(" ")
        name = name.lower()
        if name not in self._handlers:
            return None
        return name, args.strip()

    def handle(self, content: str) -> Optional[str]:
        parsed = self.parse(content)
        if parsed is None:
            return None
        name, args = parsed
        logger.info(f"Operator command: {self.prefix}{name}")
        return self._handlers[name](args)

    def _check(self, kind: str) -> str:
        report = self.checker.run_check(kind)
        if report.skipped:
            return "⏳ A check is already running, try again in a moment."
        return "✅ " + report.summary()

    def _clear(self) -> str:
        if self.checker.clear_ledger():
            return "🗑️ Cache cleared. The next check records current episodes without announcing them."
        return "Cache was already empty."

    def _announce(self, args: str) -> str:
        title, url = parse_announce_args(args)
        if not title:
            return f"Usage: `{self.prefix}announce <title> | <url>`"
        result = self.checker.announce_manual(title, url)
        if result.ok:
            return f"📣 Announced **{title}**"
        if result.status == "busy":
            return "⏳ A check is already running, try again in a moment."
        return f"❌ Could not announce {title!r}: {result.error}"


class CommandListener:
    """Polls a channel for operator commands and replies in the same channel."""

    def __init__(self, channel: Channel, router: CommandRouter, *, bot_user_id: Optional[str] = None):
        self.channel = channel
        self.router = router
        self.bot_user_id = bot_user_id
        self.last_message_id: Optional[str] = None
        self._baselined = False

    def _is_from_bot(self, message: Dict[str, Any]) -> bool:
        author = message.get("author") or {}
        if author.get("bot"):
            return True
        return self.bot_user_id is not None and str(author.get("id")) == str(self.bot_user_id)

    def poll_once(self) -> int:
        """Handle new commands since the last poll. Returns how many were answered."""
        if not self._baselined:
            latest = self.channel.fetch_messages(limit=1)
            self.last_message_id = latest[-1]["id"] if latest else None
            self._baselined = True
            logger.info(f"Command listener baseline at message {self.last_message_id}")
            return 0

        messages = self.channel.fetch_messages(after=self.last_message_id)
        answered = 0
        for message in messages:
            self.last_message_id = message["id"]
            if self._is_from_bot(message):
                continue
            try:
                reply = self.router.handle(message.get("content") or "")
                if reply is None:
                    continue
                self.channel.send(reply)
                answered += 1
            except (DiscordAPIError, requests.RequestException) as e:
                logger.error(f"Failed to reply to command {message.get('content')!r}: {e}")
            except Exception as e:
                logger.error(f"Command {message.get('content')!r} failed: {e}", exc_info=True)
        return answered

    def run_forever(self, poll_seconds: float, stop_event: threading.Event) -> None:
        logger.info(f"Listening for commands every {poll_seconds}s")
        while not stop_event.is_set():
            try:
                self.poll_once()
            except (DiscordAPIError, requests.RequestException) as e:
                logger.warning(f"Command poll failed: {e}")
            except Exception as e:
                logger.error(f"Unexpected error polling commands: {e}", exc_info=True)
            stop_event.wait(poll_seconds)
