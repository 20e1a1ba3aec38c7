"""Durable "already announced" ledger.

One small JSON document:

    {
      "lastPodcastCheck": "2024-05-01T12:00:00.000Z",
      "lastPatreonCheck": "2024-05-01T12:00:00.000Z",
      "seenEpisodes": ["feed_Ep12", "page_123456"]
    }

A missing or unreadable file is not an error: it yields a fresh ledger whose
watermarks are "now", so the first run never announces the existing backlog.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from dateutil.parser import isoparse

logger = logging.getLogger(__name__)

MAX_SEEN_KEYS = 50
DEFAULT_LEDGER_PATH = "last_checked.json"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def iso_z(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass(frozen=True)
class Ledger:
    last_feed_check_at: datetime
    last_page_check_at: datetime
    seen_keys: Tuple[str, ...] = ()

    def to_json(self) -> Dict[str, Any]:
        return {
            "lastPodcastCheck": iso_z(self.last_feed_check_at),
            "lastPatreonCheck": iso_z(self.last_page_check_at),
            "seenEpisodes": list(self.seen_keys),
        }


def fresh_ledger(now: Optional[datetime] = None) -> Ledger:
    now = now or utc_now()
    return Ledger(last_feed_check_at=now, last_page_check_at=now, seen_keys=())


def contains(ledger: Ledger, key: str) -> bool:
    return key in ledger.seen_keys


def record(ledger: Ledger, key: str, *, cap: int = MAX_SEEN_KEYS) -> Ledger:
    """Append `key` as the newest entry and evict the oldest beyond `cap`."""
    keys = [k for k in ledger.seen_keys if k != key]
    keys.append(key)
    if len(keys) > cap:
        keys = keys[-cap:]
    return replace(ledger, seen_keys=tuple(keys))


def with_feed_checked(ledger: Ledger, at: datetime) -> Ledger:
    if at <= ledger.last_feed_check_at:
        return ledger
    return replace(ledger, last_feed_check_at=at)


def with_page_checked(ledger: Ledger, at: datetime) -> Ledger:
    if at <= ledger.last_page_check_at:
        return ledger
    return replace(ledger, last_page_check_at=at)


def _parse_ts(value: Any, default: datetime) -> datetime:
    if not value:
        return default
    try:
        dt = isoparse(str(value))
    except (ValueError, OverflowError):
        logger.warning(f"Ignoring unparseable ledger timestamp: {value!r}")
        return default
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _parse_keys(value: Any) -> Tuple[str, ...]:
    if not isinstance(value, list):
        return ()
    keys = [k for k in value if isinstance(k, str) and k]
    return tuple(keys[-MAX_SEEN_KEYS:])


def ledger_from_json(data: Dict[str, Any], now: Optional[datetime] = None) -> Ledger:
    now = now or utc_now()
    return Ledger(
        last_feed_check_at=_parse_ts(data.get("lastPodcastCheck"), now),
        last_page_check_at=_parse_ts(data.get("lastPatreonCheck"), now),
        seen_keys=_parse_keys(data.get("seenEpisodes")),
    )


class LedgerStore:
    """File-backed ledger; one instance per bot process."""

    def __init__(self, path: str = DEFAULT_LEDGER_PATH):
        self.path = Path(path)

    def exists(self) -> bool:
        return self.path.exists()

    def load(self) -> Ledger:
        if not self.path.exists():
            logger.info(f"No ledger at {self.path}; starting fresh (existing episodes will not be announced)")
            return fresh_ledger()
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"Ledger {self.path} is unreadable ({e}); starting fresh")
            return fresh_ledger()
        if not isinstance(data, dict):
            logger.warning(f"Ledger {self.path} has unexpected shape; starting fresh")
            return fresh_ledger()
        return ledger_from_json(data)

    def save(self, ledger: Ledger) -> None:
        """Write to a temp file next to the ledger, then rename over it."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.parent / f".{self.path.name}.{os.getpid()}.tmp"
        try:
            tmp.write_text(json.dumps(ledger.to_json(), indent=2), encoding="utf-8")
            tmp.replace(self.path)
        except Exception:
            if tmp.exists():
                tmp.unlink()
            raise

    def clear(self) -> bool:
        """Remove the durable ledger. Returns True if a file was deleted."""
        try:
            self.path.unlink()
            logger.info(f"Ledger {self.path} cleared")
            return True
        except FileNotFoundError:
            return False

