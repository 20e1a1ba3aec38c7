"""Shared episode data types and the dedup key they are remembered by."""

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

_NON_ALNUM_RE = re.compile(r"[^A-Za-z0-9]")


def strip_non_alnum(value: str) -> str:
    return _NON_ALNUM_RE.sub("", value or "")


def stable_hash(value: str, length: int = 12) -> str:
    return hashlib.sha1((value or "").encode("utf-8")).hexdigest()[:length]


def key_part(value: str) -> str:
    """Alphanumeric form of an id or title; hashed when nothing survives."""
    stripped = strip_non_alnum(value)
    if stripped:
        return stripped
    return stable_hash(value)


class SourceKind(str, Enum):
    FEED = "feed"
    PAGE = "page"


@dataclass(frozen=True)
class RawCandidate:
    """Best-effort record pulled out of a feed item or a scraped page.

    Nothing here is trusted yet; the normalizer turns it into an Episode.
    """

    id: Optional[str] = None
    title: Optional[str] = None
    url: Optional[str] = None
    strategy: str = "unknown"
    # feed-only hints
    published_at: Optional[datetime] = None
    guid: Optional[str] = None
    enclosure_url: Optional[str] = None
    episode_number: Optional[str] = None


@dataclass(frozen=True)
class Episode:
    source_kind: SourceKind
    raw_id: str
    title: str
    url: Optional[str] = None
    published_at: Optional[datetime] = None
    strategy: str = "unknown"

    @property
    def dedup_key(self) -> str:
        """`{source_kind}_{alnum id}`, e.g. `feed_Ep12` or `page_123456`."""
        return f"{SourceKind(self.source_kind).value}_{key_part(self.raw_id or self.title)}"
