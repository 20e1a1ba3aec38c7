"""Podcast RSS feed source.

Fetches the feed with an explicit timeout, keeps items published after the
ledger watermark, and normalizes them into feed Episodes. Failures never
propagate: the result carries the error and an empty episode list.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Any, List, Optional

import feedparser
import requests
from dateutil.parser import parse as parse_date

from castwatch.ingestion.episode_types import Episode, RawCandidate, SourceKind
from castwatch.ingestion.normalize import normalize

logger = logging.getLogger(__name__)

USER_AGENT = "castwatch/1.0 (+podcast episode announcer)"
DEFAULT_FALLBACK_URL = "https://podcasts.apple.com/us/podcast/low-limit-cash-games/id1496651303"

# Common timezone abbreviations seen in pubDate fields
TZINFOS = {
    "EST": timezone(timedelta(hours=-5)),
    "EDT": timezone(timedelta(hours=-4)),
    "CST": timezone(timedelta(hours=-6)),
    "CDT": timezone(timedelta(hours=-5)),
    "MST": timezone(timedelta(hours=-7)),
    "MDT": timezone(timedelta(hours=-6)),
    "PST": timezone(timedelta(hours=-8)),
    "PDT": timezone(timedelta(hours=-7)),
    "GMT": timezone.utc,
    "UTC": timezone.utc,
    "BST": timezone(timedelta(hours=1)),
}


@dataclass(frozen=True)
class FeedFetchResult:
    episodes: List[Episode] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def _parse_published(entry: Any) -> Optional[datetime]:
    published = entry.get("published") or entry.get("updated")
    if not published:
        return None
    try:
        dt = parse_date(published, tzinfos=TZINFOS)
    except (ValueError, OverflowError):
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _enclosure_url(entry: Any) -> Optional[str]:
    for enc in entry.get("enclosures") or []:
        href = enc.get("href") or enc.get("url")
        if href:
            return href
    return None


def entry_to_candidate(entry: Any) -> RawCandidate:
    """Map one feedparser entry to a candidate.

    The title doubles as the id; guid, enclosure URL and episode number are
    fallbacks for untitled items.
    """
    title = (entry.get("title") or "").strip()
    guid = entry.get("id") or entry.get("guid")
    enclosure = _enclosure_url(entry)
    episode_number = entry.get("itunes_episode")
    raw_id = title or guid or enclosure or (f"episode-{episode_number}" if episode_number else None)
    return RawCandidate(
        id=raw_id,
        title=title or None,
        url=(entry.get("link") or "").strip() or None,
        strategy="feed",
        published_at=_parse_published(entry),
        guid=guid,
        enclosure_url=enclosure,
        episode_number=str(episode_number) if episode_number else None,
    )


def parse_feed_episodes(
    content: bytes,
    since: datetime,
    *,
    fallback_url: str = DEFAULT_FALLBACK_URL,
    min_title_length: int = 3,
) -> List[Episode]:
    """Parse feed bytes into Episodes published strictly after `since`."""
    if since.tzinfo is None:
        since = since.replace(tzinfo=timezone.utc)

    parsed = feedparser.parse(content)
    if parsed.bozo and not parsed.entries:
        raise ValueError(f"Unparseable feed: {parsed.get('bozo_exception')}")

    episodes: List[Episode] = []
    for entry in parsed.entries:
        candidate = entry_to_candidate(entry)
        if candidate.published_at is None:
            logger.debug(f"Skipping feed item without publish date: {candidate.title!r}")
            continue
        if candidate.published_at <= since:
            continue
        episode = normalize(
            candidate,
            source_kind=SourceKind.FEED,
            min_title_length=min_title_length,
            placeholder_title="New Episode",
        )
        if episode is None:
            continue
        if not episode.url:
            episode = replace(episode, url=fallback_url)
        episodes.append(episode)
    return episodes


def fetch_feed_episodes(
    feed_url: str,
    since: datetime,
    *,
    timeout: float = 15,
    fallback_url: str = DEFAULT_FALLBACK_URL,
    min_title_length: int = 3,
) -> FeedFetchResult:
    try:
        response = requests.get(feed_url, timeout=timeout, headers={"User-Agent": USER_AGENT})
        response.raise_for_status()
        episodes = parse_feed_episodes(
            response.content,
            since,
            fallback_url=fallback_url,
            min_title_length=min_title_length,
        )
    except Exception as e:
        logger.error(f"Failed to fetch feed {feed_url}: {e}")
        return FeedFetchResult(episodes=[], error=str(e))

    logger.info(f"Feed {feed_url}: {len(episodes)} item(s) newer than {since.isoformat()}")
    return FeedFetchResult(episodes=episodes)
