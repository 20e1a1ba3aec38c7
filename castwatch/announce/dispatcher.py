"""Thread-per-episode announcements.

`announce` never raises: platform errors come back as a result with
status "error" so the caller can leave the episode unrecorded and retry it
next cycle.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional

import requests

from castwatch.chat.discord_client import (
    MAX_AUTO_ARCHIVE_MINUTES,
    MAX_MESSAGE_LENGTH,
    Channel,
    DiscordAPIError,
    ThreadHandle,
    truncate,
)
from castwatch.ingestion.episode_types import Episode, SourceKind

logger = logging.getLogger(__name__)

FREE_EPISODE_NOTICE = "🎧 Free episode - available on all podcast platforms!"


@dataclass(frozen=True)
class PlatformLinks:
    apple_show_url: str = "https://podcasts.apple.com/us/podcast/low-limit-cash-games/id1496651303"
    spotify_show_url: str = "https://open.spotify.com/show/2ycOlKRTGA9ugMmIIjqjSE"


@dataclass(frozen=True)
class AnnouncementResult:
    thread: Optional[ThreadHandle]
    status: str
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == "ok"


def format_announcement(episode: Episode, links: Optional[PlatformLinks] = None) -> str:
    links = links or PlatformLinks()
    parts: List[str] = [f"**{episode.title}**"]

    if episode.source_kind == SourceKind.FEED:
        apple = episode.url if episode.url and "podcasts.apple.com" in episode.url else links.apple_show_url
        if episode.url and episode.url != apple:
            parts.append(episode.url)
        parts.append(f"**iOS link**\n{apple}")
        parts.append(f"**Spotify link**\n{links.spotify_show_url}")
    elif episode.url:
        parts.append(f"**Patreon**\n{episode.url}")
    else:
        parts.append(FREE_EPISODE_NOTICE)

    return truncate("\n\n".join(parts), MAX_MESSAGE_LENGTH)


def default_reason(episode: Episode) -> str:
    if episode.source_kind == SourceKind.FEED:
        return "New podcast episode discussion"
    return "New Patreon content discussion"


def announce(
    channel: Channel,
    episode: Episode,
    *,
    reason: Optional[str] = None,
    links: Optional[PlatformLinks] = None,
) -> AnnouncementResult:
    """Open a discussion thread for `episode` and post its links into it."""
    try:
        thread = channel.create_thread(
            episode.title,
            auto_archive_minutes=MAX_AUTO_ARCHIVE_MINUTES,
            reason=reason or default_reason(episode),
        )
    except (DiscordAPIError, requests.RequestException) as e:
        logger.error(f"Failed to create thread for {episode.title!r}: {e}")
        return AnnouncementResult(thread=None, status="error", error=str(e))

    try:
        thread.send(format_announcement(episode, links))
    except (DiscordAPIError, requests.RequestException) as e:
        logger.error(f"Thread {thread.id} created but posting links for {episode.title!r} failed: {e}")
        return AnnouncementResult(thread=thread, status="error", error=str(e))

    logger.info(f"Created thread for: {episode.title}")
    return AnnouncementResult(thread=thread, status="ok")
