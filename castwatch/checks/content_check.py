"""Content-check cycle: feed phase, then page phase.

One cycle loads the ledger once, threads it through both phases, and saves it
after every confirmed announcement. Cycles are single-flight: a trigger that
arrives while another cycle is running is skipped, not queued.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Tuple

from castwatch.announce.dispatcher import AnnouncementResult, PlatformLinks, announce
from castwatch.chat.discord_client import Channel, DiscordClient
from castwatch.config import Config
from castwatch.extraction.page_cascade import PageExtraction, extract_page_episodes, to_episodes
from castwatch.ingestion.episode_types import Episode, RawCandidate, SourceKind
from castwatch.ingestion.feed_source import FeedFetchResult, fetch_feed_episodes
from castwatch.ingestion.normalize import normalize
from castwatch.storage.ledger import (
    Ledger,
    LedgerStore,
    contains,
    iso_z,
    record,
    utc_now,
    with_feed_checked,
    with_page_checked,
)

logger = logging.getLogger(__name__)

CHECK_KINDS = ("all", "feed", "page")


@dataclass
class CheckReport:
    kind: str
    started_at: datetime
    skipped: bool = False
    feed_announced: List[str] = field(default_factory=list)
    page_announced: List[str] = field(default_factory=list)
    page_seeded: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    page_strategy: Optional[str] = None
    finished_at: Optional[datetime] = None

    @property
    def announced_count(self) -> int:
        return len(self.feed_announced) + len(self.page_announced)

    def summary(self) -> str:
        if self.skipped:
            return "A check is already running; skipped."
        lines = [
            f"Check ({self.kind}) at {iso_z(self.started_at)}:",
            f"  podcast: {len(self.feed_announced)} new",
            f"  patreon: {len(self.page_announced)} new"
            + (f" via {self.page_strategy}" if self.page_strategy else ""),
        ]
        if self.page_seeded:
            lines.append(f"  patreon backlog recorded without announcing: {len(self.page_seeded)}")
        if self.failed:
            lines.append(f"  failed announcements: {', '.join(self.failed)}")
        for err in self.errors:
            lines.append(f"  error: {err}")
        return "\n".join(lines)


class ContentChecker:
    def __init__(
        self,
        config: Config,
        client: DiscordClient,
        store: LedgerStore,
        *,
        fetch_feed: Callable[..., FeedFetchResult] = fetch_feed_episodes,
        extract_page: Callable[..., PageExtraction] = extract_page_episodes,
        announce_fn: Callable[..., AnnouncementResult] = announce,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.config = config
        self.client = client
        self.store = store
        self.fetch_feed = fetch_feed
        self.extract_page = extract_page
        self.announce_fn = announce_fn
        self.sleep = sleep
        self.clock = clock
        self.links = PlatformLinks(
            apple_show_url=config.fallback_show_url,
            spotify_show_url=config.spotify_show_url,
        )
        self.last_report: Optional[CheckReport] = None
        self._lock = threading.Lock()
        # The page source has no publish times, so its backlog is recorded
        # silently the first time it is checked against a brand-new ledger.
        self._seed_page_pending = config.seed_page_backlog and not store.exists()

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    def run_check(self, kind: str = "all") -> CheckReport:
        if kind not in CHECK_KINDS:
            raise ValueError(f"Unknown check kind: {kind}")
        report = CheckReport(kind=kind, started_at=self.clock())
        if not self._lock.acquire(blocking=False):
            logger.warning(f"Check ({kind}) requested while another check is running; skipping")
            report.skipped = True
            return report
        try:
            self._run(kind, report)
        finally:
            report.finished_at = self.clock()
            self.last_report = report
            self._lock.release()
        return report

    def _run(self, kind: str, report: CheckReport) -> None:
        logger.info("=" * 60)
        logger.info(f"Checking for new content ({kind})...")
        channel = self.client.get_channel(self.config.channel_id)
        if channel is None:
            report.errors.append(f"channel {self.config.channel_id} not found")
            logger.error(f"Channel {self.config.channel_id} not found; skipping check")
            return

        ledger = self.store.load()

        if kind in ("all", "feed"):
            try:
                ledger = self._run_feed_phase(channel, ledger, report)
            except Exception as e:
                logger.error(f"Feed phase failed: {e}", exc_info=True)
                report.errors.append(f"podcast: {e}")

        if kind in ("all", "page"):
            try:
                ledger = self._run_page_phase(channel, ledger, report)
            except Exception as e:
                logger.error(f"Page phase failed: {e}", exc_info=True)
                report.errors.append(f"patreon: {e}")

        logger.info(f"Check ({kind}) complete: {report.announced_count} announced, {len(report.failed)} failed")

    def _dispatch(self, channel: Channel, episode: Episode, ledger: Ledger, report: CheckReport, announced: List[str]) -> Tuple[Ledger, bool]:
        """Announce one episode; record and persist its key only on success."""
        if report.announced_count or report.failed:
            self.sleep(self.config.announce_delay_seconds)
        result = self.announce_fn(channel, episode, links=self.links)
        if not result.ok:
            report.failed.append(episode.title)
            report.errors.append(f"announce {episode.title!r}: {result.error}")
            return ledger, False
        ledger = record(ledger, episode.dedup_key)
        self.store.save(ledger)
        announced.append(episode.title)
        return ledger, True

    def _run_feed_phase(self, channel: Channel, ledger: Ledger, report: CheckReport) -> Ledger:
        result = self.fetch_feed(
            self.config.podcast_rss_url,
            ledger.last_feed_check_at,
            timeout=self.config.request_timeout,
            fallback_url=self.config.fallback_show_url,
            min_title_length=self.config.feed_min_title_length,
        )
        if not result.ok:
            report.errors.append(f"podcast feed: {result.error}")
            return ledger

        earliest_failed: Optional[datetime] = None
        episodes = sorted(result.episodes, key=lambda e: e.published_at or report.started_at)
        for episode in episodes:
            if contains(ledger, episode.dedup_key):
                logger.debug(f"Already announced: {episode.dedup_key}")
                continue
            ledger, ok = self._dispatch(channel, episode, ledger, report, report.feed_announced)
            if not ok and episode.published_at is not None:
                if earliest_failed is None or episode.published_at < earliest_failed:
                    earliest_failed = episode.published_at

        # Stop just short of the earliest failure so it is fetched again next cycle.
        if earliest_failed is None:
            mark = report.started_at
        else:
            mark = earliest_failed - timedelta(microseconds=1)
        ledger = with_feed_checked(ledger, mark)
        self.store.save(ledger)
        return ledger

    def _run_page_phase(self, channel: Channel, ledger: Ledger, report: CheckReport) -> Ledger:
        extraction = self.extract_page(self.config.patreon_url, timeout=self.config.request_timeout)
        if not extraction.ok:
            report.errors.append(f"patreon page: {extraction.error}")
            return ledger

        report.page_strategy = extraction.strategy
        episodes = to_episodes(
            extraction.candidates,
            page_url=self.config.patreon_url,
            min_title_lengths=self.config.page_min_title_lengths,
            placeholder_title=self.config.placeholder_title,
        )

        if self._seed_page_pending and episodes:
            for episode in episodes:
                ledger = record(ledger, episode.dedup_key)
                report.page_seeded.append(episode.title)
            logger.info(f"Recorded {len(episodes)} existing Patreon post(s) without announcing")
            self._seed_page_pending = False
        else:
            for episode in episodes:
                if contains(ledger, episode.dedup_key):
                    continue
                ledger, _ = self._dispatch(channel, episode, ledger, report, report.page_announced)

        ledger = with_page_checked(ledger, report.started_at)
        self.store.save(ledger)
        return ledger

    def announce_manual(self, title: str, url: Optional[str] = None) -> AnnouncementResult:
        """Announce one episode by hand and record it so checks skip it later."""
        if not self._lock.acquire(blocking=False):
            return AnnouncementResult(thread=None, status="busy", error="a check is running")
        try:
            kind = SourceKind.PAGE if url and "patreon.com" in url else SourceKind.FEED
            candidate = RawCandidate(
                id=title if kind == SourceKind.FEED else None,
                title=title,
                url=url,
                strategy="manual",
            )
            episode = normalize(candidate, source_kind=kind, min_title_length=0)
            if episode is None:
                return AnnouncementResult(thread=None, status="error", error="empty title")
            channel = self.client.get_channel(self.config.channel_id)
            if channel is None:
                return AnnouncementResult(thread=None, status="error", error="channel not found")
            result = self.announce_fn(channel, episode, links=self.links)
            if result.ok:
                ledger = record(self.store.load(), episode.dedup_key)
                self.store.save(ledger)
            return result
        finally:
            self._lock.release()

    def clear_ledger(self) -> bool:
        with self._lock:
            cleared = self.store.clear()
            self._seed_page_pending = self.config.seed_page_backlog
            return cleared

    def status(self) -> str:
        ledger = self.store.load() if self.store.exists() else None
        lines = ["📊 **Bot status**"]
        if ledger is None:
            lines.append("Ledger: none yet (next check starts fresh)")
        else:
            lines.append(f"Last podcast check: {iso_z(ledger.last_feed_check_at)}")
            lines.append(f"Last Patreon check: {iso_z(ledger.last_page_check_at)}")
            lines.append(f"Remembered episodes: {len(ledger.seen_keys)}")
            if ledger.seen_keys:
                lines.append(f"Most recent: {ledger.seen_keys[-1]}")
        lines.append(f"Check running: {'yes' if self.busy else 'no'}")
        if self.last_report is not None:
            lines.append(self.last_report.summary())
        return "\n".join(lines)
