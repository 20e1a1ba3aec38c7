"""Creator page extraction cascade.

Strategies run in a fixed order and the first non-empty result wins; later
strategies are never consulted once one has produced candidates. A failing
strategy counts as "found nothing". A failed page fetch aborts the cascade for
the cycle.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Tuple
from urllib.parse import urlparse

from castwatch.extraction.page_fetch import PageFetchResult, fetch_page
from castwatch.extraction.strategies import MAX_CANDIDATES, hydration_strategy, html_pattern_strategy, stream_strategy
from castwatch.ingestion.episode_types import Episode, RawCandidate, SourceKind
from castwatch.ingestion.normalize import DEFAULT_PLACEHOLDER_TITLE, normalize

logger = logging.getLogger(__name__)

Strategy = Callable[[str], List[RawCandidate]]

DEFAULT_STRATEGIES: Sequence[Tuple[str, Strategy]] = (
    ("hydration", hydration_strategy),
    ("stream", stream_strategy),
    ("html", html_pattern_strategy),
)

# Titles must be longer than this, per strategy
DEFAULT_MIN_TITLE_LENGTHS: Dict[str, int] = {
    "hydration": 3,
    "stream": 10,
    "html": 3,
}


@dataclass(frozen=True)
class PageExtraction:
    candidates: List[RawCandidate] = field(default_factory=list)
    strategy: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def run_cascade(html: str, strategies: Sequence[Tuple[str, Strategy]] = DEFAULT_STRATEGIES) -> Tuple[Optional[str], List[RawCandidate]]:
    """Return (strategy_name, candidates) from the first strategy that finds anything."""
    for name, strategy in strategies:
        try:
            candidates = strategy(html)
        except Exception as e:
            logger.warning(f"Page strategy {name} failed: {e}")
            continue
        if candidates:
            logger.info(f"Page strategy {name} found {len(candidates)} candidate(s)")
            return name, list(candidates)
        logger.debug(f"Page strategy {name} found nothing")
    return None, []


def extract_page_episodes(
    page_url: str,
    *,
    timeout: float = 15,
    strategies: Sequence[Tuple[str, Strategy]] = DEFAULT_STRATEGIES,
    fetch: Callable[..., PageFetchResult] = fetch_page,
) -> PageExtraction:
    page = fetch(page_url, timeout=timeout)
    if not page.ok:
        logger.error(f"Failed to fetch page {page_url}: {page.status} ({page.error})")
        return PageExtraction(error=page.error or page.status)

    name, candidates = run_cascade(page.html or "", strategies)
    if not candidates:
        logger.warning(f"No page strategy produced candidates for {page_url}")
    return PageExtraction(candidates=candidates, strategy=name)


def base_url_of(page_url: str) -> str:
    p = urlparse(page_url)
    if not p.scheme or not p.netloc:
        return "https://www.patreon.com"
    return f"{p.scheme}://{p.netloc}"


def to_episodes(
    candidates: Sequence[RawCandidate],
    *,
    page_url: str,
    min_title_lengths: Optional[Mapping[str, int]] = None,
    placeholder_title: str = DEFAULT_PLACEHOLDER_TITLE,
) -> List[Episode]:
    """Normalize page candidates, dropping noise and same-key repeats.

    Returns at most MAX_CANDIDATES episodes, fewer than the ledger keeps.
    """
    thresholds = dict(DEFAULT_MIN_TITLE_LENGTHS)
    thresholds.update(min_title_lengths or {})
    base = base_url_of(page_url)

    episodes: List[Episode] = []
    keys = set()
    for candidate in candidates:
        episode = normalize(
            candidate,
            source_kind=SourceKind.PAGE,
            min_title_length=thresholds.get(candidate.strategy, 3),
            placeholder_title=placeholder_title,
            page_base_url=base,
        )
        if episode is None or episode.dedup_key in keys:
            continue
        keys.add(episode.dedup_key)
        episodes.append(episode)
        if len(episodes) >= MAX_CANDIDATES:
            break
    return episodes
