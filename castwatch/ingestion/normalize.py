"""Candidate normalization and dedup keys.

- Resolve a stable raw id (explicit id > URL slug > title hash)
- Resolve a display title (never empty)
- Drop noise candidates with too-short titles
- Pick the raw id that `Episode.dedup_key` is built from
"""

from __future__ import annotations

import html
import logging
import re
from typing import Optional, Tuple
from urllib.parse import urljoin

from castwatch.ingestion.episode_types import Episode, RawCandidate, SourceKind, stable_hash

logger = logging.getLogger(__name__)

DEFAULT_PLACEHOLDER_TITLE = "New Patreon Post"
DEFAULT_PAGE_BASE_URL = "https://www.patreon.com"

_WS_RE = re.compile(r"\s+")
_POST_PATH_RE = re.compile(r"/posts/([^/?#\s\"'<>]+)")
# Patreon slugs end with the numeric post id: "ep-12-river-play-123456"
_TRAILING_POST_ID_RE = re.compile(r"-(\d{5,})$")


def canonical_post_id(slug: str) -> str:
    """Reduce a post slug to the id every page strategy agrees on."""
    s = (slug or "").strip()
    s = s.split("?", 1)[0].split("#", 1)[0].strip("/")
    m = _TRAILING_POST_ID_RE.search(s)
    if m:
        return m.group(1)
    return s


def post_id_from_url(url: Optional[str]) -> Optional[str]:
    if not url:
        return None
    m = _POST_PATH_RE.search(url)
    if not m:
        return None
    return canonical_post_id(m.group(1)) or None


def clean_title(title: Optional[str]) -> str:
    if not title:
        return ""
    return _WS_RE.sub(" ", html.unescape(str(title))).strip()


def _resolve_raw_id(candidate: RawCandidate, source_kind: SourceKind, title: str) -> Tuple[str, bool]:
    """Return (raw_id, is_post_id)."""
    explicit = str(candidate.id).strip() if candidate.id is not None else ""
    if explicit:
        if source_kind == SourceKind.PAGE:
            return canonical_post_id(explicit), True
        return explicit, False
    from_url = post_id_from_url(candidate.url)
    if from_url:
        return from_url, True
    return stable_hash(title), False


def _resolve_url(candidate: RawCandidate, raw_id: str, is_post_id: bool, page_base_url: str) -> Optional[str]:
    url = (candidate.url or "").strip()
    if url:
        if url.startswith("/"):
            return urljoin(page_base_url.rstrip("/") + "/", url.lstrip("/"))
        return url
    if is_post_id:
        return f"{page_base_url.rstrip('/')}/posts/{raw_id}"
    return None


def normalize(
    candidate: RawCandidate,
    *,
    source_kind: SourceKind,
    min_title_length: int = 3,
    placeholder_title: str = DEFAULT_PLACEHOLDER_TITLE,
    page_base_url: str = DEFAULT_PAGE_BASE_URL,
) -> Optional[Episode]:
    """Turn a raw candidate into an Episode, or None when it looks like noise."""
    title = clean_title(candidate.title) or placeholder_title
    if len(title) <= min_title_length:
        logger.debug(f"Dropping {candidate.strategy} candidate with short title: {title!r}")
        return None

    raw_id, is_post_id = _resolve_raw_id(candidate, source_kind, title)

    if source_kind == SourceKind.PAGE:
        url = _resolve_url(candidate, raw_id, is_post_id, page_base_url)
    else:
        url = (candidate.url or "").strip() or None

    return Episode(
        source_kind=source_kind,
        raw_id=raw_id,
        title=title,
        url=url,
        published_at=candidate.published_at,
        strategy=candidate.strategy,
    )
