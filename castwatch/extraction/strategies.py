"""Page extraction strategies.

Each strategy is a pure function ``html -> List[RawCandidate]``. They are tried
in order by the cascade, most structured first:

1. hydration: the ``__NEXT_DATA__`` JSON blob (real titles, real ids)
2. stream: App-Router ``self.__next_f.push`` chunks, regex-scanned
3. html: bare ``/posts/...`` references in the markup (ids only)

Regexes are applied here and nowhere else; everything leaving this module is a
RawCandidate.
"""

from __future__ import annotations

import json
import re
from itertools import islice
from typing import Any, Dict, List, Optional, Sequence, Tuple

from castwatch.ingestion.episode_types import RawCandidate
from castwatch.ingestion.normalize import canonical_post_id, post_id_from_url

MAX_CANDIDATES = 10
MAX_STREAM_CHUNKS = 20
MIN_SLUG_LENGTH = 3


# ---------------------------------------------------------------------------
# 1. Hydration blob
# ---------------------------------------------------------------------------

NEXT_DATA_RE = re.compile(
    r"<script[^>]*\bid=[\"']__NEXT_DATA__[\"'][^>]*>(.*?)</script>",
    re.S | re.I,
)

HYDRATION_PATHS: Sequence[Tuple[str, ...]] = (
    ("props", "pageProps", "bootstrapEnvelope", "pageBootstrap", "campaign", "included"),
    ("props", "pageProps", "bootstrapEnvelope", "pageBootstrap", "posts", "data"),
    ("props", "pageProps", "bootstrapEnvelope", "bootstrap", "campaign", "included"),
    ("props", "pageProps", "bootstrapEnvelope", "bootstrap", "posts", "data"),
    ("props", "pageProps", "campaign", "included"),
    ("props", "pageProps", "posts", "data"),
    ("props", "pageProps", "posts"),
    ("props", "pageProps", "initialState", "posts", "data"),
    ("props", "initialProps", "posts"),
    ("props", "pageProps", "data"),
)


def _get_path(data: Any, path: Sequence[str]) -> Any:
    node = data
    for part in path:
        if not isinstance(node, dict):
            return None
        node = node.get(part)
    return node


def _looks_like_post(el: Any) -> bool:
    if not isinstance(el, dict):
        return False
    kind = el.get("type")
    if kind == "post":
        return True
    # campaign "included" arrays also carry rewards, users, goals...
    if kind is not None:
        return False
    attrs = el.get("attributes")
    if isinstance(attrs, dict) and attrs.get("title"):
        return True
    return "id" in el and isinstance(attrs, dict)


def _hydration_candidate(el: Dict[str, Any]) -> RawCandidate:
    attrs = el.get("attributes") if isinstance(el.get("attributes"), dict) else {}
    raw_id = el.get("id")
    return RawCandidate(
        id=str(raw_id) if raw_id not in (None, "") else None,
        title=attrs.get("title") or el.get("title"),
        url=attrs.get("url") or attrs.get("patreon_url") or el.get("url"),
        strategy="hydration",
    )


def hydration_strategy(html: str) -> List[RawCandidate]:
    m = NEXT_DATA_RE.search(html)
    if not m:
        return []
    data = json.loads(m.group(1))
    for path in HYDRATION_PATHS:
        value = _get_path(data, path)
        if not isinstance(value, list):
            continue
        posts = [el for el in value if _looks_like_post(el)]
        if posts:
            return [_hydration_candidate(el) for el in posts[:MAX_CANDIDATES]]
    return []


# ---------------------------------------------------------------------------
# 2. Streamed App-Router chunks
# ---------------------------------------------------------------------------

NEXT_F_PUSH_RE = re.compile(
    r"self\.__next_f\.push\(\[\s*\d+\s*,\s*\"((?:[^\"\\]|\\.)*)\"\s*\]\)",
    re.S,
)

_ESCAPES = {'"': '"', "n": "\n", "r": "\r", "t": "\t", "\\": "\\"}
_ESCAPE_RE = re.compile(r"\\([\"nrt\\])")

POST_INDICATORS = (
    re.compile(r"\"type\"\s*:\s*\"post\""),
    re.compile(r"/posts/[\w-]+"),
    re.compile(r"\"title\"\s*:\s*\""),
    re.compile(r"\"post_id\""),
)

URL_FIELD_RE = re.compile(r"\"url\"\s*:\s*\"([^\"]*?/posts/[^\"]+)\"")
NUMERIC_POST_RE = re.compile(r"posts/(\d+)(?![\w-])")
TITLE_FIELD_RE = re.compile(r"\"title\"\s*:\s*\"((?:[^\"\\]|\\.)*)\"")


def unescape_chunk(payload: str) -> str:
    """Reverse the JS string escapes we care about, in one pass."""
    return _ESCAPE_RE.sub(lambda m: _ESCAPES[m.group(1)], payload)


def _has_post_indicator(text: str) -> bool:
    return any(r.search(text) for r in POST_INDICATORS)


def _chunk_post_refs(text: str) -> List[Tuple[str, Optional[str]]]:
    refs: List[Tuple[str, Optional[str]]] = []
    seen = set()
    for m in URL_FIELD_RE.finditer(text):
        url = m.group(1)
        pid = post_id_from_url(url)
        if pid and pid not in seen:
            seen.add(pid)
            refs.append((pid, url))
    for m in NUMERIC_POST_RE.finditer(text):
        pid = m.group(1)
        if pid not in seen:
            seen.add(pid)
            refs.append((pid, None))
    return refs


def _chunk_candidates(text: str) -> List[RawCandidate]:
    refs = _chunk_post_refs(text)
    titles = [unescape_chunk(t).strip() for t in TITLE_FIELD_RE.findall(text)]
    titles = [t for t in titles if t]
    count = min(MAX_CANDIDATES, max(len(refs), len(titles)))
    out: List[RawCandidate] = []
    for i in range(count):
        pid, url = refs[i] if i < len(refs) else (None, None)
        out.append(
            RawCandidate(
                id=pid,
                title=titles[i] if i < len(titles) else None,
                url=url,
                strategy="stream",
            )
        )
    return out


def stream_strategy(html: str) -> List[RawCandidate]:
    for m in islice(NEXT_F_PUSH_RE.finditer(html), MAX_STREAM_CHUNKS):
        text = unescape_chunk(m.group(1))
        if not _has_post_indicator(text):
            continue
        candidates = _chunk_candidates(text)
        if candidates:
            return candidates
    return []


# ---------------------------------------------------------------------------
# 3. Plain HTML references
# ---------------------------------------------------------------------------

HTML_POST_PATTERNS = (
    re.compile(r"href=[\"'](?:https?://(?:www\.)?patreon\.com)?/posts/([^\"'?#/\s]+)", re.I),
    re.compile(r"/posts/(\d+)(?=[\"'?#/\s<]|$)"),
    re.compile(r"data-post-id=[\"']([^\"']+)[\"']", re.I),
    re.compile(r"\bpost-(\d{3,})\b"),
    re.compile(r"https?://(?:www\.)?patreon\.com/posts/([^\"'?#/\s<>]+)", re.I),
)


def html_pattern_strategy(html: str) -> List[RawCandidate]:
    """Collect post ids from raw markup; titles cannot be recovered here."""
    hits: List[Tuple[int, str]] = []
    for pattern in HTML_POST_PATTERNS:
        for m in pattern.finditer(html):
            hits.append((m.start(1), m.group(1)))
    hits.sort(key=lambda h: h[0])

    out: List[RawCandidate] = []
    seen = set()
    for _, slug in hits:
        pid = canonical_post_id(slug)
        if len(pid) < MIN_SLUG_LENGTH or pid in seen:
            continue
        seen.add(pid)
        out.append(RawCandidate(id=pid, title=None, url=f"/posts/{slug.strip('/')}", strategy="html"))
        if len(out) >= MAX_CANDIDATES:
            break
    return out
