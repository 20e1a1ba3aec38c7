"""Creator page fetch.

Returns a status-bearing result instead of raising, so the cascade can log and
skip the page source for this cycle.
"""

from __future__ import annotations

import ipaddress
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlparse

import requests

BROWSER_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/124.0 Safari/537.36"
    ),
    "Accept": "text/html,application/xhtml+xml",
    "Accept-Language": "en-US,en;q=0.9",
}
MAX_PAGE_BYTES = 5_000_000
CONNECT_TIMEOUT = 5


@dataclass(frozen=True)
class PageFetchResult:
    html: Optional[str]
    status: str
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == "ok"


def _failed(status: str, error: Optional[str] = None) -> PageFetchResult:
    return PageFetchResult(html=None, status=status, error=error or status)


def blocked_reason(url: str) -> Optional[str]:
    """Why `url` must not be fetched, or None when it is a public http(s) URL."""
    parts = urlparse(url)
    if parts.scheme not in ("http", "https"):
        return "bad_scheme"
    host = (parts.hostname or "").lower()
    if not host:
        return "missing_host"
    if host == "localhost" or host.endswith(".localhost"):
        return "blocked_host"
    try:
        addr = ipaddress.ip_address(host)
    except ValueError:
        return None
    if addr.is_private or addr.is_loopback or addr.is_link_local or addr.is_unspecified:
        return "blocked_private_ip"
    return None


def _read_capped(resp: requests.Response, max_bytes: int) -> Optional[bytes]:
    body = bytearray()
    for chunk in resp.iter_content(chunk_size=64 * 1024):
        body.extend(chunk or b"")
        if len(body) > max_bytes:
            return None
    return bytes(body)


def fetch_page(url: str, *, timeout: float = 15, max_bytes: int = MAX_PAGE_BYTES) -> PageFetchResult:
    if not url:
        return _failed("error", "empty_url")
    reason = blocked_reason(url)
    if reason:
        return _failed("blocked", reason)

    try:
        resp = requests.get(url, headers=BROWSER_HEADERS, timeout=(CONNECT_TIMEOUT, timeout), stream=True)
        if resp.status_code >= 400:
            return _failed(f"http_{resp.status_code}")
        body = _read_capped(resp, max_bytes)
    except requests.RequestException as e:
        return _failed("error", str(e))

    if body is None:
        return _failed("too_large")
    try:
        html = body.decode(resp.encoding or "utf-8", errors="replace")
    except LookupError:
        html = body.decode("utf-8", errors="replace")
    if not html.strip():
        return _failed("empty", "empty_html")
    return PageFetchResult(html=html, status="ok")
