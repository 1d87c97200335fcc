"""
Dead-tab detection.

The fast path is a regex scan of the tab title plus the stuck-loading
heuristic. When the title is clean and an extractor is available, the page
itself is asked for its HTTP status and a body excerpt.
"""

from __future__ import annotations

import re

from closure.config import ERROR_SCAN_MAX_CHARS, STUCK_LOADING_MS
from closure.tabs.extraction import PageContentExtractor, try_extract
from closure.tabs.models import Tab

ERROR_PATTERNS = [
    re.compile(r"\b404\b", re.IGNORECASE),
    re.compile(r"\b500\b", re.IGNORECASE),
    re.compile(r"\b502\b", re.IGNORECASE),
    re.compile(r"\b503\b", re.IGNORECASE),
    re.compile(r"timed?\s*out", re.IGNORECASE),
    re.compile(r"site\s+can'?t\s+be\s+reached", re.IGNORECASE),
    re.compile(r"ERR_", re.IGNORECASE),
    re.compile(r"DNS_PROBE", re.IGNORECASE),
    re.compile(r"server\s+error", re.IGNORECASE),
    re.compile(r"page\s+not\s+found", re.IGNORECASE),
    re.compile(r"ERR_CONNECTION_REFUSED", re.IGNORECASE),
    re.compile(r"ERR_NAME_NOT_RESOLVED", re.IGNORECASE),
    re.compile(r"ERR_INTERNET_DISCONNECTED", re.IGNORECASE),
    re.compile(r"ERR_CONNECTION_TIMED_OUT", re.IGNORECASE),
    re.compile(r"ERR_SSL_PROTOCOL_ERROR", re.IGNORECASE),
    re.compile(r"ERR_CERT_", re.IGNORECASE),
    re.compile(r"NET::ERR_", re.IGNORECASE),
]

STUCK_REASON = "Stuck loading > 1h"


def match_error_pattern(text: str) -> str | None:
    """Return the first matched error signature in text, or None."""
    if not text:
        return None
    for pattern in ERROR_PATTERNS:
        match = pattern.search(text)
        if match:
            return match.group(0)
    return None


def is_stuck(tab: Tab, now: float) -> bool:
    """Not finished loading, and untouched for over an hour."""
    return tab.is_loading and tab.last_accessed > 0 and now - tab.last_accessed > STUCK_LOADING_MS


def detect_error_fast(tab: Tab, now: float) -> str | None:
    """Title scan and stuck heuristic only. Never blocks."""
    matched = match_error_pattern(tab.title)
    if matched:
        return f"Title match: {matched}"
    if is_stuck(tab, now):
        return STUCK_REASON
    return None


async def detect_error(
    tab: Tab, now: float, extractor: PageContentExtractor | None = None
) -> str | None:
    """
    Return a human-readable reason when the tab looks dead, else None.

    Extraction failures (restricted pages, timeouts) count as "no error".
    """
    reason = detect_error_fast(tab, now)
    if reason or extractor is None or tab.is_loading:
        return reason

    content = await try_extract(extractor, tab.id)
    if content is None:
        return None
    if content.http_status is not None and content.http_status >= 400:
        return f"HTTP {content.http_status}"

    combined = f"{content.title} {content.excerpt}"[:ERROR_SCAN_MAX_CHARS]
    matched = match_error_pattern(combined)
    if matched:
        return f"Title/body match: {matched}"
    return None
