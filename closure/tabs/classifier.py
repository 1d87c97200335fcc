"""
Grouping-key derivation and deterministic group colors.

A grouping key is the registrable domain of an http(s) URL (last two labels,
or last three for known multi-part public suffixes), or an AI-chosen topic
label. Colors are a pure function of the key, so no color table is stored.
"""

from __future__ import annotations

import ipaddress
import urllib.parse

from closure.tabs.models import GroupColor

GROUPABLE_SCHEMES = frozenset({"http", "https"})

# Public suffixes that span two labels; the registrable domain takes three.
MULTI_PART_SUFFIXES = frozenset(
    {
        "co.uk",
        "org.uk",
        "ac.uk",
        "gov.uk",
        "me.uk",
        "ltd.uk",
        "plc.uk",
        "com.au",
        "net.au",
        "org.au",
        "edu.au",
        "gov.au",
        "co.nz",
        "org.nz",
        "co.jp",
        "ne.jp",
        "or.jp",
        "co.kr",
        "co.in",
        "co.za",
        "com.br",
        "com.mx",
        "com.ar",
        "com.cn",
        "com.hk",
        "com.sg",
        "com.tr",
        "com.tw",
    }
)

PALETTE: tuple[GroupColor, ...] = tuple(GroupColor)


def _is_ip_address(host: str) -> bool:
    try:
        ipaddress.ip_address(host)
    except ValueError:
        return False
    return True


def hostname_of(url: str) -> str | None:
    """Return the lowercased hostname of an http(s) URL, without 'www.'."""
    try:
        parsed = urllib.parse.urlsplit((url or "").strip())
        host = parsed.hostname
    except ValueError:
        return None

    if (parsed.scheme or "").lower() not in GROUPABLE_SCHEMES:
        return None
    host = (host or "").lower().rstrip(".")
    if not host:
        return None
    if host.startswith("www."):
        host = host[4:]
    return host or None


def grouping_key(url: str) -> str | None:
    """
    Derive the grouping key for a tab URL.

    Returns None for non-groupable URLs (chrome://, about:, file://, ...).

    Examples:
        https://a.example.com/x   -> example.com
        https://www.bbc.co.uk/news -> bbc.co.uk
        http://localhost:3000      -> localhost
    """
    host = hostname_of(url)
    if host is None:
        return None

    if _is_ip_address(host) or "." not in host:
        return host

    labels = host.split(".")
    if len(labels) >= 3 and ".".join(labels[-2:]) in MULTI_PART_SUFFIXES:
        return ".".join(labels[-3:])
    return ".".join(labels[-2:])


def string_hash(value: str) -> int:
    """
    Order-sensitive 32-bit string hash (h = h*31 + code, signed wrap).

    Matches the hash the browser-side surfaces use, so both sides agree on
    a group's color.
    """
    h = 0
    for ch in value:
        h = ((h << 5) - h + ord(ch)) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return h


def color_for_key(key: str) -> GroupColor:
    """Deterministic palette color for a grouping key."""
    return PALETTE[abs(string_hash(key)) % len(PALETTE)]


def group_title(key: str) -> str:
    """Display title of a domain group."""
    return key.upper()
