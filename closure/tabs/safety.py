"""
Safety filter: the non-negotiable exclusions applied before any automated
action (grouping, sweeping, archival).

Pinned and audible tabs are protected; tabs whose grouping key (or host) is
on the user whitelist are left alone.
"""

from __future__ import annotations

from dataclasses import dataclass

from closure.observability.telemetry import counter
from closure.tabs.classifier import grouping_key, hostname_of
from closure.tabs.models import Tab, UserConfig


def is_protected(tab: Tab) -> bool:
    """Pinned or audio-playing tabs are never touched."""
    return bool(tab.pinned or tab.audible)


def is_whitelisted(key: str | None, config: UserConfig, url: str | None = None) -> bool:
    """
    True when the grouping key is whitelisted.

    A whitelist entry naming a subdomain (docs.example.com) also matches
    tabs on that host or below it, even though their key is example.com.
    """
    if not key:
        return False
    whitelist = config.whitelist
    if key in whitelist:
        return True
    if url is None:
        return False
    host = hostname_of(url)
    if not host:
        return False
    return any(host == entry or host.endswith("." + entry) for entry in whitelist)


@dataclass(frozen=True)
class Eligibility:
    """Outcome of running one tab through the safety filter."""

    key: str | None
    protected: bool
    whitelisted: bool

    @property
    def groupable(self) -> bool:
        return self.key is not None

    @property
    def allowed(self) -> bool:
        """Eligible for key-based automation (grouping, archival)."""
        return not self.protected and not self.whitelisted and self.key is not None


def evaluate(tab: Tab, config: UserConfig, *, stage: str = "") -> Eligibility:
    """
    Apply the safety filter in its fixed order: protection, then key, then
    whitelist. Protected tabs short-circuit before the URL is even parsed.
    """
    if is_protected(tab):
        if stage:
            counter(f"{stage}.skipped_protected")
        return Eligibility(key=None, protected=True, whitelisted=False)

    key = grouping_key(tab.url)
    whitelisted = is_whitelisted(key, config, tab.url)
    if whitelisted and stage:
        counter(f"{stage}.skipped_whitelisted")
    return Eligibility(key=key, protected=False, whitelisted=whitelisted)
