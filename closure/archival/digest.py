"""Digest support: browse, restore and re-summarize archived tabs."""

from __future__ import annotations

from collections import defaultdict
from typing import Any

from closure.archival.summarizer import Summarizer
from closure.observability.logging import get_logger
from closure.observability.telemetry import counter, log_event
from closure.storage.adapter import StoreAdapter
from closure.tabs.models import ArchivedEntry
from closure.tabs.provider import TabProvider, TabProviderError

logger = get_logger(__name__)


class DigestService:
    def __init__(self, provider: TabProvider, store: StoreAdapter, summarizer: Summarizer):
        self.provider = provider
        self.store = store
        self.summarizer = summarizer

    async def digest(self) -> dict[str, Any]:
        """
        Archived entries grouped by domain (domains sorted, newest entry first)
        plus the running stats.
        """
        archived = await self.store.get_archived()
        stats = await self.store.get_stats()

        by_domain: dict[str, list[ArchivedEntry]] = defaultdict(list)
        for entry in archived:
            by_domain[entry.domain].append(entry)

        groups = [
            {
                "domain": domain,
                "entries": [
                    e.to_store() for e in sorted(entries, key=lambda e: e.timestamp, reverse=True)
                ],
            }
            for domain, entries in sorted(by_domain.items())
        ]
        return {
            "groups": groups,
            "totalArchived": len(archived),
            "topics": len(by_domain),
            "stats": stats.to_store(),
        }

    async def _find(self, timestamp: int) -> ArchivedEntry | None:
        for entry in await self.store.get_archived():
            if entry.timestamp == timestamp:
                return entry
        return None

    async def restore_archived(self, timestamp: int) -> bool:
        """Reopen one archived entry in a background tab. The entry is kept."""
        entry = await self._find(timestamp)
        if entry is None:
            return False
        try:
            await self.provider.create_tab(entry.url, active=False)
        except TabProviderError as e:
            logger.warning("Restore failed: %s", e)
            return False
        counter("digest.restored")
        return True

    async def restore_domain(self, domain: str) -> int:
        """Reopen every archived entry of a domain. Returns how many opened."""
        restored = 0
        for entry in await self.store.get_archived():
            if entry.domain != domain:
                continue
            try:
                await self.provider.create_tab(entry.url, active=False)
                restored += 1
            except TabProviderError as e:
                logger.warning("Restore failed for one %s entry: %s", domain, e)
        counter("digest.restored", restored)
        log_event("digest.domain_restored", domain=domain, count=restored)
        return restored

    async def resummarize(self, timestamp: int) -> ArchivedEntry | None:
        """
        Re-run summarization for one entry. The tab is closed, so only the
        stored title and url are available.
        """
        entry = await self._find(timestamp)
        if entry is None:
            return None
        config = await self.store.get_config()
        summary = await self.summarizer.summarize(entry.title, entry.url, use_ai=config.enable_ai)
        await self.store.update_archived_summary(timestamp, summary.text, summary.summary_type)
        counter("digest.resummarized")
        return entry.model_copy(
            update={"summary": summary.text, "summary_type": summary.summary_type.value}
        )
