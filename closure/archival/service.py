"""
Idle archival ("graceful exit").

A tab approaching the idle threshold first gets a reprieve notification
(Keep / Snooze 24h) during the lead window before it; once past the
threshold it is archived unless the user answered. Nuclear archive skips
the reprieve and uses a fixed, shorter threshold.

Per candidate, in order:
    claim in-flight -> re-verify tab -> durable marker -> summarize
    -> record entry + stats -> close tab -> notify -> (finally) clear
    marker and release in-flight

Candidates are processed one at a time; the store has no atomic update.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field

from closure.archival.summarizer import Summarizer
from closure.config import (
    ARCHIVED_NOTIFICATION_PREFIX,
    BADGE_CLEAR_ALARM,
    BADGE_CLEAR_DELAY_MINUTES,
    NUCLEAR_IDLE_THRESHOLD_HOURS,
    REPRIEVE_BUTTONS,
    REPRIEVE_LEAD_MINUTES,
    REPRIEVE_NOTIFICATION_PREFIX,
    SNOOZE_ALARM_PREFIX,
    SNOOZE_DURATION_MINUTES,
)
from closure.infrastructure.inflight import InFlightRegistry
from closure.observability.logging import get_logger
from closure.observability.telemetry import counter, log_event, time_block
from closure.scheduler.notifications import Notifier
from closure.scheduler.timers import TimerService
from closure.storage.adapter import ReprieveState, StoreAdapter
from closure.storage.kv import StoreError
from closure.tabs.extraction import PageContentExtractor, try_extract
from closure.tabs.models import ArchivedEntry, Tab, UserConfig, now_ms
from closure.tabs.provider import TabProvider, TabProviderError
from closure.tabs.safety import evaluate
from closure.utils.redaction import redact_title

logger = get_logger(__name__)

MS_PER_HOUR = 60 * 60 * 1000


def snooze_alarm_name(tab_id: int) -> str:
    return f"{SNOOZE_ALARM_PREFIX}{tab_id}"


def reprieve_notification_id(tab_id: int) -> str:
    return f"{REPRIEVE_NOTIFICATION_PREFIX}{tab_id}"


def archived_notification_id(tab_id: int, timestamp: int) -> str:
    return f"{ARCHIVED_NOTIFICATION_PREFIX}{tab_id}-{timestamp}"


@dataclass
class ArchivalResult:
    archived: list[ArchivedEntry] = field(default_factory=list)
    reprieved: list[int] = field(default_factory=list)
    errors: int = 0

    @property
    def count(self) -> int:
        return len(self.archived)


class IdleArchivalPipeline:
    def __init__(
        self,
        provider: TabProvider,
        store: StoreAdapter,
        notifier: Notifier,
        timers: TimerService,
        summarizer: Summarizer,
        extractor: PageContentExtractor | None = None,
        inflight: InFlightRegistry | None = None,
        clock: Callable[[], float] = now_ms,
    ):
        self.provider = provider
        self.store = store
        self.notifier = notifier
        self.timers = timers
        self.summarizer = summarizer
        self.extractor = extractor
        self.inflight = inflight if inflight is not None else InFlightRegistry()
        self.clock = clock
        self._last_timestamp = 0
        self._cancelled: set[int] = set()

    # --- Runs ---

    async def run_idle_check(self) -> ArchivalResult:
        """Periodic idle scan using the configured threshold, with reprieve."""
        with time_block("archival.idle_check"):
            config = await self.store.get_config()
            result = await self._run(
                config, threshold_hours=config.idle_threshold_hours, with_reprieve=True
            )
            await self.store.prune_archived(config.archive_retention_days, int(self.clock()))
        log_event(
            "archival.idle_check",
            archived=result.count,
            reprieved=len(result.reprieved),
            errors=result.errors,
        )
        return result

    async def run_nuclear_archive(self) -> ArchivalResult:
        """User-triggered sweep of everything idle past the fixed nuclear threshold."""
        with time_block("archival.nuclear"):
            config = await self.store.get_config()
            result = await self._run(
                config, threshold_hours=NUCLEAR_IDLE_THRESHOLD_HOURS, with_reprieve=False
            )
        if result.count:
            await self.notifier.set_badge_text(str(result.count))
            await self.timers.create(BADGE_CLEAR_ALARM, delay_minutes=BADGE_CLEAR_DELAY_MINUTES)
        log_event("archival.nuclear", archived=result.count, errors=result.errors)
        return result

    async def _run(
        self, config: UserConfig, *, threshold_hours: float, with_reprieve: bool
    ) -> ArchivalResult:
        result = ArchivalResult()
        tabs = await self.provider.query_tabs()
        await self._recover_markers(tabs)

        reprieves = await self.store.get_reprieve_state()
        live_ids = {t.id for t in tabs}
        stale = (set(reprieves.pending) | set(reprieves.kept)) - live_ids
        if stale:
            await self.store.forget_tabs(stale)
        await self._expire_answered_reprieves(tabs, reprieves)

        lead_minutes = REPRIEVE_LEAD_MINUTES if with_reprieve else 0
        to_archive, to_warn = await self._select(
            tabs, config, reprieves, threshold_hours, lead_minutes
        )

        for tab in to_warn:
            if tab.id in reprieves.pending:
                continue
            try:
                await self._raise_reprieve(tab)
                result.reprieved.append(tab.id)
            except Exception as e:
                result.errors += 1
                logger.warning("Could not raise reprieve for tab %s: %s", tab.id, e)

        for tab in to_archive:
            try:
                entry = await self._archive_one(tab.id, config)
                if entry is not None:
                    result.archived.append(entry)
            except Exception as e:
                result.errors += 1
                counter("archival.candidate_error")
                logger.exception("Archival failed for tab %s: %s", tab.id, e)
        return result

    async def _select(
        self,
        tabs: list[Tab],
        config: UserConfig,
        reprieves: ReprieveState,
        threshold_hours: float,
        lead_minutes: float,
    ) -> tuple[list[Tab], list[Tab]]:
        """Split eligible tabs into (past the threshold, inside the reprieve lead window)."""
        now = self.clock()
        threshold_ms = threshold_hours * MS_PER_HOUR
        warn_ms = max(0.0, threshold_ms - lead_minutes * 60_000)
        to_archive: list[Tab] = []
        to_warn: list[Tab] = []
        for tab in tabs:
            if not evaluate(tab, config, stage="archival").allowed:
                continue
            if tab.id in self.inflight:
                continue
            if await self.is_snoozed(tab.id):
                counter("archival.skipped_snoozed")
                continue
            idle_ms = now - max(tab.last_accessed, reprieves.kept.get(tab.id, 0))
            if idle_ms >= threshold_ms:
                to_archive.append(tab)
            elif lead_minutes and idle_ms >= warn_ms:
                to_warn.append(tab)
        return to_archive, to_warn

    # --- One candidate ---

    async def _archive_one(self, tab_id: int, config: UserConfig) -> ArchivedEntry | None:
        if not self.inflight.claim(tab_id):
            return None
        try:
            try:
                tab = await self.provider.get_tab(tab_id)
            except TabProviderError:
                counter("archival.tab_vanished")
                return None
            if not evaluate(tab, config).allowed:
                # Pinned, muted-turned-audible or whitelisted since selection.
                return None

            await self.store.mark_archiving(tab_id, tab.url, int(self.clock()))

            content = None
            if config.enable_rich_page_analysis:
                content = await try_extract(self.extractor, tab_id)
            summary = await self.summarizer.summarize(
                tab.title, tab.url, content, use_ai=config.enable_ai
            )
            if tab_id in self._cancelled:
                # Keep or snooze arrived while summarizing; nothing recorded yet.
                counter("archival.cancelled")
                return None

            entry = ArchivedEntry(
                url=tab.url,
                title=tab.title,
                favicon=tab.fav_icon_url or (content.favicon_url if content else "") or "",
                timestamp=self._next_timestamp(),
                summary=summary.text,
                summary_type=summary.summary_type,
                domain=evaluate(tab, config).key or "",
            )
            await self.store.record_archival(entry)
            await self._close(tab_id)
            await self._finish(tab, entry)
            return entry
        finally:
            try:
                await self.store.clear_archiving(tab_id)
            except StoreError as e:
                logger.warning("Could not clear archiving marker for tab %s: %s", tab_id, e)
            self.inflight.release(tab_id)
            self._cancelled.discard(tab_id)

    async def _close(self, tab_id: int) -> None:
        try:
            await self.provider.close_tab(tab_id)
        except TabProviderError as e:
            logger.debug("Archived tab %s already gone: %s", tab_id, e)

    async def _finish(self, tab: Tab, entry: ArchivedEntry) -> None:
        await self.store.forget_tabs([tab.id])
        await self.notifier.clear(reprieve_notification_id(tab.id))
        await self.notifier.notify(
            archived_notification_id(tab.id, entry.timestamp),
            "Tab archived",
            f'"{tab.title or tab.url}" was archived. Find it in your digest.',
        )
        counter("archival.archived")
        counter(f"archival.summary_{entry.summary_type}")
        logger.info("Archived tab %s (%s)", tab.id, redact_title(tab.title))

    def _next_timestamp(self) -> int:
        """Entries are located by timestamp, so two in one run must differ."""
        timestamp = max(int(self.clock()), self._last_timestamp + 1)
        self._last_timestamp = timestamp
        return timestamp

    async def _recover_markers(self, tabs: list[Tab]) -> None:
        """
        Settle in-progress markers left by a process that died mid-archival.

        If the entry was already recorded, only the close is redone. Otherwise
        the marker is dropped and the tab goes through normal selection.
        """
        markers = await self.store.get_archiving()
        if not markers:
            return
        by_id = {t.id: t for t in tabs}
        archived = None
        for tab_id, marker in markers.items():
            if tab_id in self.inflight:
                continue
            tab = by_id.get(tab_id)
            if tab is not None and tab.url == marker.get("url"):
                if archived is None:
                    archived = await self.store.get_archived()
                started_at = int(marker.get("startedAt") or 0)
                if any(e.url == tab.url and e.timestamp >= started_at for e in archived):
                    await self._close(tab_id)
                    counter("archival.recovered_close")
                    log_event("archival.marker_recovered", tab_id=tab_id)
            await self.store.clear_archiving(tab_id)

    # --- Reprieve protocol ---

    async def _raise_reprieve(self, tab: Tab) -> None:
        await self.notifier.notify(
            reprieve_notification_id(tab.id),
            "Closing an idle tab",
            f'"{tab.title or tab.url}" has not been used in a while and will be archived.',
            buttons=REPRIEVE_BUTTONS,
        )
        await self.store.mark_reprieve_pending(tab.id, int(self.clock()))
        counter("archival.reprieve_raised")

    async def _expire_answered_reprieves(self, tabs: list[Tab], reprieves: ReprieveState) -> None:
        """A tab used again after its warning starts a new idle episode with its own warning."""
        for tab in tabs:
            notified_at = reprieves.pending.get(tab.id)
            if notified_at is None or tab.last_accessed <= notified_at:
                continue
            await self.store.resolve_reprieve(tab.id)
            await self.notifier.clear(reprieve_notification_id(tab.id))
            del reprieves.pending[tab.id]
            counter("archival.reprieve_expired")

    def _cancel(self, tab_id: int) -> None:
        if tab_id in self.inflight:
            self._cancelled.add(tab_id)
        self.inflight.release(tab_id)

    async def is_snoozed(self, tab_id: int) -> bool:
        return await self.timers.get(snooze_alarm_name(tab_id)) is not None

    async def keep(self, tab_id: int) -> None:
        """Leave the tab alone until it goes idle again from now."""
        self._cancel(tab_id)
        await self.store.resolve_reprieve(tab_id, kept_at=int(self.clock()))
        await self.notifier.clear(reprieve_notification_id(tab_id))
        counter("archival.kept")
        log_event("archival.kept", tab_id=tab_id)

    async def snooze(self, tab_id: int) -> None:
        """Skip the tab for the fixed snooze duration."""
        self._cancel(tab_id)
        await self.timers.create(snooze_alarm_name(tab_id), delay_minutes=SNOOZE_DURATION_MINUTES)
        await self.store.resolve_reprieve(tab_id)
        await self.notifier.clear(reprieve_notification_id(tab_id))
        counter("archival.snoozed")
        log_event("archival.snoozed", tab_id=tab_id)

    async def reprieve_dismissed(self, tab_id: int) -> None:
        """Dismissed without a choice: the reprieve stays pending and the tab is archived once idle past the threshold."""
        counter("archival.reprieve_dismissed")
        log_event("archival.reprieve_dismissed", tab_id=tab_id)
