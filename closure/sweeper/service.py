"""
Dead-tab sweeper.

Stateless per run. Every removal is logged to the store before the tab is
closed, so a crash in between leaves a still-open tab, never a missing
log entry.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field

from closure.config import BADGE_CLEAR_ALARM, BADGE_CLEAR_DELAY_MINUTES
from closure.infrastructure.inflight import InFlightRegistry
from closure.observability.logging import get_logger
from closure.observability.telemetry import counter, log_event, time_block
from closure.scheduler.notifications import Notifier
from closure.scheduler.timers import TimerService
from closure.storage.adapter import StoreAdapter
from closure.storage.kv import StoreError
from closure.sweeper.detector import STUCK_REASON, detect_error, is_stuck
from closure.tabs.extraction import PageContentExtractor
from closure.tabs.models import SweptEntry, Tab, UserConfig, now_ms
from closure.tabs.provider import TabProvider, TabProviderError
from closure.tabs.safety import evaluate
from closure.utils.redaction import redact_title

logger = get_logger(__name__)


@dataclass
class SweepResult:
    swept: list[SweptEntry] = field(default_factory=list)
    errors: int = 0

    @property
    def count(self) -> int:
        return len(self.swept)


class DeadTabSweeper:
    def __init__(
        self,
        provider: TabProvider,
        store: StoreAdapter,
        notifier: Notifier,
        timers: TimerService,
        extractor: PageContentExtractor | None = None,
        inflight: InFlightRegistry | None = None,
        clock: Callable[[], float] = now_ms,
    ):
        self.provider = provider
        self.store = store
        self.notifier = notifier
        self.timers = timers
        self.extractor = extractor
        self.inflight = inflight if inflight is not None else InFlightRegistry()
        self.clock = clock

    async def run_sweep(self) -> SweepResult:
        """Scan every tab once; sweep the dead ones and badge the count."""
        result = SweepResult()
        with time_block("sweeper.run"):
            config = await self.store.get_config()
            tabs = await self.provider.query_tabs()

            for tab in tabs:
                if tab.id in self.inflight:
                    continue
                try:
                    entry = await self._inspect(tab, config)
                    if entry is not None:
                        await self._sweep(tab, entry)
                        result.swept.append(entry)
                except StoreError as e:
                    result.errors += 1
                    counter("sweeper.store_error")
                    logger.error("Could not log sweep of tab %s, leaving it open: %s", tab.id, e)
                except Exception as e:
                    result.errors += 1
                    counter("sweeper.candidate_error")
                    logger.exception("Sweep failed for tab %s: %s", tab.id, e)

        if result.count:
            await self._signal_badge(result.count)
        log_event("sweeper.completed", scanned=len(tabs), swept=result.count, errors=result.errors)
        return result

    async def _inspect(self, tab: Tab, config: UserConfig) -> SweptEntry | None:
        eligibility = evaluate(tab, config, stage="sweeper")
        if eligibility.protected:
            return None

        now = self.clock()
        if not eligibility.groupable:
            # Internal pages: only the stuck heuristic applies.
            reason = STUCK_REASON if is_stuck(tab, now) else None
        elif eligibility.whitelisted:
            return None
        else:
            reason = await detect_error(tab, now, self.extractor)

        if reason is None:
            return None
        return SweptEntry(url=tab.url, title=tab.title, timestamp=int(now), reason=reason)

    async def _sweep(self, tab: Tab, entry: SweptEntry) -> None:
        await self.store.record_sweep(entry)
        try:
            await self.provider.close_tab(tab.id)
        except TabProviderError as e:
            logger.debug("Swept tab %s already gone: %s", tab.id, e)
        counter("sweeper.swept")
        logger.info("Swept tab %s (%s): %s", tab.id, redact_title(tab.title), entry.reason)

    async def _signal_badge(self, count: int) -> None:
        await self.notifier.set_badge_text(str(count))
        # Re-creating the timer replaces any pending clear; last sweep wins.
        await self.timers.create(BADGE_CLEAR_ALARM, delay_minutes=BADGE_CLEAR_DELAY_MINUTES)

    async def clear_badge(self) -> None:
        await self.notifier.set_badge_text("")
