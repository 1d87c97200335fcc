"""
Orchestrator wiring.

One TabOrchestrator owns every piece of mutable runtime state (in-flight
registry, store lock, run guards), so independent instances never share it.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from closure.archival.digest import DigestService
from closure.archival.service import IdleArchivalPipeline
from closure.archival.summarizer import Summarizer
from closure.grouping.coordinator import TabGroupCoordinator
from closure.grouping.topics import TopicGroupingPipeline
from closure.infrastructure.inflight import InFlightRegistry
from closure.llm.client import AIClient
from closure.observability.logging import get_logger
from closure.observability.telemetry import log_event
from closure.scheduler.notifications import Notifier
from closure.scheduler.router import EventRouter
from closure.scheduler.timers import TimerService
from closure.storage.adapter import StoreAdapter
from closure.storage.kv import KeyValueStore
from closure.sweeper.service import DeadTabSweeper
from closure.tabs.extraction import PageContentExtractor
from closure.tabs.models import now_ms
from closure.tabs.provider import TabProvider

logger = get_logger(__name__)


class TabOrchestrator:
    def __init__(
        self,
        *,
        provider: TabProvider,
        store: KeyValueStore | StoreAdapter,
        ai: AIClient,
        notifier: Notifier,
        timers: TimerService,
        extractor: PageContentExtractor | None = None,
        clock: Callable[[], float] = now_ms,
    ):
        self.provider = provider
        self.store = store if isinstance(store, StoreAdapter) else StoreAdapter(store)
        self.ai = ai
        self.notifier = notifier
        self.timers = timers
        self.extractor = extractor
        self.clock = clock
        self.inflight = InFlightRegistry()

        self.summarizer = Summarizer(ai)
        self.coordinator = TabGroupCoordinator(provider, self.store, timers)
        self.sweeper = DeadTabSweeper(
            provider,
            self.store,
            notifier,
            timers,
            extractor=extractor,
            inflight=self.inflight,
            clock=clock,
        )
        self.archival = IdleArchivalPipeline(
            provider,
            self.store,
            notifier,
            timers,
            self.summarizer,
            extractor=extractor,
            inflight=self.inflight,
            clock=clock,
        )
        self.topics = TopicGroupingPipeline(provider, self.store, ai, extractor=extractor)
        self.digest = DigestService(provider, self.store, self.summarizer)
        self.router = EventRouter(
            store=self.store,
            timers=timers,
            coordinator=self.coordinator,
            sweeper=self.sweeper,
            archival=self.archival,
            topics=self.topics,
            digest=self.digest,
            clock=clock,
        )

    async def start(self) -> None:
        """
        Process start: initialize or migrate the store, attach listeners and
        make sure the recurring timers exist. Safe to call on every start.
        """
        version = await self.store.ensure_schema()
        self.router.register()
        await self.router.ensure_schedules()
        log_event("orchestrator.started", schema_version=version)

    async def handle_message(self, message: dict[str, Any]) -> dict[str, Any]:
        return await self.router.on_message(message)

    async def handle_alarm(self, name: str) -> None:
        await self.router.on_alarm(name)

    async def handle_notification_button(self, notification_id: str, button_index: int) -> bool:
        return await self.router.on_notification_button(notification_id, button_index)

    async def handle_notification_closed(self, notification_id: str) -> bool:
        return await self.router.on_notification_closed(notification_id)
