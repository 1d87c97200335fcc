"""
Named one-shot and periodic timers.

Timers are identified by name; creating a timer with an existing name
replaces it. A timer's existence is queryable, which is how snooze markers
work: "snooze-<tabId>" exists means the tab is snoozed.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Protocol

from closure.observability.logging import get_logger
from closure.tabs.models import now_ms

logger = get_logger(__name__)

TimerListener = Callable[[str], Awaitable[None]]


@dataclass
class TimerInfo:
    name: str
    scheduled_time: float  # epoch ms of the next firing
    period_minutes: float | None = None


class TimerService(Protocol):
    async def create(
        self,
        name: str,
        *,
        delay_minutes: float | None = None,
        period_minutes: float | None = None,
        when: float | None = None,
    ) -> None: ...

    async def get(self, name: str) -> TimerInfo | None: ...

    async def clear(self, name: str) -> bool: ...

    async def get_all(self) -> list[TimerInfo]: ...

    def add_listener(self, listener: TimerListener) -> None: ...


def first_delay_ms(
    now: float,
    delay_minutes: float | None,
    period_minutes: float | None,
    when: float | None,
) -> float:
    """Milliseconds until the first firing, following the precedence when > delay > period."""
    if when is not None:
        return max(0.0, when - now)
    if delay_minutes is not None:
        return max(0.0, delay_minutes * 60_000)
    if period_minutes is not None:
        return period_minutes * 60_000
    raise ValueError("timer needs when, delay_minutes or period_minutes")


class AsyncioTimerService:
    """TimerService driven by the running asyncio event loop."""

    def __init__(self, clock: Callable[[], float] = now_ms):
        self._clock = clock
        self._timers: dict[str, TimerInfo] = {}
        self._handles: dict[str, asyncio.TimerHandle] = {}
        self._listeners: list[TimerListener] = []
        self._tasks: set[asyncio.Task] = set()

    async def create(
        self,
        name: str,
        *,
        delay_minutes: float | None = None,
        period_minutes: float | None = None,
        when: float | None = None,
    ) -> None:
        now = self._clock()
        delay_ms = first_delay_ms(now, delay_minutes, period_minutes, when)
        self._cancel_handle(name)
        self._timers[name] = TimerInfo(name, now + delay_ms, period_minutes)
        self._schedule(name, delay_ms)

    async def get(self, name: str) -> TimerInfo | None:
        return self._timers.get(name)

    async def clear(self, name: str) -> bool:
        self._cancel_handle(name)
        return self._timers.pop(name, None) is not None

    async def get_all(self) -> list[TimerInfo]:
        return list(self._timers.values())

    def add_listener(self, listener: TimerListener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def close(self) -> None:
        """Cancel every pending timer (process shutdown)."""
        for handle in self._handles.values():
            handle.cancel()
        self._handles.clear()
        self._timers.clear()

    def _schedule(self, name: str, delay_ms: float) -> None:
        loop = asyncio.get_running_loop()
        self._handles[name] = loop.call_later(delay_ms / 1000, self._fire, name)

    def _cancel_handle(self, name: str) -> None:
        handle = self._handles.pop(name, None)
        if handle is not None:
            handle.cancel()

    def _fire(self, name: str) -> None:
        info = self._timers.get(name)
        if info is None:
            return

        if info.period_minutes:
            period_ms = info.period_minutes * 60_000
            info.scheduled_time = self._clock() + period_ms
            self._schedule(name, period_ms)
        else:
            self._timers.pop(name, None)
            self._handles.pop(name, None)

        for listener in list(self._listeners):
            task = asyncio.ensure_future(listener(name))
            self._tasks.add(task)
            task.add_done_callback(self._on_listener_done)

    def _on_listener_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Timer listener failed: %s", task.exception())
