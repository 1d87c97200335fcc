"""
Event router: maps timer names, messages and notification responses to the
pipeline handlers.

The host may kill the process between any two events, so register() and
ensure_schedules() run on every start and are safe to repeat. Every handler
runs isolated: an exception is logged and counted, never propagated into the
timer service or the message channel.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta
from typing import Any

from closure.archival.digest import DigestService
from closure.archival.service import IdleArchivalPipeline
from closure.config import (
    ARCHIVED_NOTIFICATION_PREFIX,
    BADGE_CLEAR_ALARM,
    COLLAPSE_ALARM_PREFIX,
    IDLE_CHECK_ALARM,
    IDLE_CHECK_PERIOD_MINUTES,
    MINUTES_PER_DAY,
    REPRIEVE_NOTIFICATION_PREFIX,
    SNOOZE_ALARM_PREFIX,
    SWEEP_ALARM,
    SWEEP_PERIOD_MINUTES,
    TOPIC_GROUPING_ALARM,
)
from closure.grouping.coordinator import TabGroupCoordinator
from closure.grouping.topics import TopicGroupingPipeline
from closure.observability.logging import get_logger
from closure.observability.telemetry import counter, log_event
from closure.scheduler.timers import TimerService
from closure.storage.adapter import StoreAdapter
from closure.sweeper.service import DeadTabSweeper
from closure.tabs.models import UserConfig, now_ms

logger = get_logger(__name__)

KEEP_BUTTON = 0
SNOOZE_BUTTON = 1

# Returned by _run_exclusive when the job was already running.
SKIPPED = object()


def next_overnight_run(now: float, hour: int) -> float:
    """Epoch ms of the next local-time occurrence of hour:00 strictly after now."""
    current = datetime.fromtimestamp(now / 1000)
    target = current.replace(hour=hour, minute=0, second=0, microsecond=0)
    if target <= current:
        target += timedelta(days=1)
    return target.timestamp() * 1000


def _tab_id_from(notification_id: str, prefix: str) -> int | None:
    if not notification_id.startswith(prefix):
        return None
    head = notification_id[len(prefix) :].split("-", 1)[0]
    try:
        return int(head)
    except ValueError:
        return None


def _int_field(message: dict[str, Any], name: str) -> int | None:
    value = message.get(name)
    if isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


class EventRouter:
    def __init__(
        self,
        *,
        store: StoreAdapter,
        timers: TimerService,
        coordinator: TabGroupCoordinator,
        sweeper: DeadTabSweeper,
        archival: IdleArchivalPipeline,
        topics: TopicGroupingPipeline,
        digest: DigestService,
        clock: Callable[[], float] = now_ms,
    ):
        self.store = store
        self.timers = timers
        self.coordinator = coordinator
        self.sweeper = sweeper
        self.archival = archival
        self.topics = topics
        self.digest = digest
        self.clock = clock
        self._running: set[str] = set()

        self._message_handlers: dict[str, Callable[[dict[str, Any]], Awaitable[dict[str, Any]]]] = {
            "nuclearArchive": self._msg_nuclear_archive,
            "runTopicGrouping": self._msg_run_topic_grouping,
            "rescheduleTopicGrouping": self._msg_reschedule,
            "stayOfExecution": self._msg_stay_of_execution,
            "tabSettled": self._msg_tab_settled,
            "getDigest": self._msg_get_digest,
            "restoreArchived": self._msg_restore_archived,
            "restoreDomain": self._msg_restore_domain,
            "resummarize": self._msg_resummarize,
            "resetStats": self._msg_reset_stats,
            "clearData": self._msg_clear_data,
        }

    # --- Startup ---

    def register(self) -> None:
        """Attach the alarm listener. Repeating it attaches nothing new."""
        self.timers.add_listener(self.on_alarm)

    async def ensure_schedules(self) -> None:
        """
        Create the recurring timers that are missing.

        A topic-grouping timer that already matches the config is left
        running; restarts must not push its next firing back.
        """
        if await self.timers.get(SWEEP_ALARM) is None:
            await self.timers.create(SWEEP_ALARM, period_minutes=SWEEP_PERIOD_MINUTES)
        if await self.timers.get(IDLE_CHECK_ALARM) is None:
            await self.timers.create(IDLE_CHECK_ALARM, period_minutes=IDLE_CHECK_PERIOD_MINUTES)
        config = await self.store.get_config()
        existing = await self.timers.get(TOPIC_GROUPING_ALARM)
        if existing is None or existing.period_minutes != self._topic_period(config):
            await self.reschedule_topic_grouping(config)

    @staticmethod
    def _topic_period(config: UserConfig) -> float | None:
        """Period the topic timer should have, or None when topic grouping is off."""
        if not config.enable_topic_grouping:
            return None
        if config.topic_grouping_overnight_only:
            return MINUTES_PER_DAY
        return config.topic_grouping_interval_minutes

    async def reschedule_topic_grouping(self, config: UserConfig | None = None) -> None:
        """Recompute the topic-grouping timer from the current config."""
        config = config or await self.store.get_config()
        await self.timers.clear(TOPIC_GROUPING_ALARM)
        if not config.enable_topic_grouping:
            return

        if config.topic_grouping_overnight_only:
            when = next_overnight_run(self.clock(), config.topic_grouping_overnight_hour)
            await self.timers.create(
                TOPIC_GROUPING_ALARM, when=when, period_minutes=MINUTES_PER_DAY
            )
        else:
            await self.timers.create(
                TOPIC_GROUPING_ALARM, period_minutes=config.topic_grouping_interval_minutes
            )
        log_event(
            "router.topic_rescheduled",
            overnight=config.topic_grouping_overnight_only,
            interval=config.topic_grouping_interval_minutes,
        )

    # --- Alarms ---

    async def on_alarm(self, name: str) -> None:
        if name.startswith(COLLAPSE_ALARM_PREFIX):
            suffix = name[len(COLLAPSE_ALARM_PREFIX) :]
            if suffix.isdigit():
                await self._guarded(name, self.coordinator.collapse_group(int(suffix)))
            return
        if name.startswith(SNOOZE_ALARM_PREFIX):
            # Expiry is observed by the timer's absence; nothing to do.
            logger.debug("Snooze expired: %s", name)
            return

        jobs: dict[str, Callable[[], Awaitable[Any]]] = {
            SWEEP_ALARM: self.sweeper.run_sweep,
            BADGE_CLEAR_ALARM: self.sweeper.clear_badge,
            IDLE_CHECK_ALARM: self.archival.run_idle_check,
            TOPIC_GROUPING_ALARM: self.topics.run,
        }
        job = jobs.get(name)
        if job is None:
            counter("router.unknown_alarm")
            logger.warning("Unknown alarm: %s", name)
            return
        await self._run_exclusive(name, job)

    async def _run_exclusive(self, job_name: str, job: Callable[[], Awaitable[Any]]) -> Any:
        """Skip a run when the previous run of the same job is still going."""
        if job_name in self._running:
            counter("router.overlap_skipped")
            logger.info("Skipping %s, previous run still in progress", job_name)
            return SKIPPED
        self._running.add(job_name)
        try:
            return await self._guarded(job_name, job())
        finally:
            self._running.discard(job_name)

    async def _guarded(self, label: str, awaitable: Awaitable[Any]) -> Any:
        try:
            return await awaitable
        except Exception as e:
            counter("router.handler_error")
            logger.exception("Handler %s failed: %s", label, e)
            return None

    # --- Messages ---

    async def on_message(self, message: dict[str, Any]) -> dict[str, Any]:
        action = message.get("action") if isinstance(message, dict) else None
        handler = self._message_handlers.get(action) if isinstance(action, str) else None
        if handler is None:
            counter("router.unknown_action")
            return {"ok": False, "error": "unknown_action"}
        try:
            return await handler(message)
        except Exception as e:
            counter("router.handler_error")
            logger.exception("Message %s failed: %s", action, e)
            return {"ok": False, "error": "internal_error"}

    async def _msg_nuclear_archive(self, message: dict[str, Any]) -> dict[str, Any]:
        result = await self._run_exclusive("nuclearArchive", self.archival.run_nuclear_archive)
        if result is SKIPPED:
            return {"ok": False, "error": "busy", "count": 0}
        if result is None:
            return {"ok": False, "error": "internal_error", "count": 0}
        return {"ok": True, "count": result.count}

    async def _msg_run_topic_grouping(self, message: dict[str, Any]) -> dict[str, Any]:
        result = await self._run_exclusive(
            TOPIC_GROUPING_ALARM, lambda: self.topics.run(force=True)
        )
        if result is SKIPPED:
            return {"ok": False, "error": "busy"}
        if result is None:
            return {"ok": False, "error": "internal_error"}
        return {
            "ok": True,
            "status": result.status,
            "groups": [{"title": g.title, "tabIds": g.tab_ids} for g in result.groups],
        }

    async def _msg_reschedule(self, message: dict[str, Any]) -> dict[str, Any]:
        await self.reschedule_topic_grouping()
        return {"ok": True}

    async def _msg_stay_of_execution(self, message: dict[str, Any]) -> dict[str, Any]:
        tab_id = _int_field(message, "tabId")
        decision = message.get("decision")
        if tab_id is None or decision not in ("keep", "snooze"):
            return {"ok": False, "error": "invalid_message"}
        if decision == "keep":
            await self.archival.keep(tab_id)
        else:
            await self.archival.snooze(tab_id)
        return {"ok": True}

    async def _msg_tab_settled(self, message: dict[str, Any]) -> dict[str, Any]:
        tab_id = _int_field(message, "tabId")
        if tab_id is None:
            return {"ok": False, "error": "invalid_message"}
        result = await self.coordinator.on_tab_settled(tab_id)
        if result is None:
            return {"ok": True, "grouped": False}
        return {"ok": True, "grouped": True, "groupId": result.group_id, "created": result.created}

    async def _msg_get_digest(self, message: dict[str, Any]) -> dict[str, Any]:
        return {"ok": True, **await self.digest.digest()}

    async def _msg_restore_archived(self, message: dict[str, Any]) -> dict[str, Any]:
        timestamp = _int_field(message, "timestamp")
        if timestamp is None:
            return {"ok": False, "error": "invalid_message"}
        return {"ok": await self.digest.restore_archived(timestamp)}

    async def _msg_restore_domain(self, message: dict[str, Any]) -> dict[str, Any]:
        domain = message.get("domain")
        if not isinstance(domain, str):
            return {"ok": False, "error": "invalid_message"}
        return {"ok": True, "count": await self.digest.restore_domain(domain)}

    async def _msg_resummarize(self, message: dict[str, Any]) -> dict[str, Any]:
        timestamp = _int_field(message, "timestamp")
        if timestamp is None:
            return {"ok": False, "error": "invalid_message"}
        entry = await self.digest.resummarize(timestamp)
        if entry is None:
            return {"ok": False, "error": "not_found"}
        return {"ok": True, "entry": entry.to_store()}

    async def _msg_reset_stats(self, message: dict[str, Any]) -> dict[str, Any]:
        stats = await self.store.reset_stats()
        return {"ok": True, "stats": stats.to_store()}

    async def _msg_clear_data(self, message: dict[str, Any]) -> dict[str, Any]:
        categories = message.get("categories") or ["archived", "swept", "stats"]
        if not isinstance(categories, list):
            return {"ok": False, "error": "invalid_message"}
        cleared = await self.store.clear(str(c) for c in categories)
        return {"ok": True, "cleared": cleared}

    # --- Notifications ---

    async def on_notification_button(self, notification_id: str, button_index: int) -> bool:
        """Route a reprieve button. Returns True when the click was handled."""
        tab_id = _tab_id_from(notification_id, REPRIEVE_NOTIFICATION_PREFIX)
        if tab_id is None:
            return False
        if button_index == KEEP_BUTTON:
            await self._guarded(notification_id, self.archival.keep(tab_id))
        elif button_index == SNOOZE_BUTTON:
            await self._guarded(notification_id, self.archival.snooze(tab_id))
        else:
            return False
        return True

    async def on_notification_closed(self, notification_id: str) -> bool:
        tab_id = _tab_id_from(notification_id, REPRIEVE_NOTIFICATION_PREFIX)
        if tab_id is not None:
            await self._guarded(notification_id, self.archival.reprieve_dismissed(tab_id))
            return True
        if notification_id.startswith(ARCHIVED_NOTIFICATION_PREFIX):
            return True
        return False
