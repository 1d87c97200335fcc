"""Event routing: timers, messages and notification responses."""

from __future__ import annotations

import asyncio
from datetime import datetime

from fakes import HOUR_MS

from closure.config import IDLE_CHECK_ALARM, SWEEP_ALARM, TOPIC_GROUPING_ALARM
from closure.observability.telemetry import get_counter
from closure.scheduler.router import next_overnight_run


def test_start_creates_recurring_timers_once(orchestrator, timers):
    async def scenario():
        await orchestrator.start()
        sweep = await timers.get(SWEEP_ALARM)
        await orchestrator.start()
        return sweep, await timers.get(SWEEP_ALARM)

    first, second = asyncio.run(scenario())

    assert first.period_minutes == 60
    assert timers.timers[IDLE_CHECK_ALARM].period_minutes == 15
    assert second is first
    assert len(timers.listeners) == 1
    assert TOPIC_GROUPING_ALARM not in timers.timers


def test_topic_grouping_interval_schedule(orchestrator, timers):
    async def scenario():
        await orchestrator.store.save_config(
            {"enableTopicGrouping": True, "topicGroupingIntervalMinutes": 90}
        )
        await orchestrator.start()

    asyncio.run(scenario())
    assert timers.timers[TOPIC_GROUPING_ALARM].period_minutes == 90


def test_topic_grouping_overnight_schedule(orchestrator, timers, clock):
    async def scenario():
        await orchestrator.store.save_config(
            {
                "enableTopicGrouping": True,
                "topicGroupingOvernightOnly": True,
                "topicGroupingOvernightHour": 3,
            }
        )
        await orchestrator.start()

    asyncio.run(scenario())
    info = timers.timers[TOPIC_GROUPING_ALARM]
    assert info.period_minutes == 24 * 60
    fire_at = datetime.fromtimestamp(info.scheduled_time / 1000)
    assert (fire_at.hour, fire_at.minute) == (3, 0)
    assert clock() < info.scheduled_time <= clock() + 24 * HOUR_MS


def test_restart_keeps_the_topic_timer_due_time(orchestrator, timers, clock):
    async def scenario():
        await orchestrator.store.save_config(
            {"enableTopicGrouping": True, "topicGroupingIntervalMinutes": 120}
        )
        await orchestrator.start()
        due = timers.timers[TOPIC_GROUPING_ALARM].scheduled_time
        clock.advance(100 * 60_000)
        await orchestrator.start()
        return due

    due = asyncio.run(scenario())
    assert timers.timers[TOPIC_GROUPING_ALARM].scheduled_time == due
    assert timers.created.count(TOPIC_GROUPING_ALARM) == 1


def test_restart_replans_the_topic_timer_when_the_interval_changed(orchestrator, timers, clock):
    async def scenario():
        await orchestrator.store.save_config(
            {"enableTopicGrouping": True, "topicGroupingIntervalMinutes": 120}
        )
        await orchestrator.start()
        clock.advance(10 * 60_000)
        await orchestrator.store.save_config({"topicGroupingIntervalMinutes": 60})
        await orchestrator.start()

    asyncio.run(scenario())
    info = timers.timers[TOPIC_GROUPING_ALARM]
    assert info.period_minutes == 60
    assert info.scheduled_time == clock() + HOUR_MS


def test_restart_drops_the_topic_timer_once_disabled(orchestrator, timers):
    async def scenario():
        await orchestrator.store.save_config({"enableTopicGrouping": True})
        await orchestrator.start()
        await orchestrator.store.save_config({"enableTopicGrouping": False})
        await orchestrator.start()

    asyncio.run(scenario())
    assert TOPIC_GROUPING_ALARM not in timers.timers


def test_reschedule_message_clears_the_timer_when_disabled(orchestrator, timers):
    async def scenario():
        await orchestrator.store.save_config({"enableTopicGrouping": True})
        await orchestrator.start()
        await orchestrator.store.save_config({"enableTopicGrouping": False})
        return await orchestrator.handle_message({"action": "rescheduleTopicGrouping"})

    assert asyncio.run(scenario()) == {"ok": True}
    assert TOPIC_GROUPING_ALARM not in timers.timers


def test_next_overnight_run_is_strictly_in_the_future():
    base = datetime(2026, 3, 1, 3, 0, 0).timestamp() * 1000
    assert next_overnight_run(base, 3) == base + 24 * HOUR_MS
    assert next_overnight_run(base - 1000, 3) == base


def test_unknown_action_is_reported_not_raised(orchestrator):
    response = asyncio.run(orchestrator.handle_message({"action": "selfDestruct"}))
    assert response == {"ok": False, "error": "unknown_action"}
    assert get_counter("router.unknown_action") == 1


def test_message_without_action(orchestrator):
    assert asyncio.run(orchestrator.handle_message({}))["error"] == "unknown_action"


def test_handler_exception_becomes_internal_error(orchestrator):
    async def broken():
        raise RuntimeError("digest exploded")

    orchestrator.digest.digest = broken
    response = asyncio.run(orchestrator.handle_message({"action": "getDigest"}))
    assert response == {"ok": False, "error": "internal_error"}


def test_sweep_alarm_runs_the_sweeper(orchestrator, provider, timers):
    provider.add_tab(1, "https://example.com/", title="404 Not Found")

    async def scenario():
        await orchestrator.start()
        await timers.fire(SWEEP_ALARM)

    asyncio.run(scenario())
    assert provider.closed == [1]


def test_badge_clear_alarm(orchestrator, notifier, timers):
    async def scenario():
        await orchestrator.start()
        await timers.create("clear-sweep-badge", delay_minutes=0.5)
        await timers.fire("clear-sweep-badge")

    asyncio.run(scenario())
    assert notifier.badges == [""]


def test_collapse_alarm_collapses_the_group(orchestrator, provider, timers):
    for i in range(1, 4):
        provider.add_tab(i, f"https://example.com/{i}")

    async def scenario():
        await orchestrator.start()
        result = await orchestrator.handle_message({"action": "tabSettled", "tabId": 1})
        await timers.fire(f"collapse-group-{result['groupId']}")
        return result

    result = asyncio.run(scenario())
    assert result["grouped"] is True
    assert result["created"] is True
    assert provider.groups[result["groupId"]].collapsed is True


def test_unknown_and_malformed_alarms_are_ignored(orchestrator):
    async def scenario():
        await orchestrator.handle_alarm("mystery")
        await orchestrator.handle_alarm("collapse-group-abc")
        await orchestrator.handle_alarm("snooze-12")

    asyncio.run(scenario())
    assert get_counter("router.unknown_alarm") == 1


def test_alarm_handler_errors_are_contained(orchestrator):
    async def broken():
        raise RuntimeError("sweep crashed")

    orchestrator.sweeper.run_sweep = broken
    asyncio.run(orchestrator.handle_alarm(SWEEP_ALARM))
    assert get_counter("router.handler_error") == 1


def test_overlapping_runs_of_the_same_job_are_skipped(orchestrator):
    release = asyncio.Event()
    runs = []

    async def slow_sweep():
        runs.append(1)
        await release.wait()

    orchestrator.sweeper.run_sweep = slow_sweep

    async def scenario():
        first = asyncio.ensure_future(orchestrator.handle_alarm(SWEEP_ALARM))
        await asyncio.sleep(0)
        await orchestrator.handle_alarm(SWEEP_ALARM)
        release.set()
        await first

    asyncio.run(scenario())
    assert runs == [1]
    assert get_counter("router.overlap_skipped") == 1


def test_nuclear_archive_message(orchestrator, provider, clock):
    provider.add_tab(1, "https://example.com/", lastAccessed=clock() - 5 * HOUR_MS)
    response = asyncio.run(orchestrator.handle_message({"action": "nuclearArchive"}))
    assert response == {"ok": True, "count": 1}


def test_stay_of_execution_message(orchestrator, timers):
    async def scenario():
        snooze = await orchestrator.handle_message(
            {"action": "stayOfExecution", "tabId": 4, "decision": "snooze"}
        )
        bad = await orchestrator.handle_message(
            {"action": "stayOfExecution", "tabId": 4, "decision": "maybe"}
        )
        flag = await orchestrator.handle_message(
            {"action": "stayOfExecution", "tabId": True, "decision": "keep"}
        )
        return snooze, bad, flag

    snooze, bad, flag = asyncio.run(scenario())
    assert snooze == {"ok": True}
    assert "snooze-4" in timers.timers
    assert bad == {"ok": False, "error": "invalid_message"}
    assert flag == {"ok": False, "error": "invalid_message"}


def test_reprieve_buttons_route_to_keep_and_snooze(orchestrator, timers, notifier):
    async def scenario():
        kept = await orchestrator.handle_notification_button("reprieve-3", 0)
        snoozed = await orchestrator.handle_notification_button("reprieve-5", 1)
        other = await orchestrator.handle_notification_button("archived-5-123", 0)
        state = await orchestrator.store.get_reprieve_state()
        return kept, snoozed, other, state

    kept, snoozed, other, state = asyncio.run(scenario())
    assert (kept, snoozed, other) == (True, True, False)
    assert 3 in state.kept
    assert "snooze-5" in timers.timers


def test_notification_closed(orchestrator):
    async def scenario():
        return (
            await orchestrator.handle_notification_closed("reprieve-3"),
            await orchestrator.handle_notification_closed("archived-3-99"),
            await orchestrator.handle_notification_closed("someone-else"),
        )

    assert asyncio.run(scenario()) == (True, True, False)
    assert get_counter("archival.reprieve_dismissed") == 1


def test_reset_and_clear_messages(orchestrator):
    async def scenario():
        await orchestrator.store.increment_stats(2)
        reset = await orchestrator.handle_message({"action": "resetStats"})
        cleared = await orchestrator.handle_message({"action": "clearData"})
        partial = await orchestrator.handle_message(
            {"action": "clearData", "categories": ["swept", "config"]}
        )
        return reset, cleared, partial

    reset, cleared, partial = asyncio.run(scenario())
    assert reset == {"ok": True, "stats": {"tabsTidiedThisWeek": 0, "ramSavedEstimate": 0}}
    assert sorted(cleared["cleared"]) == ["archived", "stats", "swept"]
    assert partial["cleared"] == ["swept"]


def test_digest_messages(orchestrator):
    async def scenario():
        await orchestrator.store.ensure_schema()
        digest = await orchestrator.handle_message({"action": "getDigest"})
        missing = await orchestrator.handle_message({"action": "resummarize", "timestamp": 1})
        restore = await orchestrator.handle_message({"action": "restoreArchived", "timestamp": 1})
        bad = await orchestrator.handle_message({"action": "restoreDomain"})
        return digest, missing, restore, bad

    digest, missing, restore, bad = asyncio.run(scenario())
    assert digest["ok"] is True
    assert digest["totalArchived"] == 0
    assert missing == {"ok": False, "error": "not_found"}
    assert restore == {"ok": False}
    assert bad == {"ok": False, "error": "invalid_message"}


def test_run_topic_grouping_message_forces_a_run(orchestrator):
    response = asyncio.run(orchestrator.handle_message({"action": "runTopicGrouping"}))
    assert response["ok"] is True
    assert response["status"] == "too_few_candidates"
