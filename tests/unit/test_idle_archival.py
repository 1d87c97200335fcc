"""Idle archival, the reprieve protocol and nuclear archive."""

from __future__ import annotations

import asyncio

from fakes import (
    HOUR_MS,
    FakeTabProvider,
    ManualTimerService,
    RecordingNotifier,
    ScriptedAI,
    ScriptedExtractor,
)

from closure.archival.service import IdleArchivalPipeline
from closure.archival.summarizer import Summarizer
from closure.config import BADGE_CLEAR_ALARM, REPRIEVE_BUTTONS
from closure.observability.telemetry import get_counter, get_latencies
from closure.storage.adapter import StoreAdapter
from closure.storage.kv import MemoryKeyValueStore
from closure.tabs.models import PageContent


class Harness:
    def __init__(self, clock, *, config=None, ai=None, extractor=None, seed=None):
        self.clock = clock
        self.provider = FakeTabProvider()
        self.kv = MemoryKeyValueStore({"config": config or {}, **(seed or {})})
        self.store = StoreAdapter(self.kv)
        self.notifier = RecordingNotifier()
        self.timers = ManualTimerService(clock)
        self.ai = ai or ScriptedAI()
        self.pipeline = IdleArchivalPipeline(
            self.provider,
            self.store,
            self.notifier,
            self.timers,
            Summarizer(self.ai),
            extractor,
            clock=clock,
        )

    def idle_tab(self, tab_id, hours, url=None, **fields):
        return self.provider.add_tab(
            tab_id,
            url or f"https://site{tab_id}.example/page",
            title=fields.pop("title", f"Page {tab_id}"),
            lastAccessed=self.clock() - hours * HOUR_MS,
            **fields,
        )


def test_idle_tab_is_summarized_recorded_and_closed(clock):
    h = Harness(clock)
    h.idle_tab(1, 25)
    h.idle_tab(2, 1)

    async def scenario():
        result = await h.pipeline.run_idle_check()
        return result, await h.store.get_archived(), await h.store.get_stats()

    result, archived, stats = asyncio.run(scenario())

    assert result.count == 1
    assert h.provider.closed == [1]
    assert 2 in h.provider.tabs
    entry = archived[0]
    assert entry.url == "https://site1.example/page"
    assert entry.domain == "site1.example"
    assert entry.summary_type == "ai"
    assert entry.summary.startswith("• ")
    assert stats.tabs_tidied_this_week == 1
    assert f"archived-1-{entry.timestamp}" in h.notifier.notifications
    assert h.kv.snapshot()["archiving"] == {}
    assert len(h.pipeline.inflight) == 0


def test_close_failure_keeps_the_recorded_entry(clock):
    h = Harness(clock)
    h.idle_tab(1, 25)
    h.provider.close_error = RuntimeError("browser went away")

    async def scenario():
        result = await h.pipeline.run_idle_check()
        return result, await h.store.get_archived()

    result, archived = asyncio.run(scenario())

    assert result.errors == 1
    assert [e.url for e in archived] == ["https://site1.example/page"]
    assert h.provider.events == [("close", 1)]
    assert h.kv.snapshot()["archiving"] == {}
    assert len(h.pipeline.inflight) == 0


def test_reprieve_is_offered_once_inside_the_lead_window(clock):
    h = Harness(clock)
    h.idle_tab(1, 23.5)

    async def scenario():
        first = await h.pipeline.run_idle_check()
        second = await h.pipeline.run_idle_check()
        return first, second, await h.store.get_reprieve_state()

    first, second, state = asyncio.run(scenario())

    assert first.reprieved == [1]
    assert second.reprieved == []
    assert h.notifier.history == ["reprieve-1"]
    assert h.notifier.notifications["reprieve-1"]["buttons"] == list(REPRIEVE_BUTTONS)
    assert 1 in state.pending
    assert h.provider.closed == []


def test_returning_to_a_warned_tab_earns_a_fresh_reprieve(clock):
    h = Harness(clock)
    h.idle_tab(1, 23.5)

    async def scenario():
        await h.pipeline.run_idle_check()
        clock.advance(60_000)
        h.provider._update_tab(1, last_accessed=clock())
        back = await h.pipeline.run_idle_check()
        cleared = await h.store.get_reprieve_state()
        clock.advance(23.5 * HOUR_MS)
        idle_again = await h.pipeline.run_idle_check()
        return back, cleared, idle_again

    back, cleared, idle_again = asyncio.run(scenario())

    assert back.reprieved == []
    assert cleared.pending == {}
    assert "reprieve-1" in h.notifier.cleared
    assert idle_again.reprieved == [1]
    assert idle_again.count == 0
    assert h.notifier.history == ["reprieve-1", "reprieve-1"]
    assert get_counter("archival.reprieve_expired") == 1
    assert h.provider.closed == []


def test_keep_restarts_the_idle_clock(clock):
    h = Harness(clock)
    h.idle_tab(1, 23.5)

    async def scenario():
        await h.pipeline.run_idle_check()
        await h.pipeline.keep(1)
        clock.advance(2 * HOUR_MS)
        result = await h.pipeline.run_idle_check()
        return result, await h.store.get_reprieve_state()

    result, state = asyncio.run(scenario())

    assert result.count == 0
    assert h.provider.closed == []
    assert "reprieve-1" in h.notifier.cleared
    assert state.pending == {}
    assert state.kept == {1: int(clock() - 2 * HOUR_MS)}


def test_snooze_skips_the_tab_until_the_timer_expires(clock):
    h = Harness(clock)
    h.idle_tab(1, 30)

    async def scenario():
        await h.pipeline.snooze(1)
        snoozed = await h.pipeline.run_idle_check()
        await h.timers.fire("snooze-1")
        after = await h.pipeline.run_idle_check()
        return snoozed, after

    snoozed, after = asyncio.run(scenario())

    assert snoozed.count == 0
    assert get_counter("archival.skipped_snoozed") == 1
    assert after.count == 1
    assert h.provider.closed == [1]


def test_dismissed_reprieve_still_archives_past_the_threshold(clock):
    h = Harness(clock)
    h.idle_tab(1, 23.5)

    async def scenario():
        await h.pipeline.run_idle_check()
        await h.pipeline.reprieve_dismissed(1)
        clock.advance(HOUR_MS)
        result = await h.pipeline.run_idle_check()
        return result, await h.store.get_reprieve_state()

    result, state = asyncio.run(scenario())

    assert result.count == 1
    assert state.pending == {}
    assert "reprieve-1" in h.notifier.cleared


def test_keep_during_summarization_cancels_the_archival(clock):
    h = Harness(clock)
    h.idle_tab(1, 25)

    class InterruptedAI(ScriptedAI):
        async def prompt(self, text, *, json_output=False, purpose="llm"):
            await h.pipeline.keep(1)
            return await super().prompt(text, json_output=json_output, purpose=purpose)

    h.pipeline.summarizer = Summarizer(InterruptedAI())

    async def scenario():
        result = await h.pipeline.run_idle_check()
        return result, await h.store.get_archived()

    result, archived = asyncio.run(scenario())

    assert result.count == 0
    assert archived == []
    assert h.provider.closed == []
    assert get_counter("archival.cancelled") == 1
    assert h.kv.snapshot()["archiving"] == {}


def test_protected_and_whitelisted_tabs_are_never_archived(clock):
    h = Harness(clock, config={"whitelist": ["keep.example"]})
    h.idle_tab(1, 100, pinned=True)
    h.idle_tab(2, 100, audible=True)
    h.idle_tab(3, 100, url="https://docs.keep.example/x")
    h.idle_tab(4, 100, url="chrome://settings")

    result = asyncio.run(h.pipeline.run_idle_check())

    assert result.count == 0
    assert h.provider.closed == []
    assert h.notifier.history == []


def test_inflight_tab_is_not_selected(clock):
    h = Harness(clock)
    h.idle_tab(1, 25)
    h.pipeline.inflight.claim(1)

    result = asyncio.run(h.pipeline.run_idle_check())
    assert result.count == 0
    assert h.provider.closed == []


def test_tab_vanishing_before_archival_is_skipped(clock):
    h = Harness(clock)
    h.idle_tab(1, 25)
    h.provider.vanish_on_get.add(1)

    result = asyncio.run(h.pipeline.run_idle_check())
    assert result.count == 0
    assert result.errors == 0
    assert get_counter("archival.tab_vanished") == 1


def test_entries_from_one_run_have_distinct_timestamps(clock):
    h = Harness(clock)
    for tab_id in (1, 2, 3):
        h.idle_tab(tab_id, 30)

    result = asyncio.run(h.pipeline.run_idle_check())
    timestamps = [e.timestamp for e in result.archived]
    assert len(set(timestamps)) == 3


def test_ai_switched_off_uses_fallback_summary(clock):
    h = Harness(clock, config={"enableAI": False})
    h.idle_tab(1, 25)

    result = asyncio.run(h.pipeline.run_idle_check())
    assert result.archived[0].summary_type == "fallback"
    assert h.ai.prompts == []


def test_rich_page_analysis_feeds_the_summary(clock):
    extractor = ScriptedExtractor(
        {1: PageContent(excerpt="Gate B12 boards at 9:40", faviconUrl="https://x/f.ico")}
    )
    h = Harness(clock, config={"enableRichPageAnalysis": True}, extractor=extractor)
    h.idle_tab(1, 25)

    result = asyncio.run(h.pipeline.run_idle_check())

    assert extractor.calls == [1]
    assert "Gate B12 boards at 9:40" in h.ai.prompts[0]
    assert result.archived[0].favicon == "https://x/f.ico"


def test_nuclear_archive_uses_the_short_threshold_without_reprieve(clock):
    h = Harness(clock)
    h.idle_tab(1, 5)
    h.idle_tab(2, 3.5)

    result = asyncio.run(h.pipeline.run_nuclear_archive())

    assert result.count == 1
    assert h.provider.closed == [1]
    assert not any(n.startswith("reprieve-") for n in h.notifier.history)
    assert len(get_latencies("archival.nuclear")) == 1
    assert get_latencies("archival.idle_check") == []
    assert h.notifier.badge == "1"
    assert BADGE_CLEAR_ALARM in h.timers.timers


def test_nuclear_archive_with_nothing_idle_leaves_the_badge(clock):
    h = Harness(clock)
    h.idle_tab(1, 1)

    result = asyncio.run(h.pipeline.run_nuclear_archive())
    assert result.count == 0
    assert h.notifier.badges == []


def test_recovered_marker_with_recorded_entry_only_redoes_the_close(clock):
    url = "https://site5.example/page"
    seed = {
        "archived": [{"url": url, "timestamp": int(clock()) - 1000, "domain": "site5.example"}],
        "archiving": {"5": {"url": url, "startedAt": int(clock()) - 2000}},
    }
    h = Harness(clock, seed=seed)
    h.idle_tab(5, 0.1, url=url)

    async def scenario():
        await h.pipeline.run_idle_check()
        return await h.store.get_archived()

    archived = asyncio.run(scenario())

    assert h.provider.closed == [5]
    assert len(archived) == 1
    assert h.kv.snapshot()["archiving"] == {}
    assert get_counter("archival.recovered_close") == 1


def test_recovered_marker_without_entry_is_dropped(clock):
    url = "https://site5.example/page"
    h = Harness(clock, seed={"archiving": {"5": {"url": url, "startedAt": int(clock())}}})
    h.idle_tab(5, 0.1, url=url)

    asyncio.run(h.pipeline.run_idle_check())

    assert h.provider.closed == []
    assert h.kv.snapshot()["archiving"] == {}


def test_retention_prunes_old_entries_after_the_run(clock):
    day_ms = 24 * HOUR_MS
    seed = {
        "archived": [
            {"url": "https://old.example/", "timestamp": int(clock() - 40 * day_ms)},
            {"url": "https://new.example/", "timestamp": int(clock() - 2 * day_ms)},
        ]
    }
    h = Harness(clock, config={"archiveRetentionDays": 30}, seed=seed)

    async def scenario():
        await h.pipeline.run_idle_check()
        return await h.store.get_archived()

    archived = asyncio.run(scenario())
    assert [e.url for e in archived] == ["https://new.example/"]


def test_reprieve_bookkeeping_for_closed_tabs_is_forgotten(clock):
    h = Harness(clock, seed={"reprieve": {"pending": {"9": 1}, "kept": {"8": 1}}})
    h.idle_tab(1, 1)

    async def scenario():
        await h.pipeline.run_idle_check()
        return await h.store.get_reprieve_state()

    state = asyncio.run(scenario())
    assert state.pending == {}
    assert state.kept == {}
