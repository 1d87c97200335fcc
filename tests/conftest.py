"""
Shared fixtures: one fresh fake of every collaborator per test, and a clean
telemetry slate.
"""

from __future__ import annotations

import pytest
from fakes import (
    FakeClock,
    FakeTabProvider,
    ManualTimerService,
    RecordingNotifier,
    ScriptedAI,
    ScriptedExtractor,
)

from closure.observability.telemetry import reset_telemetry
from closure.orchestrator import TabOrchestrator
from closure.storage.adapter import StoreAdapter
from closure.storage.kv import MemoryKeyValueStore

# 2026-03-01T12:00:00Z
BASE_TIME_MS = 1_772_366_400_000


@pytest.fixture(autouse=True)
def clean_telemetry():
    reset_telemetry()
    yield
    reset_telemetry()


@pytest.fixture
def clock():
    return FakeClock(BASE_TIME_MS)


@pytest.fixture
def provider():
    return FakeTabProvider()


@pytest.fixture
def kv():
    return MemoryKeyValueStore()


@pytest.fixture
def store(kv):
    return StoreAdapter(kv)


@pytest.fixture
def ai():
    return ScriptedAI()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def timers(clock):
    return ManualTimerService(clock)


@pytest.fixture
def extractor():
    return ScriptedExtractor()


@pytest.fixture
def orchestrator(provider, store, ai, notifier, timers, clock):
    return TabOrchestrator(
        provider=provider,
        store=store,
        ai=ai,
        notifier=notifier,
        timers=timers,
        clock=clock,
    )
