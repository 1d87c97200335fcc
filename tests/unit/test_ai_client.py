"""GeminiAIClient with the SDK replaced by plain callables."""

from __future__ import annotations

import asyncio
import time

import pytest

from closure.infrastructure.retry import CircuitBreaker
from closure.llm.client import AIAvailability, AIResponseError, AIUnavailableError, GeminiAIClient
from closure.llm.gemini import GeminiInitializationError


def ready_loader():
    return object()


def make_client(caller=None, loader=ready_loader, **kwargs):
    return GeminiAIClient(
        enabled=kwargs.pop("enabled", True),
        timeout_seconds=kwargs.pop("timeout_seconds", 5),
        model_loader=loader,
        caller=caller or (lambda text, purpose, json_output: "• ok"),
        **kwargs,
    )


def test_ready_when_the_model_loads():
    assert asyncio.run(make_client().availability()) is AIAvailability.READY


def test_needs_setup_when_not_configured():
    def loader():
        raise GeminiInitializationError("no credentials")

    assert asyncio.run(make_client(loader=loader).availability()) is AIAvailability.NEEDS_SETUP


def test_unavailable_when_the_probe_crashes():
    def loader():
        raise RuntimeError("import failed")

    assert asyncio.run(make_client(loader=loader).availability()) is AIAvailability.UNAVAILABLE


def test_disabled_client_is_unavailable_and_refuses_prompts():
    client = make_client(enabled=False)
    assert asyncio.run(client.availability()) is AIAvailability.UNAVAILABLE
    with pytest.raises(AIUnavailableError):
        asyncio.run(client.prompt("hi"))


def test_probe_result_is_cached():
    calls = []

    def loader():
        calls.append(1)
        return object()

    client = make_client(loader=loader)

    async def scenario():
        await client.availability()
        await client.availability()

    asyncio.run(scenario())
    assert calls == [1]


def test_prompt_passes_purpose_and_json_flag():
    seen = []

    def caller(text, purpose, json_output):
        seen.append((text, purpose, json_output))
        return '{"groups": []}'

    client = make_client(caller)
    result = asyncio.run(client.prompt("cluster these", json_output=True, purpose="topics"))

    assert result == '{"groups": []}'
    assert seen == [("cluster these", "topics", True)]


def test_connection_errors_are_unavailable():
    def caller(text, purpose, json_output):
        raise ConnectionError("reset by peer")

    with pytest.raises(AIUnavailableError):
        asyncio.run(make_client(caller).prompt("hi"))


def test_timeouts_are_unavailable():
    def caller(text, purpose, json_output):
        time.sleep(0.5)
        return "late"

    with pytest.raises(AIUnavailableError):
        asyncio.run(make_client(caller, timeout_seconds=0.05).prompt("hi"))


@pytest.mark.parametrize("reply", ["", "   ", None])
def test_empty_replies_are_response_errors(reply):
    client = make_client(lambda text, purpose, json_output: reply)
    with pytest.raises(AIResponseError):
        asyncio.run(client.prompt("hi"))


def test_other_failures_are_response_errors():
    def caller(text, purpose, json_output):
        raise ValueError("blocked by safety filter")

    with pytest.raises(AIResponseError):
        asyncio.run(make_client(caller).prompt("hi"))


def test_repeated_failures_open_the_breaker():
    def caller(text, purpose, json_output):
        raise ValueError("bad")

    breaker = CircuitBreaker(stage="gemini", fail_max=2, reset_timeout=60)
    client = make_client(caller, breaker=breaker)

    async def scenario():
        for _ in range(2):
            with pytest.raises(AIResponseError):
                await client.prompt("hi")
        with pytest.raises(AIUnavailableError):
            await client.prompt("hi")
        return await client.availability()

    assert asyncio.run(scenario()) is AIAvailability.UNAVAILABLE
    assert breaker.state == "open"
