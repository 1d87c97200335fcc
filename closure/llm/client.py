"""
AI collaborator seam.

Call sites never rely on exceptions for control flow: they first ask
availability() and branch on the tri-state, then treat any error raised by
prompt() as a degraded (fallback) outcome.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from enum import Enum
from typing import Protocol

from cachetools import TTLCache

from closure.config import (
    LLM_AVAILABILITY_TTL_SECONDS,
    LLM_BREAKER_FAIL_MAX,
    LLM_BREAKER_RESET_SECONDS,
    LLM_TIMEOUT_SECONDS,
    USE_LLM,
)
from closure.infrastructure.retry import CircuitBreaker
from closure.llm.gemini import GeminiInitializationError, get_gemini_model
from closure.llm.retry import call_llm
from closure.observability.logging import get_logger
from closure.observability.telemetry import counter, time_block

logger = get_logger(__name__)


class AIAvailability(str, Enum):
    READY = "ready"
    NEEDS_SETUP = "needs_setup"
    UNAVAILABLE = "unavailable"


class AIUnavailableError(Exception):
    """The AI service could not be reached or is switched off."""

    pass


class AIResponseError(Exception):
    """The AI service answered, but the answer is unusable."""

    pass


class AIClient(Protocol):
    async def availability(self) -> AIAvailability: ...

    async def prompt(self, text: str, *, json_output: bool = False, purpose: str = "llm") -> str: ...


class GeminiAIClient:
    """
    AIClient backed by Gemini.

    The blocking, retrying SDK call runs in a worker thread under a timeout.
    The capability probe is cached for a few minutes so every candidate in a
    run does not re-initialize the SDK.
    """

    def __init__(
        self,
        *,
        enabled: bool = USE_LLM,
        timeout_seconds: float = LLM_TIMEOUT_SECONDS,
        breaker: CircuitBreaker | None = None,
        model_loader: Callable[[], object] = get_gemini_model,
        caller: Callable[..., str] = call_llm,
    ):
        self.enabled = enabled
        self.timeout_seconds = timeout_seconds
        self.breaker = breaker or CircuitBreaker(
            stage="gemini",
            fail_max=LLM_BREAKER_FAIL_MAX,
            reset_timeout=LLM_BREAKER_RESET_SECONDS,
        )
        self._model_loader = model_loader
        self._caller = caller
        self._probe_cache: TTLCache = TTLCache(maxsize=1, ttl=LLM_AVAILABILITY_TTL_SECONDS)

    async def availability(self) -> AIAvailability:
        if not self.enabled:
            return AIAvailability.UNAVAILABLE
        if self.breaker.state == "open" and not self.breaker.allow_request():
            return AIAvailability.UNAVAILABLE

        cached = self._probe_cache.get("probe")
        if cached is not None:
            return cached

        try:
            await asyncio.to_thread(self._model_loader)
            status = AIAvailability.READY
        except GeminiInitializationError as e:
            logger.info("Gemini not configured: %s", e)
            status = AIAvailability.NEEDS_SETUP
        except Exception as e:
            logger.warning("Gemini probe failed: %s", e)
            status = AIAvailability.UNAVAILABLE

        self._probe_cache["probe"] = status
        return status

    async def prompt(self, text: str, *, json_output: bool = False, purpose: str = "llm") -> str:
        if not self.enabled:
            raise AIUnavailableError("LLM disabled")
        if not self.breaker.allow_request():
            raise AIUnavailableError("circuit open")

        try:
            with time_block(f"{purpose}.llm_latency"):
                result = await asyncio.wait_for(
                    asyncio.to_thread(self._caller, text, purpose, json_output),
                    timeout=self.timeout_seconds,
                )
        except (TimeoutError, ConnectionError, OSError, GeminiInitializationError) as e:
            self.breaker.record_failure()
            counter(f"{purpose}.ai_unavailable")
            raise AIUnavailableError(str(e) or type(e).__name__) from e
        except Exception as e:
            self.breaker.record_failure()
            counter(f"{purpose}.ai_error")
            raise AIResponseError(str(e) or type(e).__name__) from e

        self.breaker.record_success()
        if not isinstance(result, str) or not result.strip():
            counter(f"{purpose}.ai_empty")
            raise AIResponseError("empty response")
        return result
