"""Shared LLM call with retry logic.

Summarization and topic clustering both go through call_llm. Transient
Vertex AI / Gemini failures are converted to builtin exception classes and
retried with exponential backoff; the caller owns the final-failure policy
(fallback summary, aborted clustering run).
"""

from __future__ import annotations

from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from closure.config import LLM_MAX_RETRIES, LLM_TIMEOUT_SECONDS
from closure.infrastructure.settings import GEMINI_MAX_TOKENS, GEMINI_TEMPERATURE
from closure.llm.gemini import get_gemini_model
from closure.observability.logging import get_logger
from closure.observability.telemetry import counter

logger = get_logger(__name__)


@retry(
    stop=stop_after_attempt(LLM_MAX_RETRIES),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception_type((TimeoutError, ConnectionError, OSError)),
    reraise=True,
)
def call_llm(prompt: str, counter_prefix: str = "llm", json_output: bool = False) -> str:
    """Call Gemini with retry and exception conversion.

    Args:
        prompt: The prompt to send to the model.
        counter_prefix: Telemetry counter prefix (e.g. "summarizer", "topics").
        json_output: Ask for an application/json response.

    Returns:
        The model's response text.

    Raises:
        TimeoutError: On deadline exceeded (retryable).
        ConnectionError: On service unavailable or internal error (retryable).
        OSError: On resource exhausted / rate limited (retryable).
        Exception: On other errors (not retried, caller handles).
    """
    from google.api_core.exceptions import (
        DeadlineExceeded,
        InternalServerError,
        ResourceExhausted,
        ServiceUnavailable,
    )

    model = get_gemini_model()

    generation_config = {
        "temperature": GEMINI_TEMPERATURE,
        "max_output_tokens": GEMINI_MAX_TOKENS,
    }
    if json_output:
        generation_config["response_mime_type"] = "application/json"

    try:
        response = model.generate_content(prompt, generation_config=generation_config)
        return response.text
    except DeadlineExceeded as e:
        counter(f"{counter_prefix}.llm.timeout")
        logger.warning("LLM call timed out after %ds", LLM_TIMEOUT_SECONDS)
        raise TimeoutError(f"LLM call timed out: {e}") from e
    except ServiceUnavailable as e:
        counter(f"{counter_prefix}.llm.service_unavailable")
        logger.warning("LLM service unavailable, will retry: %s", e)
        raise ConnectionError(f"LLM service unavailable: {e}") from e
    except ResourceExhausted as e:
        counter(f"{counter_prefix}.llm.rate_limited")
        logger.warning("LLM rate limited (429), will retry: %s", e)
        raise OSError(f"LLM rate limited: {e}") from e
    except InternalServerError as e:
        counter(f"{counter_prefix}.llm.internal_error")
        logger.warning("LLM internal error (500), will retry: %s", e)
        raise ConnectionError(f"LLM internal error: {e}") from e
    except Exception as e:
        logger.error("LLM call failed: %s", e)
        raise
