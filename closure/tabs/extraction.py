"""
Page content extraction interface.

A narrow request/response contract: extract(tab_id) returns best-effort
content or raises ExtractionError (restricted page, injection refused).
Used only as optional enrichment; nothing depends on it for correctness.
"""

from __future__ import annotations

import asyncio
from typing import Protocol

from closure.observability.logging import get_logger
from closure.observability.telemetry import counter
from closure.tabs.models import PageContent

logger = get_logger(__name__)

EXTRACT_TIMEOUT_SECONDS = 5.0


class ExtractionError(Exception):
    """Content could not be extracted from the page."""

    pass


class PageContentExtractor(Protocol):
    async def extract(self, tab_id: int) -> PageContent: ...


async def try_extract(
    extractor: PageContentExtractor | None,
    tab_id: int,
    *,
    timeout: float = EXTRACT_TIMEOUT_SECONDS,
) -> PageContent | None:
    """
    Extract content, swallowing every failure.

    Returns None when no extractor is configured, the page refused the
    injection, or the call timed out.
    """
    if extractor is None:
        return None
    try:
        return await asyncio.wait_for(extractor.extract(tab_id), timeout=timeout)
    except (ExtractionError, TimeoutError) as e:
        counter("extraction.failed")
        logger.debug("Extraction failed for tab %s: %s", tab_id, e)
        return None
    except Exception as e:
        counter("extraction.failed")
        logger.warning("Unexpected extraction error for tab %s: %s", tab_id, e)
        return None
