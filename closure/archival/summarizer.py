"""
Archive summaries: AI when possible, deterministic fallback always.

summarize() never raises. A failed AI call degrades the summary's quality
and flips its provenance to "fallback"; it never blocks an archival.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from closure.config import (
    FALLBACK_EXCERPT_MAX_CHARS,
    PROMPT_EXCERPT_MAX_CHARS,
    PROMPT_TITLE_MAX_CHARS,
    PROMPT_URL_MAX_CHARS,
    SUMMARY_WORD_BUDGET,
)
from closure.llm.client import AIAvailability, AIClient, AIResponseError, AIUnavailableError
from closure.observability.logging import get_logger
from closure.observability.telemetry import counter, log_event
from closure.tabs.classifier import hostname_of
from closure.tabs.models import PageContent, SummaryType
from closure.utils.redaction import redact_title, sanitize_for_prompt

logger = get_logger(__name__)

SUMMARY_MAX_CHARS = 1000
CODE_FENCE_RE = re.compile(r"^```[a-z]*\n?|\n?```$")


@dataclass(frozen=True)
class Summary:
    text: str
    summary_type: SummaryType


def _clip(text: str, limit: int) -> str:
    text = " ".join((text or "").split())
    if len(text) <= limit:
        return text
    cut = text[:limit].rsplit(" ", 1)[0] or text[:limit]
    return cut + "..."


def fallback_summary(title: str, url: str, content: PageContent | None = None) -> Summary:
    """Build a summary from whatever metadata exists. Pure and total."""
    lines = [_clip(title, PROMPT_TITLE_MAX_CHARS) or _clip(url, PROMPT_URL_MAX_CHARS) or "Untitled page"]
    if content is not None:
        detail = content.meta_description or content.excerpt
        if detail:
            lines.append(_clip(detail, FALLBACK_EXCERPT_MAX_CHARS))
    host = hostname_of(url)
    if host:
        lines.append(f"Saved from {host}")
    return Summary(text="\n".join(f"• {line}" for line in lines), summary_type=SummaryType.FALLBACK)


class Summarizer:
    PROMPT_TEMPLATE = """Summarize this web page for someone who closed it and may want it back later.

Write exactly 3 bullet points, under {word_budget} words in total.
Keep concrete facts, dates, action items and what the reader was trying to do.
Output only the bullets.

Title: {title}
URL: {url}{details}"""

    def __init__(self, ai: AIClient):
        self.ai = ai

    def build_prompt(self, title: str, url: str, content: PageContent | None = None) -> str:
        details = ""
        if content is not None:
            description = sanitize_for_prompt(content.meta_description, PROMPT_EXCERPT_MAX_CHARS)
            excerpt = sanitize_for_prompt(content.excerpt, PROMPT_EXCERPT_MAX_CHARS)
            if description:
                details += f"\nDescription: {description}"
            if excerpt:
                details += f"\nExcerpt: {excerpt}"
        return self.PROMPT_TEMPLATE.format(
            word_budget=SUMMARY_WORD_BUDGET,
            title=sanitize_for_prompt(title, PROMPT_TITLE_MAX_CHARS) or "(untitled)",
            url=sanitize_for_prompt(url, PROMPT_URL_MAX_CHARS),
            details=details,
        )

    async def summarize(
        self,
        title: str,
        url: str,
        content: PageContent | None = None,
        *,
        use_ai: bool = True,
    ) -> Summary:
        if not use_ai:
            counter("summarizer.ai_disabled")
            return fallback_summary(title, url, content)

        try:
            availability = await self.ai.availability()
            if availability is not AIAvailability.READY:
                counter("summarizer.fallback")
                log_event("summarizer.fallback", reason=availability.value)
                return fallback_summary(title, url, content)

            response = await self.ai.prompt(
                self.build_prompt(title, url, content), purpose="summarizer"
            )
            text = CODE_FENCE_RE.sub("", response.strip()).strip()
            if not text:
                raise AIResponseError("blank summary")
        except (AIUnavailableError, AIResponseError) as e:
            counter("summarizer.fallback")
            logger.info("Summary fallback for %s: %s", redact_title(title), e)
            return fallback_summary(title, url, content)
        except Exception as e:
            counter("summarizer.fallback")
            logger.warning("Unexpected summarizer error for %s: %s", redact_title(title), e)
            return fallback_summary(title, url, content)

        counter("summarizer.ai")
        return Summary(text=text[:SUMMARY_MAX_CHARS], summary_type=SummaryType.AI)
