"""
Redaction and prompt-sanitizing helpers.

Provides:
- redact(): Hash sensitive strings for correlation without exposure
- redact_title(): Partially redact a page title or URL for logging
- sanitize_for_prompt(): Remove potential prompt injection patterns
"""

from __future__ import annotations

import re
from hashlib import sha256

# Patterns that could be used for prompt injection
INJECTION_PATTERNS = [
    r"ignore\s+(previous|above|all)\s+instructions?",
    r"disregard\s+(previous|above|all)\s+instructions?",
    r"forget\s+(previous|above|all)\s+instructions?",
    r"new\s+instructions?:",
    r"system\s*:",
    r"assistant\s*:",
    r"\[INST\]",
    r"\[/INST\]",
    r"<\|im_start\|>",
    r"<\|im_end\|>",
]
INJECTION_REGEX = re.compile("|".join(INJECTION_PATTERNS), re.IGNORECASE)


def redact(value: str | None) -> str:
    """
    Return a stable hash representation of a sensitive string.
    """
    if not value:
        return "hash:missing"
    digest = sha256(value.encode("utf-8")).hexdigest()[:12]
    return f"hash:{digest}"


def redact_title(title: str | None, max_length: int = 30) -> str:
    """
    Partially redact a title or URL for logging while preserving debuggability.

    Shows the first N characters plus a hash suffix for correlation, e.g.
    "Quarterly planning notes - Goo..." (h:7a8b9c)
    """
    if not title:
        return "(untitled)"

    visible = title[:max_length] + "..." if len(title) > max_length else title
    digest = sha256(title.encode("utf-8")).hexdigest()[:6]
    return f"{visible} (h:{digest})"


def sanitize_for_prompt(text: str | None, max_length: int = 500) -> str:
    """
    Sanitize page-provided text before including it in an LLM prompt.

    Page titles and excerpts are attacker-controlled, so known injection
    patterns are blanked and the text is truncated.
    """
    if not text:
        return ""

    text = text[:max_length]
    text = INJECTION_REGEX.sub("[REDACTED]", text)
    text = re.sub(r"[<>{}|\\]", "", text)
    text = re.sub(r"\s+", " ", text)

    return text.strip()
