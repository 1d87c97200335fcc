"""Closure - tab lifecycle orchestration (grouping, sweeping, idle archival)"""

from __future__ import annotations

__version__ = "1.3.2"


# Lazy imports for the orchestrator entry points
def __getattr__(name: str):
    """
    Lazy imports so lightweight modules (classifier, models) load without the LLM stack.
    """
    if name == "TabOrchestrator":
        from closure.orchestrator import TabOrchestrator

        return TabOrchestrator

    if name in ("Tab", "TabGroup", "UserConfig", "ArchivedEntry", "SweptEntry", "Stats"):
        from closure.tabs import models

        return getattr(models, name)

    msg = f"module {__name__!r} has no attribute {name!r}"
    raise AttributeError(msg)


__all__ = [
    "ArchivedEntry",
    "Stats",
    "SweptEntry",
    "Tab",
    "TabGroup",
    "TabOrchestrator",
    "UserConfig",
]
