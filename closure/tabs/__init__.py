"""
Tab data model, grouping-key classifier and safety filter.

The orchestrator never owns tab identity; it observes tabs through a
TabProvider and requests mutations (close, group) through it.
"""

from closure.tabs.models import (
    ArchivedEntry,
    GroupColor,
    PageContent,
    Stats,
    SummaryType,
    SweptEntry,
    Tab,
    TabGroup,
    UserConfig,
)

__all__ = [
    "ArchivedEntry",
    "GroupColor",
    "PageContent",
    "Stats",
    "SummaryType",
    "SweptEntry",
    "Tab",
    "TabGroup",
    "UserConfig",
]
