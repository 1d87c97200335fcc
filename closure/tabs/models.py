"""
Domain models for tabs, groups and the persisted records.

Persisted records use camelCase aliases so the store schema matches what the
browser-side surfaces (popup, digest, settings) read and write.
"""

from __future__ import annotations

import time
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from closure.config import (
    GROUP_THRESHOLD_MAX,
    GROUP_THRESHOLD_MIN,
    IDLE_THRESHOLD_HOURS_MAX,
    IDLE_THRESHOLD_HOURS_MIN,
)

TAB_GROUP_ID_NONE = -1


def now_ms() -> int:
    """Return the current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


class GroupColor(str, Enum):
    """Fixed tab-group palette, in provider order."""

    GREY = "grey"
    BLUE = "blue"
    RED = "red"
    YELLOW = "yellow"
    GREEN = "green"
    PINK = "pink"
    PURPLE = "purple"
    CYAN = "cyan"
    ORANGE = "orange"


class SummaryType(str, Enum):
    """Provenance of an archived summary."""

    AI = "ai"
    FALLBACK = "fallback"


class Tab(BaseModel):
    """A browser tab as observed through the tab provider."""

    model_config = ConfigDict(populate_by_name=True)

    id: int
    url: str = ""
    title: str = ""
    fav_icon_url: str | None = Field(default=None, alias="favIconUrl")
    pinned: bool = False
    audible: bool = False
    last_accessed: float = Field(default=0, alias="lastAccessed", description="Epoch ms")
    group_id: int = Field(default=TAB_GROUP_ID_NONE, alias="groupId")
    window_id: int = Field(default=-1, alias="windowId")
    status: str = Field(default="complete", description="'loading' or 'complete'")

    @property
    def is_grouped(self) -> bool:
        return self.group_id != TAB_GROUP_ID_NONE

    @property
    def is_loading(self) -> bool:
        return self.status != "complete"


class TabGroup(BaseModel):
    """A named, colored tab group owned by the tab provider."""

    model_config = ConfigDict(populate_by_name=True, use_enum_values=True)

    id: int
    title: str = ""
    color: GroupColor = GroupColor.GREY
    collapsed: bool = False
    window_id: int = Field(default=-1, alias="windowId")


def _clamp_int(value: Any, low: int, high: int, default: int) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        return default
    return max(low, min(high, number))


class UserConfig(BaseModel):
    """
    User-facing configuration, written by the settings surface.

    Read-only to the orchestrator. Out-of-range numbers are clamped rather
    than rejected so a drifted record never stops the pipelines, and keys
    this version does not know about survive a round-trip.
    """

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    group_threshold: int = Field(default=3, alias="groupThreshold")
    idle_threshold_hours: int = Field(default=24, alias="idleThresholdHours")
    collapse_after_hours: float = Field(default=3, alias="collapseAfterHours")
    whitelist: list[str] = Field(default_factory=list)
    enable_topic_grouping: bool = Field(default=False, alias="enableTopicGrouping")
    enable_thematic_clustering: bool = Field(default=False, alias="enableThematicClustering")
    topic_grouping_interval_minutes: int = Field(default=120, alias="topicGroupingIntervalMinutes")
    topic_grouping_overnight_only: bool = Field(default=False, alias="topicGroupingOvernightOnly")
    topic_grouping_overnight_hour: int = Field(default=3, alias="topicGroupingOvernightHour")
    enable_ai: bool = Field(default=True, alias="enableAI")
    enable_rich_page_analysis: bool = Field(default=False, alias="enableRichPageAnalysis")
    archive_retention_days: int = Field(default=0, alias="archiveRetentionDays")
    per_window_grouping: bool = Field(default=False, alias="perWindowGrouping")

    @field_validator("group_threshold", mode="before")
    @classmethod
    def _clamp_group_threshold(cls, value: Any) -> int:
        return _clamp_int(value, GROUP_THRESHOLD_MIN, GROUP_THRESHOLD_MAX, 3)

    @field_validator("idle_threshold_hours", mode="before")
    @classmethod
    def _clamp_idle_threshold(cls, value: Any) -> int:
        return _clamp_int(value, IDLE_THRESHOLD_HOURS_MIN, IDLE_THRESHOLD_HOURS_MAX, 24)

    @field_validator("topic_grouping_interval_minutes", mode="before")
    @classmethod
    def _clamp_interval(cls, value: Any) -> int:
        return _clamp_int(value, 15, 24 * 60, 120)

    @field_validator("topic_grouping_overnight_hour", mode="before")
    @classmethod
    def _clamp_overnight_hour(cls, value: Any) -> int:
        return _clamp_int(value, 0, 23, 3)

    @field_validator("archive_retention_days", mode="before")
    @classmethod
    def _clamp_retention(cls, value: Any) -> int:
        return _clamp_int(value, 0, 3650, 0)

    @field_validator("collapse_after_hours", mode="before")
    @classmethod
    def _coerce_collapse(cls, value: Any) -> float:
        try:
            hours = float(value)
        except (TypeError, ValueError):
            return 3.0
        return max(0.0, hours)

    @field_validator("whitelist", mode="before")
    @classmethod
    def _normalize_whitelist(cls, value: Any) -> list[str]:
        if not isinstance(value, list | tuple | set):
            return []
        cleaned: list[str] = []
        for item in value:
            entry = str(item or "").strip().lower()
            if entry.startswith("www."):
                entry = entry[4:]
            if entry and entry not in cleaned:
                cleaned.append(entry)
        return cleaned

    def to_store(self) -> dict[str, Any]:
        """Serialize for the persistent store (camelCase keys)."""
        return self.model_dump(by_alias=True)


class ArchivedEntry(BaseModel):
    """One archived tab. Located by timestamp, since urls may repeat."""

    model_config = ConfigDict(populate_by_name=True, use_enum_values=True)

    url: str
    title: str = ""
    favicon: str = ""
    timestamp: int = Field(default_factory=now_ms, description="Epoch ms")
    summary: str = ""
    summary_type: SummaryType = Field(default=SummaryType.FALLBACK, alias="summaryType")
    domain: str = ""

    def to_store(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class SweptEntry(BaseModel):
    """One dead tab removed by the sweeper."""

    url: str
    title: str = ""
    timestamp: int = Field(default_factory=now_ms, description="Epoch ms")
    reason: str

    def to_store(self) -> dict[str, Any]:
        return self.model_dump()


class Stats(BaseModel):
    """Running counters shown in the popup and digest."""

    model_config = ConfigDict(populate_by_name=True)

    tabs_tidied_this_week: int = Field(default=0, alias="tabsTidiedThisWeek")
    ram_saved_estimate: int = Field(default=0, alias="ramSavedEstimate")

    def to_store(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class PageContent(BaseModel):
    """Best-effort page content returned by the extractor."""

    model_config = ConfigDict(populate_by_name=True)

    title: str = ""
    meta_description: str = Field(default="", alias="metaDescription")
    excerpt: str = ""
    favicon_url: str = Field(default="", alias="faviconUrl")
    http_status: int | None = Field(default=None, alias="httpStatus")
