"""
Origin-based auto-grouping.

on_tab_settled() is called once a tab's navigation has completed. When at
least `groupThreshold` eligible tabs share a grouping key, they are gathered
into one group titled UPPERCASE(key). An existing group with that title is
always reused; a new one is created only when none exists.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from closure.config import COLLAPSE_ALARM_PREFIX
from closure.observability.logging import get_logger
from closure.observability.telemetry import counter, log_event
from closure.scheduler.timers import TimerService
from closure.storage.adapter import StoreAdapter
from closure.tabs.classifier import color_for_key, grouping_key, group_title
from closure.tabs.models import Tab, TabGroup, UserConfig
from closure.tabs.provider import TabProvider, TabProviderError
from closure.tabs.safety import evaluate

logger = get_logger(__name__)


@dataclass
class GroupingResult:
    key: str
    group_id: int
    created: bool
    moved: list[int] = field(default_factory=list)


def collapse_alarm_name(group_id: int) -> str:
    return f"{COLLAPSE_ALARM_PREFIX}{group_id}"


def is_domain_group_title(title: str) -> bool:
    """True for titles this coordinator produces (UPPERCASE registrable domain)."""
    if not title or title != title.upper():
        return False
    return grouping_key(f"https://{title.lower()}/") == title.lower()


class TabGroupCoordinator:
    """Creates and extends domain groups as tabs settle."""

    def __init__(self, provider: TabProvider, store: StoreAdapter, timers: TimerService):
        self.provider = provider
        self.store = store
        self.timers = timers

    async def on_tab_settled(self, tab: Tab | int) -> GroupingResult | None:
        """
        Group the settled tab with its same-key siblings if the threshold is met.

        Returns the grouping outcome, or None when nothing was grouped.
        Provider failures (tab or group vanished) are silent no-ops.
        """
        try:
            return await self._on_tab_settled(tab)
        except TabProviderError as e:
            counter("grouping.provider_error")
            logger.debug("Grouping aborted, tab or group vanished: %s", e)
            return None

    async def _on_tab_settled(self, tab: Tab | int) -> GroupingResult | None:
        if isinstance(tab, int):
            tab = await self.provider.get_tab(tab)

        config = await self.store.get_config()
        eligibility = evaluate(tab, config, stage="grouping")
        if eligibility.protected:
            return None

        key = eligibility.key
        expected_title = group_title(key) if key else None

        if tab.is_grouped:
            removed = await self._leave_stale_group(tab, expected_title)
            if removed:
                tab = tab.model_copy(update={"group_id": -1})

        if key is None or eligibility.whitelisted:
            return None

        return await self._group_key(tab, key, config)

    async def _leave_stale_group(self, tab: Tab, expected_title: str | None) -> bool:
        """Remove the tab from a domain group that no longer matches its key."""
        groups = await self.provider.query_groups()
        current = next((g for g in groups if g.id == tab.group_id), None)
        if current is None or current.title == expected_title:
            return False
        if not is_domain_group_title(current.title):
            # User-made or topic groups are left alone.
            return False

        await self.provider.ungroup_tabs([tab.id])
        counter("grouping.stale_removed")
        log_event("grouping.stale_removed", tab_id=tab.id, group_id=current.id)
        return True

    async def _group_key(self, tab: Tab, key: str, config: UserConfig) -> GroupingResult | None:
        title = group_title(key)
        window_id = tab.window_id if config.per_window_grouping else None

        existing = await self._find_group(title, window_id)
        tabs = await self.provider.query_tabs()

        members = [
            t
            for t in tabs
            if self._eligible_member(t, key, config)
            and (window_id is None or t.window_id == window_id)
            and (not t.is_grouped or (existing is not None and t.group_id == existing.id))
        ]

        if len(members) < config.group_threshold:
            return None

        if existing is not None:
            to_move = [t.id for t in members if t.group_id != existing.id]
            if to_move:
                await self.provider.group_tabs(to_move, group_id=existing.id)
                counter("grouping.tabs_joined", len(to_move))
                log_event("grouping.joined", key=key, group_id=existing.id, moved=len(to_move))
            return GroupingResult(key=key, group_id=existing.id, created=False, moved=to_move)

        tab_ids = [t.id for t in members]
        group_id = await self.provider.group_tabs(tab_ids)
        await self.provider.update_group(
            group_id, title=title, color=color_for_key(key), collapsed=False
        )
        await self._schedule_collapse(group_id, config)

        counter("grouping.groups_created")
        log_event("grouping.created", key=key, group_id=group_id, size=len(tab_ids))
        return GroupingResult(key=key, group_id=group_id, created=True, moved=tab_ids)

    @staticmethod
    def _eligible_member(tab: Tab, key: str, config: UserConfig) -> bool:
        eligibility = evaluate(tab, config)
        return eligibility.allowed and eligibility.key == key

    async def _find_group(self, title: str, window_id: int | None) -> TabGroup | None:
        groups = await self.provider.query_groups(title=title, window_id=window_id)
        return groups[0] if groups else None

    async def _schedule_collapse(self, group_id: int, config: UserConfig) -> None:
        if config.collapse_after_hours <= 0:
            return
        await self.timers.create(
            collapse_alarm_name(group_id), delay_minutes=config.collapse_after_hours * 60
        )

    async def collapse_group(self, group_id: int) -> bool:
        """Collapse a group when its timer fires. A vanished group is ignored."""
        try:
            await self.provider.update_group(group_id, collapsed=True)
        except TabProviderError as e:
            logger.debug("Collapse skipped for group %s: %s", group_id, e)
            return False
        counter("grouping.collapsed")
        return True
