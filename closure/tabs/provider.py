"""
Tab provider interface.

The provider owns tabs and groups. Every operation may fail because the tab
or group vanished in the meantime; callers catch TabProviderError and treat
it as a silent no-op.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol

from closure.tabs.models import GroupColor, Tab, TabGroup


class TabProviderError(Exception):
    """Base exception for tab provider failures."""

    pass


class TabNotFoundError(TabProviderError):
    """The tab no longer exists."""

    pass


class GroupNotFoundError(TabProviderError):
    """The group no longer exists."""

    pass


class TabProvider(Protocol):
    async def query_tabs(self) -> list[Tab]: ...

    async def get_tab(self, tab_id: int) -> Tab: ...

    async def close_tab(self, tab_id: int) -> None: ...

    async def create_tab(self, url: str, active: bool = False) -> Tab: ...

    async def group_tabs(self, tab_ids: Sequence[int], group_id: int | None = None) -> int: ...

    async def ungroup_tabs(self, tab_ids: Sequence[int]) -> None: ...

    async def update_group(
        self,
        group_id: int,
        *,
        title: str | None = None,
        color: GroupColor | None = None,
        collapsed: bool | None = None,
    ) -> TabGroup: ...

    async def query_groups(
        self, title: str | None = None, window_id: int | None = None
    ) -> list[TabGroup]: ...
