from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence, Tuple

from .errors import HostError, GROUP_NOT_FOUND, TAB_NOT_FOUND
from .model import GROUP_ID_NONE, Group, Tab
from .signals import PageSignals


class HostTabAPI(Protocol):
    """Tab/group API of the windowing host."""

    async def get_tab(self, tab_id: int) -> Tab: ...

    async def query_tabs(self, window_id: int) -> List[Tab]: ...

    async def query_groups(self, window_id: int) -> List[Group]: ...

    async def get_group(self, group_id: int) -> Group: ...

    async def group_tabs(
        self,
        tab_ids: Sequence[int],
        group_id: Optional[int] = None,
        window_id: Optional[int] = None,
    ) -> int: ...

    async def update_group(self, group_id: int, title: Optional[str] = None, color: Optional[str] = None) -> Group: ...

    async def ungroup(self, tab_ids: Sequence[int]) -> None: ...


class SignalExtractor(Protocol):
    async def extract(self, tab: Tab) -> Optional[PageSignals]: ...


class InMemoryHost:
    """HostTabAPI over plain dicts.

    Every mutating call is appended to `calls` as (method, args). Groups left
    without tabs are removed, like a real host does.
    """

    def __init__(self, tabs: Sequence[Tab] = (), groups: Sequence[Group] = ()):
        self.tabs: Dict[int, Tab] = {}
        self.groups: Dict[int, Group] = {g.id: g for g in groups}
        self.calls: List[Tuple[str, Dict[str, Any]]] = []
        self._order: List[int] = []
        for t in tabs:
            self.add_tab(t)
        self._next_group_id = max(self.groups, default=0) + 1

    @classmethod
    def from_snapshot(cls, data: Mapping[str, Any]) -> "InMemoryHost":
        """Build from {"tabs": [...], "groups": [...]} host payloads."""
        tabs = [Tab.from_host(t) for t in data.get("tabs") or []]
        groups = [Group.from_host(g) for g in data.get("groups") or []]
        return cls(tabs, groups)

    def add_tab(self, tab: Tab) -> Tab:
        if tab.id is None:
            raise ValueError("in-memory tabs need an id")
        if tab.id not in self.tabs:
            self._order.append(tab.id)
        self.tabs[tab.id] = tab
        return tab

    def remove_tab(self, tab_id: int) -> None:
        tab = self.tabs.pop(tab_id, None)
        if tab_id in self._order:
            self._order.remove(tab_id)
        if tab is not None and tab.grouped:
            self._drop_empty(tab.group_id)

    async def get_tab(self, tab_id: int) -> Tab:
        try:
            return self.tabs[tab_id]
        except KeyError:
            raise HostError(f"No tab with id: {tab_id}.", kind=TAB_NOT_FOUND) from None

    async def query_tabs(self, window_id: int) -> List[Tab]:
        return [self.tabs[i] for i in self._order if self.tabs[i].window_id == window_id]

    async def query_groups(self, window_id: int) -> List[Group]:
        return [g for g in self.groups.values() if g.window_id == window_id]

    async def get_group(self, group_id: int) -> Group:
        try:
            return self.groups[group_id]
        except KeyError:
            raise HostError(f"No group with id: {group_id}.", kind=GROUP_NOT_FOUND) from None

    async def group_tabs(
        self,
        tab_ids: Sequence[int],
        group_id: Optional[int] = None,
        window_id: Optional[int] = None,
    ) -> int:
        ids = list(tab_ids)
        self.calls.append(("group_tabs", {"tab_ids": ids, "group_id": group_id}))
        tabs = [await self.get_tab(i) for i in ids]
        if group_id is None:
            group_id = self._next_group_id
            self._next_group_id += 1
            win = window_id if window_id is not None else (tabs[0].window_id if tabs else None)
            self.groups[group_id] = Group(id=group_id, window_id=win)
        elif group_id not in self.groups:
            raise HostError(f"No group with id: {group_id}.", kind=GROUP_NOT_FOUND)

        previous = {t.group_id for t in tabs if t.grouped and t.group_id != group_id}
        for t in tabs:
            t.group_id = group_id
        for gid in previous:
            self._drop_empty(gid)
        return group_id

    async def update_group(self, group_id: int, title: Optional[str] = None, color: Optional[str] = None) -> Group:
        self.calls.append(("update_group", {"group_id": group_id, "title": title, "color": color}))
        group = await self.get_group(group_id)
        if title is not None:
            group.title = title
        if color is not None:
            group.color = color
        return group

    async def ungroup(self, tab_ids: Sequence[int]) -> None:
        ids = list(tab_ids)
        self.calls.append(("ungroup", {"tab_ids": ids}))
        touched = set()
        for i in ids:
            t = await self.get_tab(i)
            if t.grouped:
                touched.add(t.group_id)
            t.group_id = GROUP_ID_NONE
        for gid in touched:
            self._drop_empty(gid)

    def members(self, group_id: int) -> List[int]:
        return [i for i in self._order if self.tabs[i].group_id == group_id]

    def _drop_empty(self, group_id: Optional[int]) -> None:
        if group_id in self.groups and not self.members(group_id):
            del self.groups[group_id]
