from __future__ import annotations

import sqlite3
import time
from functools import partial
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from .batch import run_windows
from .colors import ColorAllocator
from .config import Settings
from .errors import HostOperationFailed, call_with_retries
from .failures import InjectionFailureTracker
from .log import get_logger
from .model import PIN_MARKER, Group, Tab, format_group_title, normalize_group_title
from .name_cache import NameCache
from .queue import TabEventQueue
from .reconcile import (
    AutoGroupRegistry,
    CreateGroup,
    AddToGroup,
    Operation,
    execute_plan,
    plan_window,
)
from .resolve import NameResolver, Resolution
from .rules import Condition, LogicalOperator, Operator, Rule, TabProperty, parse_rules

log = get_logger(__name__)


class GroupingEngine:
    """Keeps a host's tab groups in line with the computed tab names.

    Owns the name cache, failure tracker, color rotation, auto-group registry
    and the current Settings. Settings are only swapped between passes.
    """

    def __init__(
        self,
        host,
        settings: Optional[Settings] = None,
        *,
        extractor: Any = None,
        cache: Optional[NameCache] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.host = host
        self.settings = settings or Settings()
        if cache is None:
            path = self.settings.name_cache_path
            cache = NameCache.open(Path(path)) if path else NameCache()
        self.cache = cache
        self.tracker = InjectionFailureTracker(self.settings.injection_max_retries)
        self.colors = ColorAllocator()
        self.registry = AutoGroupRegistry(self.settings.auto_group_registry_ttl_s, clock=clock)
        self.resolver = NameResolver(self.settings, cache=self.cache, tracker=self.tracker, extractor=extractor)
        self.queue = TabEventQueue(self.process_tab_queue, delay_s=self.settings.queue_delay_s)
        self.windows: Dict[int, None] = {}

    # -- naming

    async def resolve(self, tab: Any) -> Optional[Resolution]:
        return await self.resolver.resolve(tab)

    async def classify(self, tab: Any) -> Optional[str]:
        return await self.resolver.classify(tab)

    def get_next_color(self) -> str:
        return self.colors.next_color()

    # -- reconciliation

    async def reconcile_window(self, window_id: int) -> List[Operation]:
        settings = self.settings
        self.windows[window_id] = None
        try:
            tabs = await self._host_call(f"query tabs of window {window_id}", partial(self.host.query_tabs, window_id))
            groups = await self._host_call(f"query groups of window {window_id}", partial(self.host.query_groups, window_id))
        except HostOperationFailed as e:
            log.warning("Skipping window %s this pass: %s", window_id, e)
            return []

        names = await self.resolve_names(tabs)
        plan = plan_window(tabs, groups, names, settings)
        if plan.empty:
            log.debug("Window %s already grouped (%d tab(s))", window_id, len(tabs))
            ops: List[Operation] = []
        else:
            ops = await execute_plan(
                plan,
                self.host,
                window_id=window_id,
                settings=settings,
                colors=self.colors,
                registry=self.registry,
            )
            log.info("Window %s: %d operation(s) applied", window_id, len(ops))

        if settings.show_tab_count and ops:
            await self._refresh_counts(window_id)
        self._flush_cache()
        return ops

    async def resolve_names(self, tabs: Sequence[Tab]) -> Dict[int, Optional[str]]:
        results = await run_windows(
            label="resolve",
            items=list(tabs),
            key=lambda t: t.id,
            run_item=self.resolver.resolve,
            window_size=self.settings.extraction_concurrency,
            pause_s=self.settings.batch_pause_s,
        )
        return {tid: (r.name if r else None) for tid, r in results.items()}

    async def process_tab_queue(self, tab_ids: Iterable[int]) -> List[Operation]:
        if not self.settings.auto_grouping_enabled:
            log.debug("Auto-grouping disabled; ignoring %d queued tab(s)", len(list(tab_ids)))
            return []

        windows: Dict[int, None] = {}
        for tab_id in dict.fromkeys(tab_ids):
            try:
                tab = await self._host_call(f"get tab {tab_id}", partial(self.host.get_tab, tab_id))
            except HostOperationFailed:
                continue
            if tab.window_id is not None:
                windows[tab.window_id] = None

        ops: List[Operation] = []
        for window_id in windows:
            ops.extend(await self.reconcile_window(window_id))
        return ops

    # -- host events

    def on_tab_updated(self, tab_id: int, *, status: Optional[str] = None, title_changed: bool = False) -> bool:
        """Queue a tab that finished loading or was retitled; returns True if queued."""
        if not self.settings.auto_grouping_enabled:
            return False
        if status != "complete" and not title_changed:
            return False
        self.tracker.clear(tab_id)
        self.queue.enqueue(tab_id)
        return True

    def on_tab_removed(self, tab_id: int) -> None:
        self.tracker.clear(tab_id)

    async def handle_group_created(self, group: Group) -> bool:
        """Classify a new host group; returns True when it is manual."""
        member_ids = await self._member_ids(group)
        if self.registry.is_auto(group.id, member_ids, window_id=group.window_id):
            log.debug("Group %s matched an automatic grouping", group.id)
            return False

        log.info("Group %s classified as manual", group.id)
        self.settings.manual_group_ids.add(group.id)
        title = group.title or ""
        if not title.startswith(PIN_MARKER):
            pinned = f"{PIN_MARKER} {normalize_group_title(title) or 'Group'}"
            try:
                await self._host_call(f"pin group {group.id}", partial(self.host.update_group, group.id, title=pinned))
            except HostOperationFailed as e:
                log.warning("Could not mark group %s as manual: %s", group.id, e)
        return True

    def handle_group_removed(self, group_id: int) -> None:
        self.settings.manual_group_ids.discard(group_id)

    async def convert_to_auto(self, group_id: int) -> List[Operation]:
        if group_id not in self.settings.manual_group_ids:
            return []
        self.settings.manual_group_ids.discard(group_id)
        try:
            group = await self._host_call(f"get group {group_id}", partial(self.host.get_group, group_id))
            title = group.title or ""
            if title.startswith(PIN_MARKER):
                await self._host_call(
                    f"unpin group {group_id}",
                    partial(self.host.update_group, group_id, title=title[len(PIN_MARKER):].lstrip()),
                )
        except HostOperationFailed as e:
            log.warning("Could not convert group %s: %s", group_id, e)
            return []
        return await self.process_tab_queue(await self._member_ids(group))

    async def refresh_group_title(self, group_id: int) -> Optional[str]:
        """Rewrite a group's title with its current tab count; returns the new title."""
        try:
            group = await self._host_call(f"get group {group_id}", partial(self.host.get_group, group_id))
            count = len(await self._member_ids(group))
        except HostOperationFailed as e:
            log.debug("Cannot refresh title of group %s: %s", group_id, e)
            return None
        if not group.normalized_title:
            return None
        title = format_group_title(
            group.title,
            count=count,
            manual=group_id in self.settings.manual_group_ids,
            show_count=self.settings.show_tab_count,
        )
        if title == group.title:
            return title
        try:
            await self._host_call(f"retitle group {group_id}", partial(self.host.update_group, group_id, title=title))
        except HostOperationFailed as e:
            log.debug("Cannot retitle group %s: %s", group_id, e)
            return None
        return title

    # -- rule maintenance

    def add_exception_for_tab(self, tab: Tab) -> Optional[str]:
        """Never group this tab's hostname again; returns the hostname added."""
        host = tab.hostname
        if not host or host in self.settings.exceptions:
            return None
        self.settings.exceptions = [*self.settings.exceptions, host]
        log.info("Added exception for %s", host)
        return host

    def add_hostname_to_rule(self, rule_index: int, tab: Tab) -> Optional[Rule]:
        rules = parse_rules(self.settings.custom_rules)
        if not 0 <= rule_index < len(rules) or not tab.hostname:
            log.warning("No rule at index %s for %s", rule_index, tab.hostname or tab.url)
            return None
        rule = rules[rule_index]
        cond = Condition(property=TabProperty.HOSTNAME, operator=Operator.CONTAINS, value=tab.hostname)
        if any(c.property is cond.property and c.value == cond.value for c in rule.condition_group.conditions):
            log.info("Rule %r already matches %s", rule.name, tab.hostname)
            return rule
        updated = rule.with_condition(cond, LogicalOperator.OR)
        rules[rule_index] = updated
        self.settings.custom_rules = rules
        log.info("Added %s to rule %r", tab.hostname, rule.name)
        return updated

    async def propagate_rule_changes(
        self,
        old_rules: Sequence[Rule],
        new_rules: Sequence[Rule],
        *,
        window_ids: Optional[Iterable[int]] = None,
    ) -> int:
        """Retitle/recolor groups of rules renamed or recolored in place.

        A rule is the same rule when its condition group is unchanged.
        Returns the number of groups updated.
        """
        old_rules = parse_rules(old_rules)
        new_rules = parse_rules(new_rules)
        changes = []
        for old in old_rules:
            new = next((r for r in new_rules if r.condition_group == old.condition_group), None)
            if new is not None and (old.name != new.name or old.color != new.color):
                changes.append((old, new))
        if not changes:
            return 0

        updated = 0
        for window_id in list(window_ids if window_ids is not None else self.windows):
            try:
                groups = await self._host_call(f"query groups of window {window_id}", partial(self.host.query_groups, window_id))
            except HostOperationFailed:
                continue
            for g in groups:
                if g.id in self.settings.manual_group_ids:
                    continue
                for old, new in changes:
                    old_title = normalize_group_title(old.name)
                    new_title = normalize_group_title(new.name)
                    if g.normalized_title != old_title:
                        continue
                    title = g.title.replace(old_title, new_title, 1) if old_title != new_title else None
                    try:
                        await self._host_call(
                            f"update group {g.id}",
                            partial(self.host.update_group, g.id, title=title, color=new.color),
                        )
                        updated += 1
                    except HostOperationFailed as e:
                        log.warning("Could not update group %s for rule %r: %s", g.id, new.name, e)
                    break
        return updated

    async def group_similar(self, tab: Tab) -> Optional[Operation]:
        """Group every tab of the window that shares this tab's name, ignoring thresholds."""
        name = normalize_group_title(await self.classify(tab))
        if not name or tab.window_id is None:
            return None
        window_id = tab.window_id
        try:
            tabs = await self._host_call(f"query tabs of window {window_id}", partial(self.host.query_tabs, window_id))
            groups = await self._host_call(f"query groups of window {window_id}", partial(self.host.query_groups, window_id))
        except HostOperationFailed as e:
            log.warning("Cannot group similar tabs: %s", e)
            return None

        manual = self.settings.manual_group_ids
        names = await self.resolve_names([t for t in tabs if not (t.grouped and t.group_id in manual)])
        ids = [t.id for t in tabs if normalize_group_title(names.get(t.id)) == name]
        if not ids:
            return None
        existing = next(
            (g for g in groups if g.id not in self.settings.manual_group_ids and g.normalized_title == name),
            None,
        )
        try:
            if existing is not None:
                await self._host_call(f"add to group {existing.id}", partial(self.host.group_tabs, ids, group_id=existing.id))
                return AddToGroup(existing.id, name, ids)
            self.registry.register_intent(window_id, ids)
            gid = await self._host_call(f"create group {name!r}", partial(self.host.group_tabs, ids, window_id=window_id))
            self.registry.mark_auto(gid)
            color = self.get_next_color()
            await self._host_call(f"title group {gid}", partial(self.host.update_group, gid, title=name, color=color))
            return CreateGroup(name, ids, color, gid)
        except HostOperationFailed as e:
            log.warning("Cannot group similar tabs for %r: %s", name, e)
            return None

    async def update_settings(self, new: Settings) -> None:
        old = self.settings
        self.settings = new
        self.resolver.settings = new
        self.resolver.reset_concurrency()
        self.tracker.max_retries = max(1, int(new.injection_max_retries))
        self.registry.ttl_s = new.auto_group_registry_ttl_s
        self.queue.delay_s = new.queue_delay_s
        if old.naming_key() != new.naming_key():
            log.info("Naming settings changed; clearing %d cached name(s)", len(self.cache))
            self.tracker.reset()
            self._clear_cache()
        await self.propagate_rule_changes(old.custom_rules, new.custom_rules)

    # -- helpers

    async def _host_call(self, label: str, fn):
        return await call_with_retries(
            label,
            fn,
            attempts=self.settings.host_retry_attempts,
            delay_s=self.settings.host_retry_delay_s,
        )

    async def _member_ids(self, group: Group) -> List[int]:
        if group.window_id is None:
            return []
        try:
            tabs = await self._host_call(
                f"query tabs of window {group.window_id}", partial(self.host.query_tabs, group.window_id)
            )
        except HostOperationFailed:
            return []
        return [t.id for t in tabs if t.group_id == group.id]

    async def _refresh_counts(self, window_id: int) -> None:
        try:
            groups = await self._host_call(f"query groups of window {window_id}", partial(self.host.query_groups, window_id))
        except HostOperationFailed:
            return
        for g in groups:
            await self.refresh_group_title(g.id)

    def _flush_cache(self) -> None:
        try:
            self.cache.flush()
        except sqlite3.Error as e:
            log.warning("Could not store name cache: %s", e)

    def _clear_cache(self) -> None:
        try:
            self.cache.clear()
        except sqlite3.Error as e:
            log.warning("Could not clear stored name cache: %s", e)
