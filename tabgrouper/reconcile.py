from __future__ import annotations

import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Callable, Dict, FrozenSet, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from .batch import run_windows
from .colors import ColorAllocator
from .config import Settings
from .errors import HostOperationFailed, call_with_retries
from .log import get_logger
from .model import Group, Tab, format_group_title, normalize_group_title
from .rules import parse_rules, rule_for_name

log = get_logger(__name__)


@dataclass
class Ungroup:
    tab_ids: List[int]


@dataclass
class AddToGroup:
    group_id: int
    name: str
    tab_ids: List[int]


@dataclass
class CreateGroup:
    name: str
    tab_ids: List[int]
    color: Optional[str] = None
    group_id: Optional[int] = None


Operation = Union[Ungroup, AddToGroup, CreateGroup]


@dataclass
class Bucket:
    """Tabs queued under one name in a pass."""

    name: str
    tab_ids: List[int] = field(default_factory=list)
    group_id: Optional[int] = None  # existing non-manual group with this title
    member_ids: List[int] = field(default_factory=list)  # create path: every eligible tab with this name
    color: Optional[str] = None  # declared by a rule


@dataclass
class WindowPlan:
    ungroups: List[int] = field(default_factory=list)
    buckets: List[Bucket] = field(default_factory=list)
    title_index: Dict[str, int] = field(default_factory=dict)

    @property
    def empty(self) -> bool:
        return not self.ungroups and not self.buckets


def build_title_index(groups: Iterable[Group], manual_ids: Iterable[int]) -> Dict[str, int]:
    manual = set(manual_ids)
    index: Dict[str, int] = {}
    for g in groups:
        if g.id in manual:
            continue
        index.setdefault(g.normalized_title, g.id)
    return index


def plan_window(
    tabs: Sequence[Tab],
    groups: Sequence[Group],
    names: Mapping[int, Optional[str]],
    settings: Settings,
) -> WindowPlan:
    """Compute the ungroups and group buckets for one window snapshot.

    Names are compared as group titles, so "Top (10)" and "Top" are one
    bucket. Tabs in manual groups are never touched and do not count toward
    thresholds. A tab whose current group title already equals its name
    produces nothing, which makes a second pass a no-op.
    """
    manual = set(settings.manual_group_ids)
    rules = parse_rules(settings.custom_rules)
    titles = {g.id: g.normalized_title for g in groups}
    plan = WindowPlan(title_index=build_title_index(groups, manual))

    def in_manual(t: Tab) -> bool:
        return t.grouped and t.group_id in manual

    keys = {t.id: normalize_group_title(names.get(t.id)) for t in tabs}
    eligible = [t for t in tabs if not in_manual(t)]
    counts = Counter(keys[t.id] for t in eligible if keys[t.id])

    buckets: Dict[str, Bucket] = {}
    for t in tabs:
        if in_manual(t):
            continue
        key = keys[t.id]
        if not key:
            if t.grouped:
                plan.ungroups.append(t.id)
            continue
        if t.grouped and titles.get(t.group_id) == key:
            continue

        rule = rule_for_name(rules, key)
        threshold = rule.min_tabs if rule else settings.default_min_tabs
        if counts[key] < threshold:
            if t.grouped:
                plan.ungroups.append(t.id)
            continue

        bucket = buckets.get(key)
        if bucket is None:
            bucket = buckets[key] = Bucket(
                name=key,
                group_id=plan.title_index.get(key),
                color=rule.color if rule else None,
            )
            plan.buckets.append(bucket)
        bucket.tab_ids.append(t.id)

    for bucket in plan.buckets:
        if bucket.group_id is None:
            bucket.member_ids = [t.id for t in eligible if keys[t.id] == bucket.name]
    return plan


class AutoGroupRegistry:
    """Remembers groups this process created, to tell them from manual ones.

    An intent is registered before the host call that creates the group; the
    group id is marked once known. Both expire after ttl_s.
    """

    def __init__(self, ttl_s: float = 10.0, *, clock: Callable[[], float] = time.monotonic):
        self.ttl_s = ttl_s
        self._clock = clock
        self._intents: List[Tuple[Optional[int], FrozenSet[int], float]] = []
        self._recent: Dict[int, float] = {}

    def register_intent(self, window_id: Optional[int], tab_ids: Iterable[int]) -> None:
        self._intents.append((window_id, frozenset(tab_ids), self._clock() + self.ttl_s))

    def mark_auto(self, group_id: int) -> None:
        self._recent[group_id] = self._clock() + self.ttl_s

    def is_auto(self, group_id: int, tab_ids: Iterable[int] = (), window_id: Optional[int] = None) -> bool:
        self.purge()
        if group_id in self._recent:
            return True
        ids = frozenset(tab_ids)
        if not ids:
            return False
        for i, (win, intent, _exp) in enumerate(self._intents):
            if intent == ids and (window_id is None or win is None or win == window_id):
                del self._intents[i]
                return True
        return False

    def purge(self) -> None:
        now = self._clock()
        self._intents = [x for x in self._intents if x[2] > now]
        self._recent = {gid: exp for gid, exp in self._recent.items() if exp > now}

    def __len__(self) -> int:
        return len(self._intents) + len(self._recent)


async def execute_plan(
    plan: WindowPlan,
    host,
    *,
    window_id: int,
    settings: Settings,
    colors: ColorAllocator,
    registry: AutoGroupRegistry,
) -> List[Operation]:
    """Issue a plan against the host; returns the operations it accepted.

    Ungroups go first. A failed operation is skipped for this pass.
    """
    attempts = settings.host_retry_attempts
    delay = settings.host_retry_delay_s
    done: List[Operation] = []

    async def ungroup_one(tab_id: int) -> int:
        await call_with_retries(f"ungroup tab {tab_id}", lambda: host.ungroup([tab_id]), attempts=attempts, delay_s=delay)
        return tab_id

    ungrouped = await run_windows(
        label="ungroup",
        items=plan.ungroups,
        key=lambda tab_id: tab_id,
        run_item=ungroup_one,
        window_size=settings.extraction_concurrency,
        pause_s=settings.batch_pause_s,
    )
    done.extend(Ungroup([tab_id]) for tab_id in plan.ungroups if ungrouped.get(tab_id) is not None)

    for bucket in plan.buckets:
        try:
            if bucket.group_id is not None:
                done.append(await _add(host, bucket, attempts, delay))
            else:
                done.append(await _create(host, bucket, window_id, settings, colors, registry))
        except HostOperationFailed as e:
            log.warning("Skipping group %r this pass: %s", bucket.name, e)
    return done


async def _add(host, bucket: Bucket, attempts: int, delay: float) -> AddToGroup:
    gid = bucket.group_id
    await call_with_retries(
        f"add {len(bucket.tab_ids)} tab(s) to group {gid}",
        lambda: host.group_tabs(bucket.tab_ids, group_id=gid),
        attempts=attempts,
        delay_s=delay,
    )
    return AddToGroup(gid, bucket.name, list(bucket.tab_ids))


async def _create(
    host,
    bucket: Bucket,
    window_id: int,
    settings: Settings,
    colors: ColorAllocator,
    registry: AutoGroupRegistry,
) -> CreateGroup:
    members = list(bucket.member_ids or bucket.tab_ids)
    registry.register_intent(window_id, members)
    gid = await call_with_retries(
        f"create group {bucket.name!r}",
        lambda: host.group_tabs(members, window_id=window_id),
        attempts=settings.host_retry_attempts,
        delay_s=settings.host_retry_delay_s,
    )
    registry.mark_auto(gid)

    color = bucket.color or colors.next_color()
    title = format_group_title(bucket.name, count=len(members), show_count=settings.show_tab_count)
    try:
        await call_with_retries(
            f"title group {gid}",
            lambda: host.update_group(gid, title=title, color=color),
            attempts=settings.host_retry_attempts,
            delay_s=settings.host_retry_delay_s,
        )
    except HostOperationFailed as e:
        log.warning("Created group %s for %r but could not title it: %s", gid, bucket.name, e)
    log.info("Created group %r (%s) with %d tab(s)", bucket.name, color, len(members))
    return CreateGroup(bucket.name, members, color, gid)
