import asyncio

from tabgrouper.colors import ColorAllocator
from tabgrouper.config import Settings
from tabgrouper.engine import GroupingEngine
from tabgrouper.errors import HostError
from tabgrouper.host import InMemoryHost
from tabgrouper.model import Group, Tab
from tabgrouper.reconcile import (
    AddToGroup,
    AutoGroupRegistry,
    CreateGroup,
    Ungroup,
    execute_plan,
    plan_window,
)
from tabgrouper.rules import parse_rules


def _settings(**kw) -> Settings:
    kw.setdefault("host_retry_delay_s", 0.0)
    kw.setdefault("batch_pause_s", 0.0)
    return Settings(**kw)


def _tab(tab_id: int, url: str, group_id: int = -1, title: str = "") -> Tab:
    return Tab(id=tab_id, url=url, title=title, window_id=1, group_id=group_id)


def _abc_host() -> InMemoryHost:
    return InMemoryHost(
        [
            _tab(1, "https://a.io", title="A — Login"),
            _tab(2, "https://a.io/page2"),
            _tab(3, "https://b.io"),
        ]
    )


def _ops_tab_ids(ops):
    ids = set()
    for op in ops:
        ids.update(op.tab_ids)
    return ids


def test_end_to_end_same_domain_grouped_single_left_alone():
    host = _abc_host()
    engine = GroupingEngine(host, _settings())
    ops = asyncio.run(engine.reconcile_window(1))

    assert ops == [CreateGroup("A", [1, 2], "blue", 1)]
    assert host.groups[1].title == "A"
    assert host.members(1) == [1, 2]
    assert not host.tabs[3].grouped


def test_second_pass_is_a_no_op():
    host = _abc_host()
    engine = GroupingEngine(host, _settings())
    asyncio.run(engine.reconcile_window(1))
    calls = len(host.calls)

    assert asyncio.run(engine.reconcile_window(1)) == []
    assert len(host.calls) == calls


def test_second_pass_is_a_no_op_with_tab_counts():
    host = _abc_host()
    engine = GroupingEngine(host, _settings(show_tab_count=True))
    asyncio.run(engine.reconcile_window(1))
    assert host.groups[1].title == "A (2)"
    calls = len(host.calls)

    assert asyncio.run(engine.reconcile_window(1)) == []
    assert len(host.calls) == calls


def _rule_settings(min_tabs: int) -> Settings:
    rules = parse_rules(
        [
            {
                "name": "Docs",
                "minTabs": min_tabs,
                "color": "purple",
                "conditionGroup": {"conditions": [{"property": "url_path", "operator": "starts_with", "value": "/docs"}]},
            }
        ]
    )
    return _settings(custom_rules=rules)


def test_threshold_below_min_tabs_creates_nothing():
    host = InMemoryHost([_tab(1, "https://a.io/docs/1"), _tab(2, "https://b.io/docs/2")])
    engine = GroupingEngine(host, _rule_settings(3))
    assert asyncio.run(engine.reconcile_window(1)) == []
    assert host.calls == []


def test_threshold_reached_groups_all_in_one_call():
    host = InMemoryHost([_tab(1, "https://a.io/docs/1"), _tab(2, "https://b.io/docs/2")])
    engine = GroupingEngine(host, _rule_settings(3))
    asyncio.run(engine.reconcile_window(1))

    host.add_tab(_tab(3, "https://c.io/docs/3"))
    ops = asyncio.run(engine.reconcile_window(1))
    assert ops == [CreateGroup("Docs", [1, 2, 3], "purple", 1)]
    group_calls = [c for c in host.calls if c[0] == "group_tabs"]
    assert group_calls == [("group_tabs", {"tab_ids": [1, 2, 3], "group_id": None})]


def test_manual_groups_are_never_touched():
    host = InMemoryHost(
        [
            _tab(1, "https://github.com/a", group_id=10),
            _tab(2, "https://github.com/b"),
            _tab(3, "https://github.com/c"),
            _tab(4, "https://b.io", group_id=10),
        ],
        [Group(id=10, title="📌 Work", window_id=1)],
    )
    engine = GroupingEngine(host, _settings(manual_group_ids={10}))
    ops = asyncio.run(engine.reconcile_window(1))

    assert ops == [CreateGroup("Github", [2, 3], "blue", 11)]
    assert not _ops_tab_ids(ops) & {1, 4}
    assert host.members(10) == [1, 4]
    assert host.groups[10].title == "📌 Work"


def test_manual_group_title_is_not_reused():
    host = InMemoryHost(
        [_tab(1, "https://a.io", group_id=10), _tab(2, "https://a.io/x"), _tab(3, "https://a.io/y")],
        [Group(id=10, title="A", window_id=1)],
    )
    plan = plan_window(list(host.tabs.values()), list(host.groups.values()), {1: "A", 2: "A", 3: "A"}, _settings(manual_group_ids={10}))
    assert plan.title_index == {}
    assert [(b.name, b.group_id, b.member_ids) for b in plan.buckets] == [("A", None, [2, 3])]


def test_adds_to_existing_group_with_same_title():
    host = InMemoryHost(
        [_tab(1, "https://a.io", group_id=5), _tab(2, "https://a.io/x")],
        [Group(id=5, title="A (1)", window_id=1)],
    )
    engine = GroupingEngine(host, _settings())
    ops = asyncio.run(engine.reconcile_window(1))
    assert ops == [AddToGroup(5, "A", [2])]
    assert host.members(5) == [1, 2]


def test_underpopulated_and_unnamed_tabs_are_ungrouped_first():
    host = InMemoryHost(
        [
            _tab(1, "https://b.io", group_id=5),
            _tab(2, "chrome://newtab", group_id=5),
            _tab(3, "https://a.io", group_id=5),
            _tab(4, "https://a.io/x"),
        ],
        [Group(id=5, title="Old", window_id=1)],
    )
    engine = GroupingEngine(host, _settings())
    ops = asyncio.run(engine.reconcile_window(1))

    assert ops[:2] == [Ungroup([1]), Ungroup([2])]
    assert ops[2] == CreateGroup("A", [3, 4], "blue", 6)
    names = [c[0] for c in host.calls]
    assert names.index("group_tabs") > names.index("ungroup")
    assert 5 not in host.groups


def test_single_tab_groups_mode():
    host = InMemoryHost([_tab(1, "https://b.io")])
    engine = GroupingEngine(host, _settings(single_tab_groups=True))
    ops = asyncio.run(engine.reconcile_window(1))
    assert ops == [CreateGroup("B", [1], "blue", 1)]


def test_colors_rotate_across_new_groups():
    host = InMemoryHost([_tab(1, "https://a.io"), _tab(2, "https://a.io/2"), _tab(3, "https://b.io"), _tab(4, "https://b.io/2")])
    engine = GroupingEngine(host, _settings())
    ops = asyncio.run(engine.reconcile_window(1))
    assert [(op.name, op.color) for op in ops] == [("A", "blue"), ("B", "red")]


class FlakyHost(InMemoryHost):
    def __init__(self, *args, failures=None, **kw):
        super().__init__(*args, **kw)
        self.failures = list(failures or [])

    async def group_tabs(self, tab_ids, group_id=None, window_id=None):
        if self.failures:
            raise self.failures.pop(0)
        return await super().group_tabs(tab_ids, group_id=group_id, window_id=window_id)


def test_transient_host_error_is_retried():
    host = FlakyHost(list(_abc_host().tabs.values()), failures=[HostError("Tabs cannot be edited right now")])
    engine = GroupingEngine(host, _settings())
    ops = asyncio.run(engine.reconcile_window(1))
    assert ops == [CreateGroup("A", [1, 2], "blue", 1)]


def test_failed_operation_is_skipped_not_fatal():
    host = FlakyHost(
        [_tab(1, "https://a.io"), _tab(2, "https://a.io/2"), _tab(3, "https://b.io"), _tab(4, "https://b.io/2")],
        failures=[HostError("No tab with id: 1.")],
    )
    engine = GroupingEngine(host, _settings())
    ops = asyncio.run(engine.reconcile_window(1))
    assert ops == [CreateGroup("B", [3, 4], "blue", 1)]


def test_snapshot_failure_skips_pass():
    class DownHost(InMemoryHost):
        async def query_tabs(self, window_id):
            raise HostError("Browser unavailable")

    engine = GroupingEngine(DownHost(), _settings(host_retry_attempts=2))
    assert asyncio.run(engine.reconcile_window(1)) == []


def test_execute_plan_registers_auto_groups():
    host = _abc_host()
    s = _settings()
    tabs = list(host.tabs.values())
    plan = plan_window(tabs, [], {1: "A", 2: "A", 3: "B"}, s)
    registry = AutoGroupRegistry(10.0)
    ops = asyncio.run(execute_plan(plan, host, window_id=1, settings=s, colors=ColorAllocator(), registry=registry))
    assert ops == [CreateGroup("A", [1, 2], "blue", 1)]
    assert registry.is_auto(1)


def test_registry_intents_match_once_and_expire():
    now = [0.0]
    registry = AutoGroupRegistry(10.0, clock=lambda: now[0])
    registry.register_intent(1, [3, 1])
    assert registry.is_auto(99, [1, 3], window_id=1)
    assert not registry.is_auto(99, [1, 3], window_id=1)

    registry.mark_auto(7)
    assert registry.is_auto(7)
    now[0] = 11.0
    assert not registry.is_auto(7)
    assert len(registry) == 0


def _named_rule_settings(name: str) -> Settings:
    return _settings(
        custom_rules=parse_rules(
            [{"name": name, "conditionGroup": {"conditions": [{"property": "hostname", "operator": "equals", "value": "a.io"}]}}]
        )
    )


def test_names_that_normalize_differently_settle_after_one_pass():
    for rule_name, title in (("Top (10)", "Top"), ("Work ", "Work"), ("📌 Pinned", "Pinned")):
        host = InMemoryHost([_tab(1, "https://a.io"), _tab(2, "https://a.io/x")])
        engine = GroupingEngine(host, _named_rule_settings(rule_name))

        assert asyncio.run(engine.reconcile_window(1)) == [CreateGroup(title, [1, 2], "blue", 1)]
        assert host.groups[1].title == title
        assert asyncio.run(engine.reconcile_window(1)) == []
        assert asyncio.run(engine.reconcile_window(1)) == []
        assert list(host.groups) == [1]
        assert engine.get_next_color() == "red"


def test_site_name_with_count_suffix_matches_existing_group():
    host = InMemoryHost(
        [_tab(1, "https://mail.io", group_id=5), _tab(2, "https://mail.io/x")],
        [Group(id=5, title="Inbox (1)", window_id=1)],
    )
    tabs = list(host.tabs.values())
    plan = plan_window(tabs, list(host.groups.values()), {1: "Inbox (3)", 2: "Inbox (3)"}, _settings())
    assert [(b.name, b.group_id, b.tab_ids) for b in plan.buckets] == [("Inbox", 5, [2])]
    assert plan.ungroups == []


def test_rules_given_as_mappings_reconcile():
    raw = [{"name": "Work", "minTabs": 1, "conditionGroup": {"conditions": [{"property": "hostname", "operator": "contains", "value": "a.io"}]}}]
    host = InMemoryHost([_tab(1, "https://a.io")])
    engine = GroupingEngine(host, _settings(custom_rules=raw))

    assert asyncio.run(engine.classify(host.tabs[1])) == "Work"
    assert asyncio.run(engine.reconcile_window(1)) == [CreateGroup("Work", [1], "blue", 1)]

    s = _settings()
    s.custom_rules = raw
    plan = plan_window([_tab(2, "https://a.io")], [], {2: "Work"}, s)
    assert [(b.name, b.tab_ids) for b in plan.buckets] == [("Work", [2])]


def test_tabs_in_manual_groups_do_not_count_toward_threshold():
    host = InMemoryHost(
        [_tab(1, "https://a.io", group_id=10), _tab(2, "https://a.io/x")],
        [Group(id=10, title="📌 Mine", window_id=1)],
    )
    engine = GroupingEngine(host, _settings(manual_group_ids={10}, min_tabs_for_auto_group=2))
    assert asyncio.run(engine.reconcile_window(1)) == []
    assert not host.tabs[2].grouped

    host.add_tab(_tab(3, "https://a.io/y"))
    assert asyncio.run(engine.reconcile_window(1)) == [CreateGroup("A", [2, 3], "blue", 11)]
    assert host.members(10) == [1]
