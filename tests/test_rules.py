from tabgrouper.rules import (
    Condition,
    LogicalOperator,
    Operator,
    TabProperty,
    parse_rule,
    parse_rules,
    rule_for_name,
)


def _raw(name: str, **extra) -> dict:
    data = {
        "name": name,
        "conditionGroup": {"conditions": [{"property": "hostname", "operator": "contains", "value": name.lower()}]},
    }
    data.update(extra)
    return data


def test_aliases_and_defaults():
    r = parse_rule(_raw("Jira", minTabs=3, color="blue"))
    assert r is not None
    assert r.min_tabs == 3
    assert r.color == "blue"
    assert r.condition_group.operator is LogicalOperator.AND
    assert r.condition_group.conditions[0].property is TabProperty.HOSTNAME

    d = parse_rule(_raw("Docs"))
    assert d.min_tabs == 1
    assert d.color is None


def test_invalid_rules_are_dropped():
    rules = parse_rules(
        [
            _raw("Good"),
            _raw("Bad color", color="magenta"),
            _raw("Zero", minTabs=0),
            {"name": "Empty", "conditionGroup": {"conditions": []}},
            {"name": "", "conditionGroup": _raw("x")["conditionGroup"]},
            "not a rule",
        ]
    )
    assert [r.name for r in rules] == ["Good"]


def test_with_condition_returns_new_rule():
    r = parse_rule(_raw("Dev"))
    cond = Condition(property=TabProperty.HOSTNAME, operator=Operator.CONTAINS, value="gitlab.com")
    r2 = r.with_condition(cond, LogicalOperator.OR)
    assert len(r.condition_group.conditions) == 1
    assert len(r2.condition_group.conditions) == 2
    assert r2.condition_group.operator is LogicalOperator.OR
    assert r2.name == "Dev"


def test_rule_for_name_first_declared():
    rules = parse_rules([_raw("Dev", minTabs=2), _raw("Dev", minTabs=5)])
    assert rule_for_name(rules, "Dev").min_tabs == 2
    assert rule_for_name(rules, "Ops") is None
