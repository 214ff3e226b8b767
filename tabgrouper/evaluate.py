from __future__ import annotations

import re
from functools import lru_cache
from typing import Any, Dict, Iterable, Optional

from pydantic import ValidationError

from .log import get_logger
from .model import Tab
from .rules import Condition, LogicalOperator, Operator, Rule, TabProperty

log = get_logger(__name__)


def evaluate(tab: Any, rule: Any) -> bool:
    """True when the rule's condition group matches the tab.

    Bad tab or rule shapes fail closed and are logged; nothing is raised.
    """
    t = _coerce_tab(tab)
    if t is None:
        return False
    r = _coerce(Rule, rule, "rule")
    if r is None:
        return False
    return _evaluate_group(t, r)


def evaluate_condition(tab: Any, condition: Any) -> bool:
    t = _coerce_tab(tab)
    if t is None:
        return False
    c = _coerce(Condition, condition, "condition")
    if c is None:
        return False
    return _evaluate_condition(_tab_properties(t), c)


def find_matching_rule(tab: Any, rules: Iterable[Any]) -> Optional[Rule]:
    """First rule in declaration order that matches; no specificity scoring."""
    t = _coerce_tab(tab)
    if t is None:
        return None
    for raw in rules or []:
        r = _coerce(Rule, raw, "rule")
        if r is not None and _evaluate_group(t, r):
            return r
    return None


def _evaluate_group(tab: Tab, rule: Rule) -> bool:
    props = _tab_properties(tab)
    group = rule.condition_group
    # all()/any() over generators short-circuit like the AND/OR semantics require.
    if group.operator is LogicalOperator.AND:
        return all(_evaluate_condition(props, c) for c in group.conditions)
    if group.operator is LogicalOperator.OR:
        return any(_evaluate_condition(props, c) for c in group.conditions)
    return False


def _evaluate_condition(props: Dict[TabProperty, str], condition: Condition) -> bool:
    value = condition.value or ""
    if value == "":
        return False
    subject = props.get(condition.property, "")

    op = condition.operator
    if op is Operator.CONTAINS:
        return value.lower() in subject.lower()
    if op is Operator.NOT_CONTAINS:
        return value.lower() not in subject.lower()
    if op is Operator.STARTS_WITH:
        return subject.lower().startswith(value.lower())
    if op is Operator.ENDS_WITH:
        return subject.lower().endswith(value.lower())
    if op is Operator.EQUALS:
        return subject.lower() == value.lower()
    if op is Operator.REGEX:
        pattern = _compile_regex(value)
        return bool(pattern and pattern.search(subject))
    if op is Operator.WILDCARD:
        pattern = _compile_wildcard(value)
        return bool(pattern and pattern.fullmatch(subject))
    return False


def _tab_properties(tab: Tab) -> Dict[TabProperty, str]:
    return {
        TabProperty.URL: tab.url or "",
        TabProperty.TITLE: tab.title or "",
        TabProperty.HOSTNAME: tab.hostname,
        TabProperty.URL_PATH: tab.url_path if tab.url else "",
    }


@lru_cache(maxsize=512)
def _compile_regex(value: str) -> Optional[re.Pattern]:
    try:
        return re.compile(value, re.IGNORECASE)
    except re.error as e:
        log.warning("Invalid regex in rule condition %r: %s", value, e)
        return None


@lru_cache(maxsize=512)
def _compile_wildcard(value: str) -> Optional[re.Pattern]:
    # Escape everything, then reopen the escaped "*" as ".*".
    body = re.escape(value).replace(r"\*", ".*")
    try:
        return re.compile(body, re.IGNORECASE | re.DOTALL)
    except re.error as e:
        log.warning("Invalid wildcard in rule condition %r: %s", value, e)
        return None


def _coerce_tab(tab: Any) -> Optional[Tab]:
    if isinstance(tab, Tab):
        return tab
    try:
        return Tab.from_host(tab)
    except (TypeError, ValueError, KeyError) as e:
        log.warning("Cannot evaluate rules for malformed tab: %s", e)
        return None


def _coerce(model, data: Any, what: str):
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except ValidationError as e:
        log.warning("Malformed %s ignored (%d validation error(s)): %s", what, e.error_count(), data)
        return None
