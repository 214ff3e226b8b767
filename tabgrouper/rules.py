from __future__ import annotations

from enum import Enum
from typing import Any, Iterable, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .log import get_logger
from .model import normalize_group_title

log = get_logger(__name__)

GROUP_COLORS = ("blue", "red", "green", "yellow", "purple", "pink", "cyan", "orange", "grey")


class TabProperty(str, Enum):
    URL = "url"
    TITLE = "title"
    HOSTNAME = "hostname"
    URL_PATH = "url_path"


class Operator(str, Enum):
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"
    EQUALS = "equals"
    REGEX = "regex"
    WILDCARD = "wildcard"


class LogicalOperator(str, Enum):
    AND = "AND"
    OR = "OR"


class Condition(BaseModel):
    model_config = ConfigDict(frozen=True)

    property: TabProperty
    operator: Operator
    value: str = Field("", description="Empty values never match.")


class ConditionGroup(BaseModel):
    model_config = ConfigDict(frozen=True)

    operator: LogicalOperator = LogicalOperator.AND
    conditions: List[Condition] = Field(..., min_length=1)


class Rule(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    name: str = Field(..., min_length=1)
    color: Optional[str] = Field(None, description="Host group color; round-robin when unset.")
    min_tabs: int = Field(1, ge=1, alias="minTabs")
    condition_group: ConditionGroup = Field(..., alias="conditionGroup")

    @field_validator("color")
    @classmethod
    def _known_color(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and v not in GROUP_COLORS:
            raise ValueError(f"invalid rule color: {v!r}")
        return v

    def with_condition(self, condition: Condition, operator: Optional[LogicalOperator] = None) -> "Rule":
        group = ConditionGroup(
            operator=operator or self.condition_group.operator,
            conditions=[*self.condition_group.conditions, condition],
        )
        return self.model_copy(update={"condition_group": group})


def parse_rule(data: Any) -> Optional[Rule]:
    """Validate one rule; invalid shapes are logged and yield None."""
    if isinstance(data, Rule):
        return data
    try:
        return Rule.model_validate(data)
    except (ValidationError, ValueError, TypeError) as e:
        name = data.get("name") if isinstance(data, dict) else None
        log.warning("Ignoring invalid rule %r: %s", name, _short_error(e))
        return None


def parse_rules(items: Iterable[Any]) -> List[Rule]:
    out: List[Rule] = []
    for item in items or []:
        rule = parse_rule(item)
        if rule is not None:
            out.append(rule)
    return out


def rule_for_name(rules: Iterable[Any], name: str) -> Optional[Rule]:
    """First rule whose name equals `name` once both are reduced to a group title."""
    key = normalize_group_title(name)
    for r in parse_rules(rules):
        if normalize_group_title(r.name) == key:
            return r
    return None


def _short_error(e: Exception) -> str:
    if isinstance(e, ValidationError):
        parts = []
        for err in e.errors()[:3]:
            loc = ".".join(str(x) for x in err.get("loc", ()))
            parts.append(f"{loc}: {err.get('msg')}")
        return "; ".join(parts)
    return str(e)
