from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Sequence

from .domain import hostname_of, scheme_of, url_path_of
from .sanitize import sanitize_title

GROUP_ID_NONE = -1

PIN_MARKER = "📌"
_COUNT_SUFFIX = re.compile(r"\s\(\d+\)$")
_PIN_PREFIX = re.compile(PIN_MARKER + r"\s*")


@dataclass
class Tab:
    id: Optional[int]
    url: str = ""
    title: str = ""
    pinned: bool = False
    window_id: Optional[int] = None
    group_id: Optional[int] = GROUP_ID_NONE

    @property
    def grouped(self) -> bool:
        return self.group_id is not None and self.group_id != GROUP_ID_NONE

    @property
    def hostname(self) -> str:
        return hostname_of(self.url) or ""

    @property
    def scheme(self) -> str:
        return scheme_of(self.url)

    @property
    def url_path(self) -> str:
        return url_path_of(self.url)

    def clean_title(self, noise_words: Sequence[str] = ()) -> str:
        return sanitize_title(self.title, noise_words)

    @staticmethod
    def from_host(data: Mapping[str, Any]) -> "Tab":
        """Build a Tab from a host payload (camelCase or snake_case keys)."""
        if not isinstance(data, Mapping):
            raise TypeError(f"tab payload must be a mapping, got {type(data).__name__}")
        group_id = _first(data, "groupId", "group_id", default=GROUP_ID_NONE)
        return Tab(
            id=_opt_int(data.get("id")),
            url=str(data.get("url") or ""),
            title=str(data.get("title") or ""),
            pinned=bool(data.get("pinned", False)),
            window_id=_opt_int(_first(data, "windowId", "window_id")),
            group_id=GROUP_ID_NONE if group_id is None else int(group_id),
        )


@dataclass
class Group:
    id: int
    title: str = ""
    color: Optional[str] = None
    window_id: Optional[int] = None
    collapsed: bool = False

    @property
    def normalized_title(self) -> str:
        return normalize_group_title(self.title)

    @staticmethod
    def from_host(data: Mapping[str, Any]) -> "Group":
        if not isinstance(data, Mapping):
            raise TypeError(f"group payload must be a mapping, got {type(data).__name__}")
        return Group(
            id=int(data["id"]),
            title=str(data.get("title") or ""),
            color=data.get("color"),
            window_id=_opt_int(_first(data, "windowId", "window_id")),
            collapsed=bool(data.get("collapsed", False)),
        )


def normalize_group_title(title: Optional[str]) -> str:
    """Strip host bookkeeping from a group title: "📌 Docs (3)" -> "Docs"."""
    t = _COUNT_SUFFIX.sub("", title or "")
    t = _PIN_PREFIX.sub("", t)
    return t.strip()


def format_group_title(name: str, *, count: int = 0, manual: bool = False, show_count: bool = False) -> str:
    title = normalize_group_title(name)
    if show_count and count > 0:
        title = f"{title} ({count})"
    if manual:
        title = f"{PIN_MARKER} {title}"
    return title


def _first(data: Mapping[str, Any], *keys: str, default: Any = None) -> Any:
    for k in keys:
        if k in data:
            return data[k]
    return default


def _opt_int(v: Any) -> Optional[int]:
    if v is None or v == "":
        return None
    return int(v)
