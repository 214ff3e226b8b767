from __future__ import annotations

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

import yaml

from .errors import ConfigError
from .log import get_logger
from .rules import Rule, parse_rules

log = get_logger(__name__)

GROUPING_MODES = ("smart", "domain", "subdomain")

DEFAULT_TLDS = (
    ".com", ".org", ".net", ".edu", ".gov", ".io", ".co", ".dev", ".app", ".ai",
    ".co.uk", ".uk", ".de", ".fr", ".ch", ".nl", ".ca", ".com.au", ".au", ".jp",
)

DEFAULT_NOISE_WORDS = (
    "login", "log in", "sign in", "signin", "sign up", "dashboard", "home",
    "welcome", "loading", "untitled", "inbox", "404", "error",
)

# Keys of the extension's settings object, mapped onto Settings fields.
_CAMEL_KEYS = {
    "autoGroupingEnabled": "auto_grouping_enabled",
    "groupingMode": "grouping_mode",
    "customRules": "custom_rules",
    "exceptions": "exceptions",
    "manualGroupIds": "manual_group_ids",
    "minTabsForAutoGroup": "min_tabs_for_auto_group",
    "enableSingleTabGroups": "single_tab_groups",
    "singleTabGroups": "single_tab_groups",
    "showTabCount": "show_tab_count",
    "domainSanitizationTlds": "domain_sanitization_tlds",
    "titleSanitizationNoiseWords": "title_noise_words",
    "titleNoiseWords": "title_noise_words",
    "logLevel": "log_level",
}


def _env_int(name: str, default: int) -> int:
    v = os.getenv(name)
    if v is None or v == "":
        return default
    try:
        return int(v)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    v = os.getenv(name)
    if v is None or v == "":
        return default
    try:
        return float(v)
    except ValueError:
        return default


def _env_bool(name: str, default: bool) -> bool:
    v = os.getenv(name)
    if v is None or v == "":
        return default
    return v.strip().lower() in ("1", "true", "yes", "y", "on")


def _env_str(name: str, default: str) -> str:
    v = os.getenv(name)
    return default if v is None else v


def _env_list(name: str, default: tuple) -> List[str]:
    v = os.getenv(name)
    if v is None or v.strip() == "":
        return list(default)
    return [x.strip() for x in v.split(",") if x.strip()]


@dataclass
class Settings:
    # Grouping
    auto_grouping_enabled: bool = True
    grouping_mode: str = "smart"  # smart | domain | subdomain
    custom_rules: List[Rule] = field(default_factory=list)
    exceptions: List[str] = field(default_factory=list)
    manual_group_ids: Set[int] = field(default_factory=set)
    min_tabs_for_auto_group: int = 2
    single_tab_groups: bool = False
    show_tab_count: bool = False

    # Naming
    domain_sanitization_tlds: List[str] = field(default_factory=lambda: list(DEFAULT_TLDS))
    title_noise_words: List[str] = field(default_factory=lambda: list(DEFAULT_NOISE_WORDS))

    # Extraction
    injection_max_retries: int = 3
    extraction_timeout_s: float = 1.5
    extraction_concurrency: int = 3
    batch_pause_s: float = 0.05

    # Host calls
    host_retry_attempts: int = 2
    host_retry_delay_s: float = 0.5

    # Events
    queue_delay_s: float = 0.5
    auto_group_registry_ttl_s: float = 10.0

    # Storage / fetching
    name_cache_path: str = ""
    fetch_user_agent: str = "tabgrouper/0.4.0 (+https://example.invalid)"
    fetch_max_bytes: int = 350_000
    fetch_timeout_s: float = 5.0

    # Logging / UX
    log_level: str = "INFO"
    no_color: bool = False

    def __post_init__(self) -> None:
        self.custom_rules = parse_rules(self.custom_rules)

    @property
    def default_min_tabs(self) -> int:
        """Threshold for names that no rule declares."""
        if self.single_tab_groups:
            return 1
        return max(1, int(self.min_tabs_for_auto_group or 2))

    def naming_key(self) -> tuple:
        """Inputs that change cached names when they change."""
        return (
            self.grouping_mode,
            tuple(self.domain_sanitization_tlds),
            tuple(self.title_noise_words),
        )

    def validate(self) -> "Settings":
        if self.grouping_mode not in GROUPING_MODES:
            raise ConfigError(f"grouping_mode must be one of {', '.join(GROUPING_MODES)}; got {self.grouping_mode!r}")
        if self.extraction_concurrency < 1:
            raise ConfigError("extraction_concurrency must be >= 1")
        if self.min_tabs_for_auto_group < 1:
            raise ConfigError("min_tabs_for_auto_group must be >= 1")
        return self

    @staticmethod
    def from_env() -> "Settings":
        s = Settings()
        s.auto_grouping_enabled = _env_bool("TABGROUPER_AUTO_GROUPING", s.auto_grouping_enabled)
        s.grouping_mode = _env_str("TABGROUPER_GROUPING_MODE", s.grouping_mode).strip().lower()
        s.exceptions = _env_list("TABGROUPER_EXCEPTIONS", tuple(s.exceptions))
        s.min_tabs_for_auto_group = _env_int("TABGROUPER_MIN_TABS", s.min_tabs_for_auto_group)
        s.single_tab_groups = _env_bool("TABGROUPER_SINGLE_TAB_GROUPS", s.single_tab_groups)
        s.show_tab_count = _env_bool("TABGROUPER_SHOW_TAB_COUNT", s.show_tab_count)

        s.domain_sanitization_tlds = _env_list("TABGROUPER_TLDS", tuple(s.domain_sanitization_tlds))
        s.title_noise_words = _env_list("TABGROUPER_NOISE_WORDS", tuple(s.title_noise_words))

        s.injection_max_retries = _env_int("TABGROUPER_INJECTION_MAX_RETRIES", s.injection_max_retries)
        s.extraction_timeout_s = _env_float("TABGROUPER_EXTRACTION_TIMEOUT_S", s.extraction_timeout_s)
        s.extraction_concurrency = _env_int("TABGROUPER_EXTRACTION_CONCURRENCY", s.extraction_concurrency)
        s.batch_pause_s = _env_float("TABGROUPER_BATCH_PAUSE_S", s.batch_pause_s)

        s.host_retry_attempts = _env_int("TABGROUPER_HOST_RETRY_ATTEMPTS", s.host_retry_attempts)
        s.host_retry_delay_s = _env_float("TABGROUPER_HOST_RETRY_DELAY_S", s.host_retry_delay_s)

        s.queue_delay_s = _env_float("TABGROUPER_QUEUE_DELAY_S", s.queue_delay_s)
        s.auto_group_registry_ttl_s = _env_float("TABGROUPER_REGISTRY_TTL_S", s.auto_group_registry_ttl_s)

        s.name_cache_path = _env_str("TABGROUPER_CACHE_DB", s.name_cache_path)
        s.fetch_user_agent = _env_str("TABGROUPER_FETCH_UA", s.fetch_user_agent)
        s.fetch_max_bytes = _env_int("TABGROUPER_FETCH_MAX_BYTES", s.fetch_max_bytes)
        s.fetch_timeout_s = _env_float("TABGROUPER_FETCH_TIMEOUT_S", s.fetch_timeout_s)

        s.log_level = _env_str("TABGROUPER_LOG_LEVEL", s.log_level)
        s.no_color = _env_bool("TABGROUPER_NO_COLOR", s.no_color)
        return s

    @staticmethod
    def from_file(path: Path) -> "Settings":
        try:
            data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"cannot read config {path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError(f"config {path} must be a mapping, got {type(data).__name__}")
        s = Settings.from_env()
        s.apply(data)
        return s

    def apply(self, data: Dict[str, Any]) -> "Settings":
        """Overlay a mapping of settings (snake_case or extension camelCase keys)."""
        known = {f.name for f in fields(self)}
        for raw_key, v in data.items():
            k = _CAMEL_KEYS.get(raw_key, raw_key)
            if k not in known:
                log.debug("Ignoring unknown setting %r", raw_key)
                continue
            if k == "custom_rules":
                v = parse_rules(v or [])
            elif k == "manual_group_ids":
                v = {int(x) for x in (v or [])}
            elif k in ("exceptions", "domain_sanitization_tlds", "title_noise_words"):
                v = [str(x) for x in (v or [])]
            setattr(self, k, v)
        self.grouping_mode = str(self.grouping_mode).strip().lower()
        return self


def load_settings(config_path: Optional[str]) -> Settings:
    if config_path:
        return Settings.from_file(Path(config_path)).validate()
    return Settings.from_env().validate()
