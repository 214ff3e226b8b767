from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence

from .config import Settings
from .domain import GROUPABLE_SCHEMES, registered_domain
from .evaluate import find_matching_rule
from .failures import InjectionFailureTracker
from .log import get_logger
from .model import Tab
from .name_cache import NameCache
from .rules import Rule
from .sanitize import sanitize_domain_name
from .signals import PageSignals, pick_smart_name

log = get_logger(__name__)

SOURCE_RULE = "rule"
SOURCE_CACHE = "cache"
SOURCE_EXTRACTION = "extraction"
SOURCE_DOMAIN = "domain"


@dataclass(frozen=True)
class Resolution:
    name: str
    source: str
    rule: Optional[Rule] = None


class RuleStrategy:
    source = SOURCE_RULE
    guarded = False

    async def resolve(self, resolver: "NameResolver", tab: Tab) -> Optional[Resolution]:
        rule = find_matching_rule(tab, resolver.settings.custom_rules)
        if rule is None:
            return None
        return Resolution(rule.name, self.source, rule)


class CacheStrategy:
    source = SOURCE_CACHE
    guarded = True

    async def resolve(self, resolver: "NameResolver", tab: Tab) -> Optional[Resolution]:
        name = resolver.cache.get(tab.hostname)
        return Resolution(name, self.source) if name else None


class ExtractionStrategy:
    source = SOURCE_EXTRACTION
    guarded = True

    async def resolve(self, resolver: "NameResolver", tab: Tab) -> Optional[Resolution]:
        s = resolver.settings
        if s.grouping_mode != "smart" or resolver.extractor is None:
            return None
        if not resolver.tracker.should_attempt(tab.id):
            log.debug("Extraction suppressed for tab %s (%s)", tab.id, tab.hostname)
            return None

        signals = await resolver.extract(tab)
        if signals is None:
            resolver.tracker.record_failure(tab.id)
            return None

        name = pick_smart_name(
            signals,
            hostname=tab.hostname,
            raw_title=tab.title,
            noise_words=s.title_noise_words,
        )
        if not name:
            return None
        resolver.tracker.record_success(tab.id)
        resolver.cache.set(tab.hostname, name, source=self.source)
        return Resolution(name, self.source)


class DomainFallbackStrategy:
    source = SOURCE_DOMAIN
    guarded = True

    async def resolve(self, resolver: "NameResolver", tab: Tab) -> Optional[Resolution]:
        s = resolver.settings
        host = registered_domain(tab.hostname) if s.grouping_mode == "domain" else tab.hostname
        name = sanitize_domain_name(host, s.domain_sanitization_tlds)
        if not name:
            return None
        resolver.cache.set(tab.hostname, name, source=self.source)
        return Resolution(name, self.source)


DEFAULT_STRATEGIES = (RuleStrategy(), CacheStrategy(), ExtractionStrategy(), DomainFallbackStrategy())


class NameResolver:
    """Resolves the group name of one tab.

    Strategies run in order and the first result wins. Guarded strategies run
    under a per-hostname lock, so concurrent resolutions for one hostname
    extract at most once and later waiters hit the cache.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        cache: Optional[NameCache] = None,
        tracker: Optional[InjectionFailureTracker] = None,
        extractor: Any = None,
        strategies: Sequence[Any] = DEFAULT_STRATEGIES,
    ):
        self.settings = settings
        self.cache = cache if cache is not None else NameCache()
        self.tracker = tracker if tracker is not None else InjectionFailureTracker(settings.injection_max_retries)
        self.extractor = extractor
        self.strategies = tuple(strategies)
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._locks: Dict[str, asyncio.Lock] = {}
        self._semaphore: Optional[asyncio.Semaphore] = None

    def is_groupable(self, tab: Tab) -> bool:
        if tab.id is None or tab.pinned:
            return False
        if tab.scheme not in GROUPABLE_SCHEMES:
            return False
        url = tab.url or ""
        if any(e and e in url for e in self.settings.exceptions):
            return False
        return bool(tab.hostname)

    async def resolve(self, tab: Any) -> Optional[Resolution]:
        t = tab if isinstance(tab, Tab) else Tab.from_host(tab)
        if not self.is_groupable(t):
            return None

        for i, strategy in enumerate(self.strategies):
            if strategy.guarded:
                async with self._lock_for(t.hostname):
                    return await self._run(self.strategies[i:], t)
            res = await strategy.resolve(self, t)
            if res is not None:
                return res
        return None

    async def classify(self, tab: Any) -> Optional[str]:
        res = await self.resolve(tab)
        return res.name if res else None

    async def extract(self, tab: Tab) -> Optional[PageSignals]:
        """One bounded extractor call; None on any failure."""
        self._bind_loop()
        assert self._semaphore is not None
        try:
            async with self._semaphore:
                return await asyncio.wait_for(self.extractor.extract(tab), timeout=self.settings.extraction_timeout_s)
        except asyncio.TimeoutError:
            log.debug("Extraction timed out for tab %s (%s)", tab.id, tab.hostname)
        except Exception as e:
            log.debug("Extraction failed for tab %s (%s): %s", tab.id, tab.hostname, e)
        return None

    def reset_concurrency(self) -> None:
        """Drop locks and the semaphore; they are rebuilt from current settings on next use."""
        self._loop = None
        self._locks = {}
        self._semaphore = None

    async def _run(self, strategies: Sequence[Any], tab: Tab) -> Optional[Resolution]:
        for strategy in strategies:
            res = await strategy.resolve(self, tab)
            if res is not None:
                return res
        return None

    def _lock_for(self, hostname: str) -> asyncio.Lock:
        self._bind_loop()
        lock = self._locks.get(hostname)
        if lock is None:
            lock = self._locks[hostname] = asyncio.Lock()
        return lock

    def _bind_loop(self) -> None:
        # Locks and the semaphore belong to one event loop.
        loop = asyncio.get_running_loop()
        if loop is not self._loop:
            self._loop = loop
            self._locks = {}
            self._semaphore = asyncio.Semaphore(max(1, int(self.settings.extraction_concurrency)))
