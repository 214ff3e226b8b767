from __future__ import annotations

from typing import Dict, Hashable

from .log import get_logger

log = get_logger(__name__)

DEFAULT_MAX_RETRIES = 3


class InjectionFailureTracker:
    """Consecutive extraction failures per tab, with a retry ceiling.

    Pages that block content extraction would otherwise be retried on every
    reconciliation pass.
    """

    def __init__(self, max_retries: int = DEFAULT_MAX_RETRIES):
        self.max_retries = max(1, int(max_retries))
        self._failures: Dict[Hashable, int] = {}

    def record_failure(self, tab_id: Hashable) -> int:
        n = self._failures.get(tab_id, 0) + 1
        self._failures[tab_id] = n
        if n == self.max_retries:
            log.warning("Extraction disabled for tab %s after %d consecutive failures.", tab_id, n)
        return n

    def record_success(self, tab_id: Hashable) -> None:
        self._failures.pop(tab_id, None)

    def should_attempt(self, tab_id: Hashable) -> bool:
        return self._failures.get(tab_id, 0) < self.max_retries

    def count(self, tab_id: Hashable) -> int:
        return self._failures.get(tab_id, 0)

    def clear(self, tab_id: Hashable) -> None:
        self._failures.pop(tab_id, None)

    def reset(self) -> None:
        self._failures.clear()

    def __len__(self) -> int:
        return len(self._failures)
