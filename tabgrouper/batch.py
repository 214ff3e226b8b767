from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Dict, Hashable, Optional, Sequence, TypeVar

from .log import get_logger

log = get_logger(__name__)

T = TypeVar("T")
R = TypeVar("R")


async def run_windows(
    *,
    label: str,
    items: Sequence[T],
    key: Callable[[T], Hashable],
    run_item: Callable[[T], Awaitable[R]],
    window_size: int,
    pause_s: float = 0.0,
) -> Dict[Hashable, Optional[R]]:
    """Run run_item over items in windows of window_size.

    Each window is gathered concurrently; windows are separated by pause_s.
    Results are keyed by key(item). A failing item maps to None and never
    fails its window.
    """
    results: Dict[Hashable, Optional[R]] = {}
    if not items:
        return results

    size = max(1, int(window_size))
    for start in range(0, len(items), size):
        window = items[start : start + size]
        if start and pause_s > 0:
            await asyncio.sleep(pause_s)

        outcomes = await asyncio.gather(*(run_item(item) for item in window), return_exceptions=True)
        errors = 0
        for item, out in zip(window, outcomes):
            if isinstance(out, asyncio.CancelledError):
                raise out
            if isinstance(out, Exception):
                errors += 1
                log.debug("%s failed for %r: %s", label, key(item), out)
                results[key(item)] = None
                continue
            results[key(item)] = out
        if errors:
            log.info("%s window had %d/%d failed items", label, errors, len(window))
    return results
