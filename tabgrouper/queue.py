from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Dict, List, Optional

from .log import get_logger

log = get_logger(__name__)


class TabEventQueue:
    """Debounced set of tab ids waiting to be grouped.

    Every enqueue restarts the delay; when it runs out, the queued ids are
    handed to `process` in arrival order.
    """

    def __init__(self, process: Callable[[List[int]], Awaitable[Any]], *, delay_s: float = 0.5):
        self.process = process
        self.delay_s = delay_s
        self._pending: Dict[int, None] = {}
        self._timer: Optional[asyncio.Task] = None

    def enqueue(self, tab_id: int) -> None:
        self._pending[tab_id] = None
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = asyncio.get_running_loop().create_task(self._fire())

    async def _fire(self) -> None:
        await asyncio.sleep(self.delay_s)
        await self.flush()

    async def flush(self) -> None:
        ids = list(self._pending)
        self._pending.clear()
        if not ids:
            return
        log.debug("Processing %d queued tab(s)", len(ids))
        try:
            await self.process(ids)
        except Exception:
            log.exception("Tab queue processing failed for %s", ids)

    async def join(self) -> None:
        """Wait for the pending debounce timer, if any."""
        while self._timer is not None and not self._timer.done():
            timer = self._timer
            try:
                await timer
            except asyncio.CancelledError:
                # A restarted debounce cancels the old timer; anything else is ours.
                if not timer.cancelled():
                    raise

    def cancel(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
        self._pending.clear()

    @property
    def pending(self) -> List[int]:
        return list(self._pending)

    def __len__(self) -> int:
        return len(self._pending)
