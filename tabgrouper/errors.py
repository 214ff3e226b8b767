from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Optional, TypeVar

from .log import get_logger

log = get_logger(__name__)

T = TypeVar("T")

TAB_NOT_FOUND = "tab_not_found"
GROUP_NOT_FOUND = "group_not_found"
PERMISSION_DENIED = "permission_denied"
UNAVAILABLE = "unavailable"
UNKNOWN = "unknown"

# Kinds where retrying cannot help: the entity is gone or access is refused.
_NO_RETRY_KINDS = {TAB_NOT_FOUND, GROUP_NOT_FOUND, PERMISSION_DENIED}


class TabGrouperError(Exception):
    """Base class for errors raised by tabgrouper."""


class ConfigError(TabGrouperError):
    pass


class ExtractionError(TabGrouperError):
    """The page signal extractor could not produce a payload."""


class HostError(TabGrouperError):
    """A host tab/group API call was rejected."""

    def __init__(self, message: str, *, kind: Optional[str] = None):
        super().__init__(message)
        self.kind = kind or classify_host_error(message)


class HostOperationFailed(TabGrouperError):
    """A host operation was given up for this pass."""

    def __init__(self, label: str, cause: BaseException, *, attempts: int, skipped: bool = False):
        super().__init__(f"{label} failed after {attempts} attempt(s): {cause}")
        self.label = label
        self.cause = cause
        self.attempts = attempts
        self.skipped = skipped


def classify_host_error(message: str) -> str:
    m = (message or "").lower()
    if "no tab with id" in m or "tab not found" in m:
        return TAB_NOT_FOUND
    if "no group with id" in m or "invalid tab group id" in m or "group not found" in m:
        return GROUP_NOT_FOUND
    if "permission" in m or "access denied" in m:
        return PERMISSION_DENIED
    if "cannot access" in m or "unavailable" in m:
        return UNAVAILABLE
    return UNKNOWN


def error_kind(exc: BaseException) -> str:
    if isinstance(exc, HostError):
        return exc.kind
    return classify_host_error(str(exc))


async def call_with_retries(
    label: str,
    fn: Callable[[], Awaitable[T]],
    *,
    attempts: int = 2,
    delay_s: float = 0.5,
) -> T:
    """Run a host call, retrying transient failures with exponential backoff.

    Raises HostOperationFailed when the call is given up; callers skip the
    operation for the current pass.
    """
    total = max(1, int(attempts))
    last: Optional[BaseException] = None
    for attempt in range(total):
        try:
            return await fn()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            last = e
            kind = error_kind(e)
            if kind in _NO_RETRY_KINDS:
                log.info("%s skipped (%s): %s", label, kind, e)
                raise HostOperationFailed(label, e, attempts=attempt + 1, skipped=True) from e
            if attempt + 1 < total:
                wait = max(0.0, delay_s) * (2 ** attempt)
                log.warning(
                    "%s failed (attempt %d/%d, kind=%s): %s; retrying in %.2fs",
                    label,
                    attempt + 1,
                    total,
                    kind,
                    e,
                    wait,
                )
                await asyncio.sleep(wait)
    assert last is not None
    log.warning("%s gave up after %d attempt(s): %s", label, total, last)
    raise HostOperationFailed(label, last, attempts=total) from last
