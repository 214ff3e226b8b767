import asyncio

import pytest

from tabgrouper import errors
from tabgrouper.errors import HostError, HostOperationFailed, call_with_retries, classify_host_error


def test_classify_host_error_messages():
    assert classify_host_error("No tab with id: 12.") == errors.TAB_NOT_FOUND
    assert classify_host_error("Invalid tab group ID: 3") == errors.GROUP_NOT_FOUND
    assert classify_host_error("Missing host permission for the tab") == errors.PERMISSION_DENIED
    assert classify_host_error("Cannot access contents of the page") == errors.UNAVAILABLE
    assert classify_host_error("something odd") == errors.UNKNOWN
    assert HostError("No group with id: 9").kind == errors.GROUP_NOT_FOUND


class _Calls:
    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.n = 0

    async def __call__(self):
        self.n += 1
        out = self.outcomes.pop(0)
        if isinstance(out, Exception):
            raise out
        return out


def test_transient_errors_are_retried():
    fn = _Calls(HostError("Tabs cannot be edited right now"), 42)
    assert asyncio.run(call_with_retries("group", fn, attempts=2, delay_s=0)) == 42
    assert fn.n == 2


def test_not_found_is_not_retried():
    fn = _Calls(HostError("No tab with id: 1."), 42)
    with pytest.raises(HostOperationFailed) as exc:
        asyncio.run(call_with_retries("group", fn, attempts=3, delay_s=0))
    assert exc.value.skipped is True
    assert exc.value.attempts == 1
    assert fn.n == 1


def test_gives_up_after_attempts():
    fn = _Calls(RuntimeError("a"), RuntimeError("b"), 1)
    with pytest.raises(HostOperationFailed) as exc:
        asyncio.run(call_with_retries("update", fn, attempts=2, delay_s=0))
    assert exc.value.skipped is False
    assert exc.value.attempts == 2
    assert str(exc.value.cause) == "b"
