import sys
from pathlib import Path

import httpx
import pytest

# Allow `import tabgrouper` without installing the package.
ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))


@pytest.fixture(autouse=True)
def _block_real_network(monkeypatch):
    """Tests must never fetch real pages; httpx.MockTransport still works."""

    async def _blocked(*_args, **_kwargs):
        raise AssertionError("Real HTTP request attempted during tests")

    monkeypatch.setattr(httpx.AsyncHTTPTransport, "handle_async_request", _blocked)
