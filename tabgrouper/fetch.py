from __future__ import annotations

import json
from typing import Any, Iterable, Optional, Tuple
from urllib.parse import urljoin

import httpx
from bs4 import BeautifulSoup  # type: ignore

from .errors import ExtractionError
from .log import get_logger
from .model import Tab
from .signals import PageSignals

log = get_logger(__name__)


class HttpSignalExtractor:
    """Extraction collaborator that reads naming signals over HTTP.

    The page is fetched once; when it links a web app manifest, the manifest
    is fetched too (its failure only drops the manifest name).
    """

    def __init__(
        self,
        *,
        timeout_s: float = 5.0,
        user_agent: str = "tabgrouper (+https://example.invalid)",
        max_bytes: int = 350_000,
        follow_manifest: bool = True,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.timeout_s = timeout_s
        self.user_agent = user_agent
        self.max_bytes = max_bytes
        self.follow_manifest = follow_manifest
        self.transport = transport

    async def extract(self, tab: Tab) -> PageSignals:
        timeout = httpx.Timeout(self.timeout_s, connect=self.timeout_s)
        headers = {"User-Agent": self.user_agent}
        try:
            async with httpx.AsyncClient(
                follow_redirects=True, headers=headers, timeout=timeout, transport=self.transport
            ) as client:
                r = await client.get(tab.url)
                if r.status_code >= 400:
                    raise ExtractionError(f"HTTP {r.status_code} for {tab.url}")
                content = r.content[: self.max_bytes]
                signals, manifest_url = extract_signals(content, base_url=str(r.url))
                if manifest_url and self.follow_manifest:
                    signals.manifest_name = await self._manifest_name(client, manifest_url)
                return signals
        except httpx.HTTPError as e:
            raise ExtractionError(f"fetch failed for {tab.url}: {e}") from e

    async def _manifest_name(self, client: httpx.AsyncClient, url: str) -> Optional[str]:
        try:
            r = await client.get(url)
            if r.status_code >= 400:
                return None
            data = json.loads(r.content[: self.max_bytes].decode("utf-8", errors="replace"))
        except (httpx.HTTPError, ValueError) as e:
            log.debug("Manifest fetch failed for %s: %s", url, e)
            return None
        if not isinstance(data, dict):
            return None
        name = data.get("short_name") or data.get("name")
        return name.strip() if isinstance(name, str) and name.strip() else None


def extract_signals(content: bytes, *, base_url: str) -> Tuple[PageSignals, Optional[str]]:
    """Parse naming signals out of page HTML; returns (signals, manifest URL)."""
    if not content:
        return PageSignals(), None
    soup = BeautifulSoup(content, "lxml")

    h1 = soup.find("h1")
    signals = PageSignals(
        app_title=_meta(soup, name="apple-mobile-web-app-title"),
        site_name=_meta(soup, prop="og:site_name"),
        application_name=_meta(soup, name="application-name"),
        structured_name=_structured_name(soup.find_all("script", attrs={"type": "application/ld+json"})),
        page_title=_meta(soup, prop="og:title"),
        heading=h1.get_text(" ", strip=True) if h1 else None,
        title=soup.title.get_text(strip=True) if soup.title else None,
    )
    return signals, _manifest_url(soup, base_url)


def _meta(soup, *, name: Optional[str] = None, prop: Optional[str] = None) -> Optional[str]:
    attrs = {"name": name} if name else {"property": prop}
    m = soup.find("meta", attrs=attrs)
    if m and m.get("content"):
        return m.get("content").strip() or None
    return None


def _structured_name(scripts: Iterable[Any]) -> Optional[str]:
    for script in scripts:
        try:
            data = json.loads(script.string or "")
        except ValueError:
            continue
        items = data.get("@graph", [data]) if isinstance(data, dict) else data
        if not isinstance(items, list):
            continue
        for item in items:
            if not isinstance(item, dict):
                continue
            kind = item.get("@type")
            kinds = kind if isinstance(kind, list) else [kind]
            name = item.get("name")
            if ("WebSite" in kinds or "Organization" in kinds) and isinstance(name, str) and name.strip():
                return name.strip()
    return None


def _manifest_url(soup, base_url: str) -> Optional[str]:
    for link in soup.find_all("link"):
        rel = " ".join(x.lower() for x in (link.get("rel") or []))
        href = (link.get("href") or "").strip()
        if href and rel == "manifest":
            return urljoin(base_url, href)
    return None
