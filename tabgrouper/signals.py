from __future__ import annotations

from typing import Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field

from .domain import domain_core
from .sanitize import sanitize_title


class PageSignals(BaseModel):
    """Naming hints extracted from a live page."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    manifest_name: Optional[str] = Field(None, alias="manifestName", description="Web app manifest name.")
    app_title: Optional[str] = Field(None, alias="appTitle", description="apple-mobile-web-app-title meta.")
    site_name: Optional[str] = Field(None, alias="siteName", description="og:site_name meta.")
    application_name: Optional[str] = Field(None, alias="applicationName", description="application-name meta.")
    structured_name: Optional[str] = Field(None, alias="structuredName", description="JSON-LD WebSite/Organization name.")
    page_title: Optional[str] = Field(None, alias="pageTitle", description="og:title meta.")
    heading: Optional[str] = Field(None, description="First h1 on the page.")
    title: Optional[str] = Field(None, description="Raw document title.")


# Highest-confidence first; these are adopted without further checks.
PRIORITY_FIELDS = (
    "manifest_name",
    "app_title",
    "site_name",
    "application_name",
    "structured_name",
    "page_title",
)


def pick_smart_name(
    signals: PageSignals,
    *,
    hostname: str,
    raw_title: str = "",
    noise_words: Sequence[str] = (),
) -> Optional[str]:
    for field in PRIORITY_FIELDS:
        v = _clean(getattr(signals, field))
        if v:
            return v

    # A heading or title is only trusted when it names the site itself.
    core = domain_core(hostname)
    if not core:
        return None
    heading = _clean(signals.heading)
    if heading and core in heading.lower():
        return heading
    title = _clean(sanitize_title(signals.title or raw_title, noise_words))
    if title and core in title.lower():
        return title
    return None


def _clean(v: Optional[str]) -> str:
    if not v or not isinstance(v, str):
        return ""
    return " ".join(v.split())
