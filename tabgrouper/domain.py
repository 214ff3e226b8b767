from __future__ import annotations

from typing import Optional
from urllib.parse import urlparse

import tldextract  # type: ignore

# Bundled public-suffix snapshot only; grouping must never wait on the network.
_EXTRACT = tldextract.TLDExtract(suffix_list_urls=(), cache_dir=None)

GROUPABLE_SCHEMES = ("http", "https")


def hostname_of(url: str) -> Optional[str]:
    try:
        host = urlparse(url or "").hostname
    except (ValueError, AttributeError, TypeError):
        return None
    return host or None


def scheme_of(url: str) -> str:
    try:
        return (urlparse(url or "").scheme or "").lower()
    except (ValueError, AttributeError, TypeError):
        return ""


def url_path_of(url: str) -> str:
    try:
        p = urlparse(url or "")
    except (ValueError, AttributeError, TypeError):
        return ""
    if p.path:
        return p.path
    # Authority-only URLs ("https://a.io") have the root path.
    return "/" if p.netloc else ""


def registered_domain(hostname: str) -> str:
    host = (hostname or "").strip().lower().rstrip(".")
    if not host:
        return ""
    ext = _EXTRACT(host)
    if ext.domain and ext.suffix:
        return f"{ext.domain}.{ext.suffix}"
    if host.startswith("www."):
        host = host[4:]
    return host


def domain_core(hostname: str) -> str:
    """Main label of a hostname ("google" for "www.google.com")."""
    host = (hostname or "").strip().lower().rstrip(".")
    if not host:
        return ""
    ext = _EXTRACT(host)
    if ext.domain:
        return ext.domain
    if host.startswith("www."):
        host = host[4:]
    return host.split(".")[0]
