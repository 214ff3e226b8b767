from __future__ import annotations

import re
from functools import lru_cache
from typing import Iterable, List, Optional, Sequence, Tuple

_DELIMITERS = re.compile(r"[|–—-]")


def sanitize_domain_name(domain: Optional[str], tlds: Iterable[str] = ()) -> str:
    """Turn a hostname into a group label: "www.example.co.uk" -> "Example".

    The longest configured suffix wins, so ".co.uk" is stripped before ".uk".
    """
    if not domain or not isinstance(domain, str):
        return ""
    name = domain.strip().lower()
    if name.startswith("www."):
        name = name[4:]

    for tld in _sorted_suffixes(tuple(tlds or ())):
        if name.endswith(tld) and len(name) > len(tld):
            name = name[: -len(tld)]
            break

    labels = [part for part in name.split(".") if part]
    return " ".join(part[0].upper() + part[1:] for part in labels)


@lru_cache(maxsize=32)
def _sorted_suffixes(tlds: Tuple[str, ...]) -> List[str]:
    out = set()
    for t in tlds:
        if not isinstance(t, str):
            continue
        t = t.strip().lower()
        if not t:
            continue
        out.add(t if t.startswith(".") else "." + t)
    return sorted(out, key=lambda s: (-len(s), s))


def sanitize_title(title: Optional[str], noise_words: Sequence[str] = ()) -> str:
    """Drop trailing " - Site" style segments from a page title.

    If the leading segment is a noise phrase ("Login", "Dashboard"), the first
    segment of the original title without noise is used instead. Results of
    two characters or less return the original title.
    """
    if not title or not isinstance(title, str):
        return ""
    m = _DELIMITERS.search(title)
    cleaned = title[: m.start()].strip() if m else title.strip()

    if is_noise_title(cleaned, noise_words):
        segments = [s.strip() for s in _DELIMITERS.split(title) if s.strip()]
        for seg in segments:
            if not is_noise_title(seg, noise_words):
                cleaned = seg
                break

    if len(cleaned) <= 2:
        return title
    return cleaned


def is_noise_title(text: Optional[str], noise_words: Sequence[str] = ()) -> bool:
    if not text:
        return False
    pattern = _noise_pattern(tuple(noise_words or ()))
    return bool(pattern and pattern.search(text))


@lru_cache(maxsize=32)
def _noise_pattern(noise_words: Tuple[str, ...]) -> Optional[re.Pattern]:
    words = sorted({w.strip().lower() for w in noise_words if isinstance(w, str) and w.strip()}, key=len, reverse=True)
    if not words:
        return None
    alternation = "|".join(re.escape(w) for w in words)
    return re.compile(rf"(?<!\w)(?:{alternation})(?!\w)", re.IGNORECASE)
