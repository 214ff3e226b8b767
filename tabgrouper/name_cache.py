from __future__ import annotations

from pathlib import Path
from typing import Dict, Iterator, Optional

from .cache_sqlite import NameEntry, clear_names, init_cache, load_entries, upsert_names
from .log import get_logger

log = get_logger(__name__)


class NameCache:
    """Hostname -> resolved group name.

    Entries are never invalidated here; callers clear the cache when the
    naming inputs change. When bound to a SQLite file, new entries are
    written by flush().
    """

    def __init__(self, initial: Optional[Dict[str, str]] = None, *, db_path: Optional[Path] = None):
        self._names: Dict[str, str] = dict(initial or {})
        self._sources: Dict[str, str] = {}
        self._dirty: set[str] = set()
        self.db_path = db_path

    @classmethod
    def open(cls, db_path: Path) -> "NameCache":
        init_cache(db_path)
        entries = load_entries(db_path)
        cache = cls({h: e.name for h, e in entries.items()}, db_path=db_path)
        if entries:
            log.info("Loaded %d cached group names from %s", len(entries), db_path)
        return cache

    def get(self, hostname: str) -> Optional[str]:
        return self._names.get(hostname)

    def set(self, hostname: str, name: str, *, source: Optional[str] = None) -> None:
        if not hostname or not name:
            return
        if self._names.get(hostname) != name:
            self._dirty.add(hostname)
        self._names[hostname] = name
        if source:
            self._sources[hostname] = source

    def clear(self) -> None:
        self._names.clear()
        self._sources.clear()
        self._dirty.clear()
        if self.db_path is not None:
            clear_names(self.db_path)

    def flush(self) -> int:
        if self.db_path is None or not self._dirty:
            return 0
        entries = [
            NameEntry(hostname=h, name=self._names[h], source=self._sources.get(h))
            for h in sorted(self._dirty)
            if h in self._names
        ]
        written = upsert_names(self.db_path, entries)
        self._dirty.clear()
        log.debug("Stored %d group names in %s", written, self.db_path)
        return written

    @property
    def dirty(self) -> int:
        return len(self._dirty)

    def __contains__(self, hostname: object) -> bool:
        return hostname in self._names

    def __len__(self) -> int:
        return len(self._names)

    def __iter__(self) -> Iterator[str]:
        return iter(self._names)
