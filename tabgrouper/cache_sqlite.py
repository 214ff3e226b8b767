from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterable, Optional


@dataclass
class NameEntry:
    hostname: str
    name: str
    source: Optional[str] = None
    updated_at: Optional[str] = None


def init_cache(db_path: Path, *, recreate: bool = False) -> None:
    db_path.parent.mkdir(parents=True, exist_ok=True)
    if recreate and db_path.exists():
        db_path.unlink()

    with sqlite3.connect(db_path) as conn:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS name_cache (
                hostname TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                source TEXT,
                updated_at TEXT NOT NULL
            )
            """
        )


def load_entries(db_path: Path, hostnames: Optional[Iterable[str]] = None) -> Dict[str, NameEntry]:
    if not db_path.exists():
        return {}

    query = "SELECT hostname, name, source, updated_at FROM name_cache"
    params: list = []
    if hostnames is not None:
        keys = [h for h in hostnames if h]
        if not keys:
            return {}
        placeholders = ",".join(["?"] * len(keys))
        query += f" WHERE hostname IN ({placeholders})"
        params = keys

    out: Dict[str, NameEntry] = {}
    with sqlite3.connect(db_path) as conn:
        for row in conn.execute(query, params):
            out[row[0]] = NameEntry(hostname=row[0], name=row[1], source=row[2], updated_at=row[3])
    return out


def load_names(db_path: Path) -> Dict[str, str]:
    return {h: e.name for h, e in load_entries(db_path).items()}


def upsert_names(db_path: Path, entries: Iterable[NameEntry]) -> int:
    now = datetime.now(timezone.utc).isoformat()
    rows = [(e.hostname, e.name, e.source, e.updated_at or now) for e in entries if e.hostname and e.name]
    if not rows:
        return 0

    with sqlite3.connect(db_path) as conn:
        conn.executemany(
            """
            INSERT INTO name_cache (hostname, name, source, updated_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(hostname) DO UPDATE SET
                name=excluded.name,
                source=excluded.source,
                updated_at=excluded.updated_at
            """,
            rows,
        )
    return len(rows)


def clear_names(db_path: Path) -> None:
    if not db_path.exists():
        return
    with sqlite3.connect(db_path) as conn:
        conn.execute("DELETE FROM name_cache")
