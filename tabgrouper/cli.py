from __future__ import annotations

import argparse
import asyncio
import json
from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict, List

import yaml

from . import __version__
from .config import load_settings
from .engine import GroupingEngine
from .errors import TabGrouperError
from .fetch import HttpSignalExtractor
from .host import InMemoryHost
from .log import LogConfig, get_logger, setup_logging

log = get_logger(__name__)


def main(argv: List[str] | None = None) -> int:
    p = argparse.ArgumentParser(
        prog="tabgrouper",
        description="Rule- and site-based tab grouping, run against a tab snapshot.",
    )
    p.add_argument("-V", "--version", action="version", version=f"tabgrouper {__version__}")
    p.add_argument("--config", default=None, help="YAML config file (optional). Env vars override defaults.")
    sub = p.add_subparsers(dest="cmd", required=True)

    cls = sub.add_parser("classify", help="Print the group name resolved for every tab.")
    plan = sub.add_parser("plan", help="Reconcile the snapshot's windows and print the group operations.")
    for sp in (cls, plan):
        sp.add_argument("--snapshot", required=True, help="YAML/JSON file with `tabs`, `groups` and optional `settings`.")
        sp.add_argument("--window", type=int, action="append", help="Window id (repeatable; default: every window).")
        sp.add_argument("--fetch", action="store_true", help="Fetch pages to read site names (smart mode).")
        sp.add_argument("--cache-db", default=None, help="SQLite file for the hostname -> name cache.")
        sp.add_argument("--log-level", default=None, help="DEBUG/INFO/WARN/ERROR (overrides env/config).")
        sp.add_argument("--no-color", action="store_true", help="Disable colored logging.")
        sp.add_argument("--json", action="store_true", help="Print JSON instead of text.")

    args = p.parse_args(argv)
    try:
        cfg = load_settings(args.config)
    except TabGrouperError as e:
        setup_logging(LogConfig(no_color=args.no_color))
        log.error("%s", e)
        return 2
    if args.log_level:
        cfg.log_level = args.log_level
    if args.no_color:
        cfg.no_color = True
    if args.cache_db:
        cfg.name_cache_path = args.cache_db
    setup_logging(LogConfig(level=cfg.log_level, no_color=cfg.no_color))

    try:
        snapshot = _load_snapshot(Path(args.snapshot))
        cfg.apply(snapshot.get("settings") or {})
        cfg.validate()
        host = InMemoryHost.from_snapshot(snapshot)
    except (OSError, TabGrouperError, ValueError, TypeError, KeyError) as e:
        log.error("Failed to load snapshot %s: %s", args.snapshot, e)
        return 2

    extractor = None
    if args.fetch:
        extractor = HttpSignalExtractor(
            timeout_s=cfg.fetch_timeout_s,
            user_agent=cfg.fetch_user_agent,
            max_bytes=cfg.fetch_max_bytes,
        )
    engine = GroupingEngine(host, cfg, extractor=extractor)
    windows = args.window or _window_ids(host)

    if args.cmd == "classify":
        return asyncio.run(_cmd_classify(engine, host, windows, as_json=args.json))
    if args.cmd == "plan":
        return asyncio.run(_cmd_plan(engine, windows, as_json=args.json))
    return 2


async def _cmd_classify(engine: GroupingEngine, host: InMemoryHost, windows: List[int], *, as_json: bool) -> int:
    noise = engine.settings.title_noise_words
    rows: List[Dict[str, Any]] = []
    for window_id in windows:
        for tab in await host.query_tabs(window_id):
            res = await engine.resolve(tab)
            rows.append(
                {
                    "tab_id": tab.id,
                    "window_id": window_id,
                    "url": tab.url,
                    "title": tab.clean_title(noise),
                    "name": res.name if res else None,
                    "source": res.source if res else None,
                }
            )
    engine.cache.flush()

    if as_json:
        print(json.dumps(rows, ensure_ascii=False, indent=2))
        return 0
    for r in rows:
        print(f"{r['tab_id']}\t{r['name'] or '-'}\t{r['source'] or '-'}\t{r['url']}")
    return 0


async def _cmd_plan(engine: GroupingEngine, windows: List[int], *, as_json: bool) -> int:
    out: List[Dict[str, Any]] = []
    for window_id in windows:
        for op in await engine.reconcile_window(window_id):
            out.append({"window_id": window_id, "op": type(op).__name__, **asdict(op)})

    if as_json:
        print(json.dumps(out, ensure_ascii=False, indent=2))
        return 0
    if not out:
        log.info("Nothing to do: every window is already grouped.")
    for o in out:
        fields = ", ".join(f"{k}={v}" for k, v in o.items() if k not in ("window_id", "op") and v is not None)
        print(f"[{o['window_id']}] {o['op']}: {fields}")
    return 0


def _load_snapshot(path: Path) -> Dict[str, Any]:
    # JSON is a subset of YAML.
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ValueError(f"invalid snapshot: {e}") from e
    if not isinstance(data, dict):
        raise ValueError("snapshot must be a mapping with a `tabs` list")
    return data


def _window_ids(host: InMemoryHost) -> List[int]:
    seen: Dict[int, None] = {}
    for t in host.tabs.values():
        if t.window_id is not None:
            seen[t.window_id] = None
    return list(seen)


if __name__ == "__main__":
    raise SystemExit(main())
