from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass

from rich.logging import RichHandler

# Level names accepted by the extension settings ("WARN", "NONE") on top of stdlib ones.
_LEVEL_ALIASES = {
    "WARN": logging.WARNING,
    "NONE": logging.CRITICAL + 10,
}

# Third-party loggers that log every request at INFO.
_CHATTY_LOGGERS = ("httpx", "httpcore", "filelock")


@dataclass(frozen=True)
class LogConfig:
    level: str = "INFO"
    no_color: bool = False


def resolve_level(name: str) -> int:
    key = (name or "INFO").strip().upper()
    if key in _LEVEL_ALIASES:
        return _LEVEL_ALIASES[key]
    return getattr(logging, key, logging.INFO)


def setup_logging(cfg: LogConfig) -> None:
    level = resolve_level(cfg.level)

    root = logging.getLogger()
    root.setLevel(level)

    for h in list(root.handlers):
        root.removeHandler(h)

    force_no_color = cfg.no_color or os.getenv("NO_COLOR") is not None
    is_tty = sys.stderr.isatty()

    if (not force_no_color) and is_tty:
        handler = RichHandler(rich_tracebacks=True, show_time=False, show_level=True, show_path=False)
        fmt = "%(message)s"
    else:
        handler = logging.StreamHandler()
        fmt = "%(asctime)s %(levelname)s %(name)s: %(message)s"

    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt))
    root.addHandler(handler)

    for name in _CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
