from __future__ import annotations

import logging
import os
import sys

_RESET = "\x1b[0m"
_LEVEL_COLORS = {
    "DEBUG": "\x1b[36m",
    "INFO": "\x1b[32m",
    "WARNING": "\x1b[33m",
    "ERROR": "\x1b[31m",
    "CRITICAL": "\x1b[1;31m",
}
# Third-party loggers that log every request at INFO.
_CHATTY_LOGGERS = ("httpx", "httpcore")


class _LevelColorFormatter(logging.Formatter):
    def __init__(self, *, use_color: bool) -> None:
        super().__init__(
            fmt="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        self._use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        if not self._use_color or record.levelname not in _LEVEL_COLORS:
            return super().format(record)
        plain = record.levelname
        record.levelname = f"{_LEVEL_COLORS[plain]}{plain}{_RESET}"
        try:
            return super().format(record)
        finally:
            record.levelname = plain


def _color_enabled() -> bool:
    return not os.getenv("NO_COLOR") and sys.stderr.isatty()


def resolve_level(level: str | int | None) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName((level or "INFO").upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def configure_logging(*, level: str | int | None = None, force: bool = False) -> None:
    """Install a single stderr handler on the root logger.

    When handlers already exist (pytest, uvicorn) only their level is adjusted
    unless ``force`` is set.
    """
    if level is None:
        from walkthroughs.config import get_settings

        level = get_settings().log_level
    resolved_level = resolve_level(level)
    root = logging.getLogger()
    root.setLevel(resolved_level)
    for name in _CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(max(resolved_level, logging.WARNING))

    if root.handlers and not force:
        for handler in root.handlers:
            handler.setLevel(resolved_level)
        return

    handler = logging.StreamHandler()
    handler.setLevel(resolved_level)
    handler.setFormatter(_LevelColorFormatter(use_color=_color_enabled()))
    root.handlers.clear()
    root.addHandler(handler)
