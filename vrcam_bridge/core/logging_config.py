"""Root logging for the bridge process.

Every ``vrcam_bridge.*`` logger, plus aiohttp and asyncio, propagates to the
root logger. This module gives the root one line format and sends it to
stdout, a rotating log file, or both.
"""

from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Iterable, List, Optional, Union

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"
LOG_MAX_BYTES = 500 * 1024
LOG_BACKUP_COUNT = 2

# One line per /mjpeg viewer that stays open for minutes is noise.
QUIET_LOGGERS = ("aiohttp.access",)

_configured = False
_installed: List[logging.Handler] = []


def coerce_level(level: Union[int, str]) -> int:
    if isinstance(level, str):
        numeric = logging.getLevelName(level.upper())
        if not isinstance(numeric, int):
            raise ValueError(f"Unknown log level '{level}'")
        return numeric
    return int(level)


def _build_handlers(
    console: bool,
    log_file: Optional[Union[str, Path]],
    max_bytes: int,
    backup_count: int,
) -> List[logging.Handler]:
    handlers: List[logging.Handler] = []
    if console:
        handlers.append(logging.StreamHandler(sys.stdout))
    if log_file:
        path = Path(log_file).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(
            RotatingFileHandler(path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8")
        )
    if not handlers:
        # --no-console without a log file: errors still reach stderr.
        handlers.append(logging.StreamHandler(sys.stderr))
    return handlers


def _quiet(names: Iterable[str]) -> None:
    for name in names:
        logging.getLogger(name).setLevel(logging.WARNING)


def configure_logging(
    level: Union[int, str] = logging.INFO,
    *,
    force: bool = False,
    console: bool = True,
    log_file: Optional[Union[str, Path]] = None,
    max_bytes: int = LOG_MAX_BYTES,
    backup_count: int = LOG_BACKUP_COUNT,
    quiet_loggers: Iterable[str] = QUIET_LOGGERS,
) -> None:
    """Point the root logger at stdout and/or ``log_file``.

    Once configured, later calls only change the level. ``main_async``
    passes ``force=True`` so the level and file from the loaded config
    replace whatever an earlier call installed.
    """
    global _configured
    numeric_level = coerce_level(level)
    root = logging.getLogger()
    root.setLevel(numeric_level)
    _quiet(quiet_loggers)

    if _configured and not force:
        return

    for handler in list(root.handlers):
        root.removeHandler(handler)
    for handler in _installed:
        handler.close()
    _installed.clear()

    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATEFMT)
    for handler in _build_handlers(console, log_file, max_bytes, backup_count):
        handler.setFormatter(formatter)
        root.addHandler(handler)
        _installed.append(handler)

    _configured = True


__all__ = ["configure_logging", "coerce_level", "LOG_FORMAT", "LOG_DATEFMT"]
