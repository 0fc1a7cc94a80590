"""Root logging setup for the ``proofline`` command and embedding hosts.

Records go to stderr (so ``--json`` output on stdout stays parseable) and,
optionally, to a size-rotated ``proofline.log`` under ``PROOFLINE_LOG_DIR``
or ``~/.proofline/logs``. Client libraries are held at ``WARNING`` unless the
root level is stricter.
"""

from __future__ import annotations

import logging
import logging.handlers
import os
import sys
from pathlib import Path

__all__ = ["FILE_FORMAT", "CONSOLE_FORMAT", "get_log_path", "level_for", "setup_logging"]

FILE_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
CONSOLE_FORMAT = "%(levelname)s %(name)s: %(message)s"
LOG_FILE_NAME = "proofline.log"
LOG_DIR_ENV = "PROOFLINE_LOG_DIR"

_DEFAULT_LOG_DIR = Path.home() / ".proofline" / "logs"
_CLIENT_LOGGERS: tuple[str, ...] = ("asyncio", "httpx", "httpcore", "openai")
_configured = False
_log_path: Path | None = None


def level_for(verbose: bool = False, debug_logging: bool = False) -> int:
    """``DEBUG`` when either flag asks for it, otherwise ``WARNING``."""

    return logging.DEBUG if verbose or debug_logging else logging.WARNING


def setup_logging(
    level: int = logging.INFO,
    *,
    log_dir: Path | str | None = None,
    console: bool = True,
    file: bool = True,
    max_bytes: int = 1_000_000,
    backup_count: int = 3,
    force: bool = False,
) -> Path | None:
    """Install the root handlers; returns the log file path when one is written.

    Repeated calls are no-ops unless ``force`` is set.
    """

    global _configured, _log_path
    if _configured and not force:
        return _log_path

    handlers: list[logging.Handler] = []
    log_path = None
    if file:
        log_path = _log_directory(log_dir) / LOG_FILE_NAME
        handlers.append(_rotating_handler(log_path, level, max_bytes, backup_count))
    if console:
        handlers.append(_stderr_handler(level))

    logging.basicConfig(level=level, handlers=handlers or [logging.NullHandler()], force=True)
    logging.captureWarnings(True)
    for name in _CLIENT_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    _configured = True
    _log_path = log_path
    return log_path


def get_log_path() -> Path | None:
    return _log_path


def _log_directory(log_dir: Path | str | None) -> Path:
    directory = Path(log_dir or os.environ.get(LOG_DIR_ENV) or _DEFAULT_LOG_DIR).expanduser()
    directory.mkdir(parents=True, exist_ok=True)
    return directory


def _rotating_handler(path: Path, level: int, max_bytes: int, backup_count: int) -> logging.Handler:
    handler = logging.handlers.RotatingFileHandler(
        path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
    )
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    return handler


def _stderr_handler(level: int) -> logging.Handler:
    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(CONSOLE_FORMAT))
    return handler
