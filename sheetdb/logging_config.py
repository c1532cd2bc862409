"""File logging for the SheetDB command line and embedding applications."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from sheetdb import app_paths

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DEFAULT_LOG_NAME = "sheetdb.log"

_LOG_PATH: Optional[Path] = None


def _has_file_handler(logger: logging.Logger, target: Path) -> bool:
    return any(
        isinstance(handler, logging.FileHandler) and handler.baseFilename == str(target)
        for handler in logger.handlers
    )


def configure_logging(level: int = logging.INFO, path: Optional[Path] = None) -> Path:
    """Attach a UTF-8 file handler for SheetDB to the root logger.

    Remote calls are logged at ``INFO`` and per-row reconciliation detail at
    ``DEBUG``. Calling this again with the same target keeps a single handler,
    only lowering the root level when ``level`` is more verbose than before.
    Passing ``path`` redirects the log away from ``app_paths.LOG_DIR``.
    """

    global _LOG_PATH

    if path is None and _LOG_PATH is not None:
        return _LOG_PATH

    target = path if path is not None else app_paths.logs_path(DEFAULT_LOG_NAME)
    target.parent.mkdir(parents=True, exist_ok=True)

    root = logging.getLogger()
    root.setLevel(min(root.level, level) if root.handlers else level)

    if not _has_file_handler(root, target):
        handler = logging.FileHandler(target, encoding="utf-8")
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(handler)

    _LOG_PATH = target
    logging.getLogger(__name__).debug("SheetDB log file: %s", target)
    return target


def get_log_path() -> Path:
    """Return the active log file, setting up the default one if needed."""

    return _LOG_PATH if _LOG_PATH is not None else configure_logging()
