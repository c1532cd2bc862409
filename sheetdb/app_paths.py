"""Where SheetDB keeps its settings file, config database and logs on disk."""
from __future__ import annotations

import os
from pathlib import Path


def _resolve_home() -> Path:
    # SHEETDB_HOME points straight at the directory; the others are parents.
    explicit = os.environ.get("SHEETDB_HOME")
    if explicit:
        return Path(explicit).expanduser().resolve()
    for parent_var in ("XDG_DATA_HOME", "LOCALAPPDATA"):
        parent = os.environ.get(parent_var)
        if parent:
            return Path(parent).expanduser().resolve() / "SheetDB"
    return Path.home().resolve() / ".sheetdb"


APP_DIR: Path = _resolve_home()
LOG_DIR: Path = APP_DIR / "logs"


def logs_path(filename: str) -> Path:
    """Return ``LOG_DIR/filename``, creating the log directory on first use."""

    LOG_DIR.mkdir(parents=True, exist_ok=True)
    return LOG_DIR / filename


__all__ = ["APP_DIR", "LOG_DIR", "logs_path"]
