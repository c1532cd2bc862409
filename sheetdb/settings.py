"""Application configuration helpers for SheetDB."""
from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from typing import Dict, Mapping, Optional

from sheetdb import app_paths
from sheetdb.errors import ConfigurationError

logger = logging.getLogger(__name__)


DEFAULT_SETTINGS_PATH = str(app_paths.APP_DIR / "settings.json")
DEFAULT_CONFIG_DB_PATH = os.getenv(
    "SHEETDB_CONFIG_DB",
    str(app_paths.APP_DIR / "config.db"),
)
DEFAULT_SETUP_TIMEOUT_SECONDS = 180
DEFAULT_SHEET_DELAY_SECONDS = 0.2
DEFAULT_LOG_LEVEL = "INFO"

ENCRYPTION_KEY_ENV = "SHEETDB_ENCRYPTION_KEY"
SPREADSHEET_ID_ENV = "SHEETDB_SPREADSHEET_ID"


@dataclass
class StoreSettings:
    config_db_path: str = DEFAULT_CONFIG_DB_PATH
    spreadsheet_id: str = ""
    encryption_key: str = ""
    setup_timeout_seconds: int = DEFAULT_SETUP_TIMEOUT_SECONDS
    sheet_delay_seconds: float = DEFAULT_SHEET_DELAY_SECONDS
    log_level: str = DEFAULT_LOG_LEVEL

    def require_encryption_key(self) -> str:
        if not self.encryption_key:
            raise ConfigurationError(f"{ENCRYPTION_KEY_ENV} environment variable not set")
        return self.encryption_key

    def to_json(self) -> Dict[str, object]:
        # The passphrase only ever comes from the environment.
        return {
            "config_db_path": self.config_db_path,
            "spreadsheet_id": self.spreadsheet_id,
            "setup_timeout_seconds": self.setup_timeout_seconds,
            "sheet_delay_seconds": self.sheet_delay_seconds,
            "log_level": self.log_level,
        }


def _default_settings() -> Dict[str, object]:
    return {
        "config_db_path": DEFAULT_CONFIG_DB_PATH,
        "spreadsheet_id": "",
        "setup_timeout_seconds": DEFAULT_SETUP_TIMEOUT_SECONDS,
        "sheet_delay_seconds": DEFAULT_SHEET_DELAY_SECONDS,
        "log_level": DEFAULT_LOG_LEVEL,
    }


def _ensure_settings(path: str) -> Dict[str, object]:
    defaults = _default_settings()
    if not os.path.exists(path):
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(path, "w", encoding="utf-8") as handle:
            json.dump(defaults, handle, indent=2)
        return defaults

    with open(path, "r", encoding="utf-8") as handle:
        try:
            data = json.load(handle)
        except json.JSONDecodeError as exc:
            raise ConfigurationError(f"Settings file {path} is not valid JSON: {exc.msg}") from exc

    merged: Dict[str, object] = dict(defaults)
    if not isinstance(data, Mapping):
        logger.warning("Ignoring settings file %s: expected an object", path)
        return merged
    for key, value in data.items():
        if key == "setup_timeout_seconds":
            try:
                merged[key] = max(10, min(3600, int(value)))
            except (TypeError, ValueError):
                merged[key] = defaults[key]
        elif key == "sheet_delay_seconds":
            try:
                merged[key] = max(0.0, float(value))
            except (TypeError, ValueError):
                merged[key] = defaults[key]
        elif key in defaults and isinstance(value, str):
            merged[key] = value
    return merged


def load_settings(path: str = DEFAULT_SETTINGS_PATH, env: Optional[Mapping[str, str]] = None) -> StoreSettings:
    """Read ``path`` and apply environment overrides."""

    env = os.environ if env is None else env
    data = _ensure_settings(path)

    spreadsheet_id = env.get(SPREADSHEET_ID_ENV) or str(data.get("spreadsheet_id", ""))
    config_db_path = env.get("SHEETDB_CONFIG_DB") or str(data.get("config_db_path", DEFAULT_CONFIG_DB_PATH))

    return StoreSettings(
        config_db_path=config_db_path,
        spreadsheet_id=spreadsheet_id.strip(),
        encryption_key=env.get(ENCRYPTION_KEY_ENV, ""),
        setup_timeout_seconds=int(data.get("setup_timeout_seconds", DEFAULT_SETUP_TIMEOUT_SECONDS)),
        sheet_delay_seconds=float(data.get("sheet_delay_seconds", DEFAULT_SHEET_DELAY_SECONDS)),
        log_level=str(data.get("log_level", DEFAULT_LOG_LEVEL)).upper(),
    )


def save_settings(settings: StoreSettings, path: str = DEFAULT_SETTINGS_PATH) -> None:
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)

    with open(path, "w", encoding="utf-8") as handle:
        json.dump(settings.to_json(), handle, indent=2)


__all__ = [
    "DEFAULT_SETTINGS_PATH",
    "ENCRYPTION_KEY_ENV",
    "SPREADSHEET_ID_ENV",
    "StoreSettings",
    "load_settings",
    "save_settings",
]
