"""
Config utilities for Scribe Printer.

Responsibilities:
- Resolve database/config/local-store paths with environment and XDG support
- Provide typed env lookups for service limits and intervals
- Provide JSON load/save helpers for client and printer agent config
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Optional


def env_int(name: str, default: int) -> int:
    try:
        return int(os.environ.get(name, default))
    except (TypeError, ValueError):
        return default


def env_float(name: str, default: float) -> float:
    try:
        return float(os.environ.get(name, default))
    except (TypeError, ValueError):
        return default


def _xdg_dir(var: str, *fallback: str) -> Path:
    xdg = os.environ.get(var)
    if xdg:
        return Path(xdg) / "scribe"
    return Path.home().joinpath(*fallback) / "scribe"


def default_db_path() -> str:
    """
    Resolve the default database path using:
    1) $XDG_DATA_HOME/scribe/scribe.db
    2) ~/.local/share/scribe/scribe.db
    """
    return str(_xdg_dir("XDG_DATA_HOME", ".local", "share") / "scribe.db")


def default_config_path() -> str:
    """
    Resolve the default config path using:
    1) $XDG_CONFIG_HOME/scribe/config.json
    2) ~/.config/scribe/config.json
    """
    return str(_xdg_dir("XDG_CONFIG_HOME", ".config") / "config.json")


def default_data_path() -> str:
    """
    Directory for client-resident durable state (offline queue).
    """
    return str(_xdg_dir("XDG_DATA_HOME", ".local", "share") / "client")


def get_db_path() -> str:
    return os.environ.get("SCRIBE_DB_PATH", default_db_path())


def get_config_path() -> str:
    return os.environ.get("SCRIBE_CONFIG_PATH", default_config_path())


def get_data_path() -> str:
    return os.environ.get("SCRIBE_DATA_PATH", default_data_path())


def ensure_dir(path: str) -> str:
    Path(path).mkdir(parents=True, exist_ok=True)
    return path


def load_config(path: Optional[str] = None) -> Optional[dict[str, Any]]:
    """
    Load the JSON config if it exists; return None if missing.

    Raises:
        json.JSONDecodeError if the file exists but contains invalid JSON.
        OSError for I/O errors other than missing file.
    """
    cfg_path = Path(path or get_config_path())
    if not cfg_path.exists():
        return None
    with cfg_path.open("r", encoding="utf-8") as f:
        return json.load(f)


def write_json_atomic(data: Any, path: str) -> None:
    """
    Write JSON durably: temp file, fsync, then os.replace() over the target.
    """
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)

    tmp_path = target.with_suffix(target.suffix + ".tmp")
    with tmp_path.open("w", encoding="utf-8") as f:
        json.dump(data, f, indent=2)
        f.flush()
        os.fsync(f.fileno())
    os.replace(tmp_path, target)


def save_config(data: dict[str, Any], path: Optional[str] = None) -> None:
    """
    Save the JSON config, creating parent directories as needed.
    Raises OSError on I/O failures.
    """
    write_json_atomic(data, path or get_config_path())


# Service limits
MAX_MESSAGE_LEN = env_int("SCRIBE_MAX_MESSAGE_LEN", 300)
MAX_ITEM_LEN = env_int("SCRIBE_MAX_ITEM_LEN", 200)
MAX_LIST_ITEMS = env_int("SCRIBE_MAX_LIST_ITEMS", 200)
MAX_TITLE_LEN = env_int("SCRIBE_MAX_TITLE_LEN", 100)

__all__ = [
    "MAX_ITEM_LEN",
    "MAX_LIST_ITEMS",
    "MAX_MESSAGE_LEN",
    "MAX_TITLE_LEN",
    "default_config_path",
    "default_data_path",
    "default_db_path",
    "ensure_dir",
    "env_float",
    "env_int",
    "get_config_path",
    "get_data_path",
    "get_db_path",
    "load_config",
    "save_config",
    "write_json_atomic",
]
