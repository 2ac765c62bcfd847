"""
Core utilities for Scribe Printer.

This package groups helpers shared by the service, the printer agent and the
household client:
- config: env-driven limits, XDG paths, JSON load/save
- errors: the ScribeError taxonomy
- logging: request and household aware log records, root logger config
- feed: in-process change feed
- db: SQLite schema, connections and entity helpers (Flask-aware)
- auth: member bearer tokens
- http: requests plumbing and backoff for the agent and client
"""

from .config import (
    MAX_ITEM_LEN,
    MAX_LIST_ITEMS,
    MAX_MESSAGE_LEN,
    get_config_path,
    get_data_path,
    get_db_path,
    load_config,
    save_config,
)
from .errors import (
    AuthenticationError,
    ConflictError,
    NotFoundError,
    PrinterNotConfiguredError,
    ScribeError,
    TransientNetworkError,
    ValidationError,
)
from .logging import (
    JsonFormatter,
    ScribeContextFilter,
    configure_logging,
)

__all__ = [
    # config
    "MAX_ITEM_LEN",
    "MAX_LIST_ITEMS",
    "MAX_MESSAGE_LEN",
    "get_config_path",
    "get_data_path",
    "get_db_path",
    "load_config",
    "save_config",
    # errors
    "AuthenticationError",
    "ConflictError",
    "NotFoundError",
    "PrinterNotConfiguredError",
    "ScribeError",
    "TransientNetworkError",
    "ValidationError",
    # logging
    "configure_logging",
    "ScribeContextFilter",
    "JsonFormatter",
]
