from __future__ import annotations

"""
SQLite persistence for Scribe Printer.

Features:
- DB path resolution (app config DB_PATH, SCRIBE_DB_PATH, XDG default)
- Per-request connection lifecycle (cached on Flask `g`), per-thread otherwise
- PRAGMAs for reliability: foreign_keys=ON, WAL, synchronous=NORMAL, busy timeout
- Schema bootstrap (schema_version = 1)
- Explicit BEGIN IMMEDIATE transactions for conditional updates
- Household, printer, list and list item helpers; print jobs live in
  scribe_printer.printing.jobs on top of the same connection handling
- Every committed row change is published to the change feed
"""

import logging
import secrets
import sqlite3
import threading
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

from flask import current_app, g, has_app_context

from scribe_printer.core.config import MAX_ITEM_LEN, env_float, get_db_path
from scribe_printer.core.errors import ConflictError, NotFoundError, ValidationError
from scribe_printer.core.feed import DELETE, FEED, INSERT, UPDATE, ChangeEvent

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1

_LOCAL = threading.local()


# ----- Small helpers ---------------------------------------------------------


def _iso_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def new_id() -> str:
    return uuid.uuid4().hex


def _has_control_chars(s: str) -> bool:
    return any((ord(c) < 32 and c not in "\n\r\t") or ord(c) == 127 for c in s)


def clean_text(value: Any, what: str, max_len: int) -> str:
    text = str(value or "").strip()
    if not text:
        raise ValidationError(f"{what} is required.")
    if len(text) > max_len:
        raise ValidationError(f"{what} is too long (max {max_len}).")
    if _has_control_chars(text):
        raise ValidationError(f"{what} cannot contain control characters.")
    return text


def _row(row: Optional[sqlite3.Row]) -> Optional[Dict[str, Any]]:
    if row is None:
        return None
    data = dict(row)
    if "checked" in data:
        data["checked"] = bool(data["checked"])
    return data


# ----- Connection management -------------------------------------------------


def _apply_pragmas(db: sqlite3.Connection) -> None:
    db.execute("PRAGMA foreign_keys = ON")
    try:
        db.execute("PRAGMA journal_mode = WAL")
    except sqlite3.DatabaseError:
        logger.debug("WAL journal mode unavailable for this database")
    db.execute("PRAGMA synchronous = NORMAL")


def connect(path: Optional[str] = None) -> sqlite3.Connection:
    """
    Open a new connection with PRAGMAs applied and the schema ensured.
    """
    db_path = path or get_db_path()
    if db_path != ":memory:":
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(db_path, timeout=env_float("SCRIBE_DB_TIMEOUT", 30.0))
    conn.row_factory = sqlite3.Row
    _apply_pragmas(conn)
    _ensure_schema(conn)
    return conn


def _configured_path() -> Optional[str]:
    if has_app_context():
        return current_app.config.get("DB_PATH")
    return None


def get_db(path: Optional[str] = None) -> sqlite3.Connection:
    """
    Return a sqlite3 connection: per-request inside a Flask app context,
    otherwise one per thread and path.
    """
    use_path = path or _configured_path() or get_db_path()
    if has_app_context():
        if getattr(g, "db", None) is None or getattr(g, "db_path", None) != use_path:
            g.db = connect(use_path)
            g.db_path = use_path
        return g.db  # type: ignore[attr-defined]

    conns: Dict[str, sqlite3.Connection] = getattr(_LOCAL, "conns", None) or {}
    _LOCAL.conns = conns
    if use_path not in conns:
        conns[use_path] = connect(use_path)
    return conns[use_path]


def close_db(e: Optional[BaseException] = None) -> None:
    """
    Close the active DB connection(s) for this request or thread.
    """
    if has_app_context() and getattr(g, "db", None) is not None:
        try:
            g.db.close()  # type: ignore[attr-defined]
        finally:
            g.db = None
        return

    conns: Dict[str, sqlite3.Connection] = getattr(_LOCAL, "conns", None) or {}
    for conn in conns.values():
        conn.close()
    _LOCAL.conns = {}


def init_app(app) -> None:
    """
    Register the teardown hook on a Flask app.
    """
    app.teardown_appcontext(close_db)


@contextmanager
def immediate(db: sqlite3.Connection) -> Iterator[sqlite3.Connection]:
    """
    Run a block inside BEGIN IMMEDIATE so the write lock is taken before any
    read; concurrent writers wait on the busy timeout instead of interleaving.
    """
    db.execute("BEGIN IMMEDIATE")
    try:
        yield db
    except BaseException:
        db.rollback()
        raise
    else:
        db.commit()


# ----- Schema ----------------------------------------------------------------


def _ensure_schema(db: sqlite3.Connection) -> None:
    with db:
        db.execute("CREATE TABLE IF NOT EXISTS schema_version (version INTEGER NOT NULL)")

        db.execute(
            """
            CREATE TABLE IF NOT EXISTS households (
              id          TEXT PRIMARY KEY,
              name        TEXT NOT NULL,
              created_at  TEXT NOT NULL
            )
            """,
        )
        db.execute(
            """
            CREATE TABLE IF NOT EXISTS household_members (
              id            INTEGER PRIMARY KEY AUTOINCREMENT,
              household_id  TEXT NOT NULL,
              user_id       TEXT NOT NULL,
              role          TEXT NOT NULL DEFAULT 'member',
              joined_at     TEXT NOT NULL,
              UNIQUE (household_id, user_id),
              FOREIGN KEY (household_id) REFERENCES households(id) ON DELETE CASCADE
            )
            """,
        )
        db.execute("CREATE INDEX IF NOT EXISTS idx_members_user ON household_members(user_id)")

        # At most one printer per household.
        db.execute(
            """
            CREATE TABLE IF NOT EXISTS printers (
              id            TEXT PRIMARY KEY,
              household_id  TEXT NOT NULL UNIQUE,
              name          TEXT NOT NULL,
              api_key       TEXT NOT NULL,
              last_seen     TEXT,
              created_at    TEXT NOT NULL,
              FOREIGN KEY (household_id) REFERENCES households(id) ON DELETE CASCADE
            )
            """,
        )

        db.execute(
            """
            CREATE TABLE IF NOT EXISTS lists (
              id            TEXT PRIMARY KEY,
              household_id  TEXT NOT NULL,
              name          TEXT NOT NULL,
              created_by    TEXT,
              created_at    TEXT NOT NULL,
              updated_at    TEXT NOT NULL,
              FOREIGN KEY (household_id) REFERENCES households(id) ON DELETE CASCADE
            )
            """,
        )
        db.execute("CREATE INDEX IF NOT EXISTS idx_lists_household ON lists(household_id)")

        db.execute(
            """
            CREATE TABLE IF NOT EXISTS list_items (
              id          TEXT PRIMARY KEY,
              list_id     TEXT NOT NULL,
              text        TEXT NOT NULL,
              checked     INTEGER NOT NULL DEFAULT 0,
              position    INTEGER NOT NULL DEFAULT 0,
              created_by  TEXT,
              created_at  TEXT NOT NULL,
              FOREIGN KEY (list_id) REFERENCES lists(id) ON DELETE CASCADE
            )
            """,
        )
        db.execute("CREATE INDEX IF NOT EXISTS idx_items_order ON list_items(list_id, position, created_at)")

        # No foreign keys: a job is a snapshot and outlives its list.
        db.execute(
            """
            CREATE TABLE IF NOT EXISTS print_jobs (
              id                 TEXT PRIMARY KEY,
              household_id       TEXT NOT NULL,
              printer_id         TEXT NOT NULL,
              type               TEXT NOT NULL CHECK (type IN ('list', 'message')),
              content_json       TEXT NOT NULL,
              clear_after_print  INTEGER NOT NULL DEFAULT 0,
              list_id            TEXT,
              status             TEXT NOT NULL DEFAULT 'pending'
                                 CHECK (status IN ('pending', 'printing', 'done', 'failed')),
              created_by         TEXT,
              created_at         TEXT NOT NULL,
              claimed_at         TEXT,
              printed_at         TEXT
            )
            """,
        )
        db.execute(
            "CREATE INDEX IF NOT EXISTS idx_jobs_dispatch ON print_jobs(printer_id, status, created_at)",
        )
        db.execute("CREATE INDEX IF NOT EXISTS idx_jobs_household ON print_jobs(household_id, created_at)")

        row = db.execute("SELECT version FROM schema_version ORDER BY version DESC LIMIT 1").fetchone()
        if row is None:
            db.execute("INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,))


# ----- Households and membership (collaborator interface) --------------------


def create_household(name: str, db: Optional[sqlite3.Connection] = None) -> Dict[str, Any]:
    db = db or get_db()
    household = {"id": new_id(), "name": clean_text(name, "Household name", 100), "created_at": _iso_now()}
    with db:
        db.execute(
            "INSERT INTO households (id, name, created_at) VALUES (:id, :name, :created_at)",
            household,
        )
    return household


def add_member(
    household_id: str,
    user_id: str,
    role: str = "member",
    db: Optional[sqlite3.Connection] = None,
) -> Dict[str, Any]:
    db = db or get_db()
    if role not in ("owner", "member"):
        raise ValidationError(f"Invalid role: {role!r}")
    try:
        with db:
            db.execute(
                "INSERT INTO household_members (household_id, user_id, role, joined_at) VALUES (?,?,?,?)",
                (household_id, user_id, role, _iso_now()),
            )
    except sqlite3.IntegrityError as e:
        raise ConflictError("User is already in this household", {"user_id": user_id}) from e
    return {"household_id": household_id, "user_id": user_id, "role": role}


def get_membership(user_id: str, db: Optional[sqlite3.Connection] = None) -> Optional[Dict[str, Any]]:
    """
    Return the user's household membership, or None.
    """
    db = db or get_db()
    row = db.execute(
        """
        SELECT m.household_id, m.user_id, m.role, h.name AS household_name
        FROM household_members m JOIN households h ON h.id = m.household_id
        WHERE m.user_id = ?
        ORDER BY m.id ASC
        LIMIT 1
        """,
        (user_id,),
    ).fetchone()
    return _row(row)


# ----- Printers --------------------------------------------------------------


def create_printer(household_id: str, name: str, db: Optional[sqlite3.Connection] = None) -> Dict[str, Any]:
    """
    Register the household's printer and mint its API key.
    The returned dict is the only place the caller sees the key.
    """
    db = db or get_db()
    printer = {
        "id": new_id(),
        "household_id": household_id,
        "name": clean_text(name, "Printer name", 60),
        "api_key": secrets.token_urlsafe(24),
        "last_seen": None,
        "created_at": _iso_now(),
    }
    try:
        with db:
            db.execute(
                """
                INSERT INTO printers (id, household_id, name, api_key, last_seen, created_at)
                VALUES (:id, :household_id, :name, :api_key, :last_seen, :created_at)
                """,
                printer,
            )
    except sqlite3.IntegrityError as e:
        raise ConflictError("This household already has a printer", {"household_id": household_id}) from e
    logger.info("Printer %s registered for household %s", printer["id"], household_id)
    return printer


def get_printer(printer_id: str, db: Optional[sqlite3.Connection] = None) -> Optional[Dict[str, Any]]:
    db = db or get_db()
    return _row(db.execute("SELECT * FROM printers WHERE id = ?", (printer_id,)).fetchone())


def get_household_printer(household_id: str, db: Optional[sqlite3.Connection] = None) -> Optional[Dict[str, Any]]:
    db = db or get_db()
    return _row(db.execute("SELECT * FROM printers WHERE household_id = ?", (household_id,)).fetchone())


def touch_printer_last_seen(printer_id: str, db: Optional[sqlite3.Connection] = None) -> str:
    db = db or get_db()
    now = _iso_now()
    with db:
        db.execute("UPDATE printers SET last_seen = ? WHERE id = ?", (now, printer_id))
    return now


def public_printer(printer: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """
    Printer summary safe to show household members (no api_key).
    """
    if printer is None:
        return None
    return {k: v for k, v in printer.items() if k != "api_key"}


# ----- Lists -----------------------------------------------------------------


def create_list(
    household_id: str,
    name: str,
    created_by: Optional[str] = None,
    db: Optional[sqlite3.Connection] = None,
) -> Dict[str, Any]:
    db = db or get_db()
    now = _iso_now()
    record = {
        "id": new_id(),
        "household_id": household_id,
        "name": clean_text(name, "List name", 100),
        "created_by": created_by,
        "created_at": now,
        "updated_at": now,
    }
    with db:
        db.execute(
            """
            INSERT INTO lists (id, household_id, name, created_by, created_at, updated_at)
            VALUES (:id, :household_id, :name, :created_by, :created_at, :updated_at)
            """,
            record,
        )
    FEED.publish(ChangeEvent("lists", INSERT, record=dict(record)))
    return record


def get_list(list_id: str, db: Optional[sqlite3.Connection] = None) -> Optional[Dict[str, Any]]:
    db = db or get_db()
    return _row(db.execute("SELECT * FROM lists WHERE id = ?", (list_id,)).fetchone())


def list_lists(household_id: str, db: Optional[sqlite3.Connection] = None) -> List[Dict[str, Any]]:
    db = db or get_db()
    rows = db.execute(
        """
        SELECT l.*, (SELECT COUNT(*) FROM list_items i WHERE i.list_id = l.id) AS items_count
        FROM lists l
        WHERE l.household_id = ?
        ORDER BY l.updated_at DESC
        """,
        (household_id,),
    ).fetchall()
    return [_row(r) for r in rows]  # type: ignore[misc]


def _touch_list(db: sqlite3.Connection, list_id: str, now: str) -> None:
    db.execute("UPDATE lists SET updated_at = ? WHERE id = ?", (now, list_id))


# ----- List items ------------------------------------------------------------


def list_items(list_id: str, db: Optional[sqlite3.Connection] = None) -> List[Dict[str, Any]]:
    """
    Items of a list in canonical order: position, then created_at.
    """
    db = db or get_db()
    rows = db.execute(
        "SELECT * FROM list_items WHERE list_id = ? ORDER BY position ASC, created_at ASC, rowid ASC",
        (list_id,),
    ).fetchall()
    return [_row(r) for r in rows]  # type: ignore[misc]


def get_list_item(item_id: str, db: Optional[sqlite3.Connection] = None) -> Optional[Dict[str, Any]]:
    db = db or get_db()
    return _row(db.execute("SELECT * FROM list_items WHERE id = ?", (item_id,)).fetchone())


def add_list_item(
    list_id: str,
    text: str,
    position: Optional[int] = None,
    created_by: Optional[str] = None,
    db: Optional[sqlite3.Connection] = None,
) -> Dict[str, Any]:
    """
    Append an item. Without an explicit position the item goes after the
    current last one.
    """
    db = db or get_db()
    text = clean_text(text, "Item text", MAX_ITEM_LEN)
    if position is not None and (not isinstance(position, int) or isinstance(position, bool) or position < 0):
        raise ValidationError("Item position must be a non-negative integer.")
    now = _iso_now()
    with db:
        if get_list(list_id, db=db) is None:
            raise NotFoundError("List not found", {"list_id": list_id})
        if position is None:
            row = db.execute(
                "SELECT COALESCE(MAX(position) + 1, 0) AS next FROM list_items WHERE list_id = ?",
                (list_id,),
            ).fetchone()
            position = int(row["next"])
        record = {
            "id": new_id(),
            "list_id": list_id,
            "text": text,
            "checked": False,
            "position": position,
            "created_by": created_by,
            "created_at": now,
        }
        db.execute(
            """
            INSERT INTO list_items (id, list_id, text, checked, position, created_by, created_at)
            VALUES (:id, :list_id, :text, 0, :position, :created_by, :created_at)
            """,
            record,
        )
        _touch_list(db, list_id, now)
    FEED.publish(ChangeEvent("list_items", INSERT, record=dict(record)))
    return record


def set_item_checked(item_id: str, checked: bool, db: Optional[sqlite3.Connection] = None) -> Dict[str, Any]:
    db = db or get_db()
    with db:
        old = get_list_item(item_id, db=db)
        if old is None:
            raise NotFoundError("Item not found", {"item_id": item_id})
        db.execute("UPDATE list_items SET checked = ? WHERE id = ?", (1 if checked else 0, item_id))
        _touch_list(db, old["list_id"], _iso_now())
    record = dict(old, checked=bool(checked))
    FEED.publish(ChangeEvent("list_items", UPDATE, record=record, old=old))
    return record


def delete_list_item(item_id: str, db: Optional[sqlite3.Connection] = None) -> bool:
    """
    Delete one item. Returns False when it is already gone.
    """
    db = db or get_db()
    with db:
        old = get_list_item(item_id, db=db)
        if old is None:
            return False
        db.execute("DELETE FROM list_items WHERE id = ?", (item_id,))
        _touch_list(db, old["list_id"], _iso_now())
    FEED.publish(ChangeEvent("list_items", DELETE, old=old))
    return True


def delete_list_items_in_txn(db: sqlite3.Connection, list_id: str) -> List[ChangeEvent]:
    """
    Delete every item of a list inside the caller's open transaction.
    Returns the DELETE events to publish once the caller commits.
    """
    rows = db.execute("SELECT * FROM list_items WHERE list_id = ?", (list_id,)).fetchall()
    if not rows:
        return []
    db.execute("DELETE FROM list_items WHERE list_id = ?", (list_id,))
    _touch_list(db, list_id, _iso_now())
    return [ChangeEvent("list_items", DELETE, old=_row(r) or {}) for r in rows]


def clear_list_items(list_id: str, db: Optional[sqlite3.Connection] = None) -> int:
    """
    Remove all items of a list. Idempotent: clearing an empty list deletes
    nothing and raises nothing. Returns the number of deleted items.
    """
    db = db or get_db()
    with immediate(db):
        events = delete_list_items_in_txn(db, list_id)
    FEED.publish_many(events)
    return len(events)


__all__ = [
    "SCHEMA_VERSION",
    "add_list_item",
    "add_member",
    "clean_text",
    "clear_list_items",
    "close_db",
    "connect",
    "create_household",
    "create_list",
    "create_printer",
    "delete_list_item",
    "delete_list_items_in_txn",
    "get_db",
    "get_household_printer",
    "get_list",
    "get_list_item",
    "get_membership",
    "get_printer",
    "immediate",
    "init_app",
    "list_items",
    "list_lists",
    "new_id",
    "public_printer",
    "set_item_checked",
    "touch_printer_last_seen",
]
