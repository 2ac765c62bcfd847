"""
Print job persistence.

This module owns the print_jobs table:
- enqueue_job(): insert a job as 'pending' with an immutable content snapshot
- claim_next_job(): atomically move the oldest pending job of a printer to
  'printing' (compare-and-swap under BEGIN IMMEDIATE)
- finish_job(): move a 'printing' job to 'done' or 'failed' and, for list jobs
  marked clear_after_print, delete the list's items in the same transaction
- read helpers for the member API and health checks

Status is monotonic: pending -> printing -> done | failed. Terminal rows are
never updated again; every transition is a conditional UPDATE on the current
status, so a stale or duplicate caller affects zero rows.

Credential checks are not done here; see scribe_printer.printing.dispatch.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from collections.abc import Mapping
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from scribe_printer.core import db as dbh
from scribe_printer.core.errors import ConflictError, NotFoundError, ValidationError
from scribe_printer.core.feed import FEED, INSERT, UPDATE, ChangeEvent

logger = logging.getLogger(__name__)

PENDING = "pending"
PRINTING = "printing"
DONE = "done"
FAILED = "failed"

JOB_TYPES = ("list", "message")
TERMINAL_STATUSES = (DONE, FAILED)

CLAIM_ATTEMPTS = 5


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def _job_from_row(row: Optional[sqlite3.Row]) -> Optional[Dict[str, Any]]:
    if row is None:
        return None
    data = dict(row)
    data["content"] = json.loads(data.pop("content_json") or "{}")
    data["clear_after_print"] = bool(data["clear_after_print"])
    return data


def _get_job_row(db: sqlite3.Connection, job_id: str) -> Optional[Dict[str, Any]]:
    return _job_from_row(db.execute("SELECT * FROM print_jobs WHERE id = ?", (job_id,)).fetchone())


def enqueue_job(
    household_id: str,
    printer_id: str,
    job_type: str,
    content: Mapping[str, Any],
    clear_after_print: bool = False,
    list_id: Optional[str] = None,
    created_by: Optional[str] = None,
    db: Optional[sqlite3.Connection] = None,
) -> str:
    """
    Insert a pending job and return its id.

    The content is serialized once here; later edits to the source list do not
    reach the stored snapshot. No check is made that printer_id belongs to
    household_id.
    """
    if job_type not in JOB_TYPES:
        raise ValidationError(f"Invalid job type: {job_type!r}")
    if not isinstance(content, Mapping):
        raise ValidationError("Job content must be an object.")
    db = db or dbh.get_db()
    record = {
        "id": dbh.new_id(),
        "household_id": household_id,
        "printer_id": printer_id,
        "type": job_type,
        "content_json": json.dumps(dict(content), ensure_ascii=False),
        "clear_after_print": 1 if clear_after_print else 0,
        "list_id": list_id,
        "status": PENDING,
        "created_by": created_by,
        "created_at": _utc_now_iso(),
    }
    with db:
        db.execute(
            """
            INSERT INTO print_jobs
              (id, household_id, printer_id, type, content_json, clear_after_print, list_id, status, created_by, created_at)
            VALUES
              (:id, :household_id, :printer_id, :type, :content_json, :clear_after_print, :list_id, :status, :created_by, :created_at)
            """,
            record,
        )
    job = get_job(record["id"], db=db)
    logger.info("Enqueued %s job %s for printer %s", job_type, record["id"], printer_id)
    FEED.publish(ChangeEvent("print_jobs", INSERT, record=dict(job or {})))
    return record["id"]


def get_job(job_id: str, db: Optional[sqlite3.Connection] = None) -> Optional[Dict[str, Any]]:
    db = db or dbh.get_db()
    return _get_job_row(db, job_id)


def list_jobs(household_id: str, limit: int = 50, db: Optional[sqlite3.Connection] = None) -> List[Dict[str, Any]]:
    """
    Jobs of a household, newest first.
    """
    db = db or dbh.get_db()
    rows = db.execute(
        "SELECT * FROM print_jobs WHERE household_id = ? ORDER BY created_at DESC, rowid DESC LIMIT ?",
        (household_id, max(1, int(limit))),
    ).fetchall()
    return [_job_from_row(r) for r in rows]  # type: ignore[misc]


def _compare_and_swap_claim(db: sqlite3.Connection, job_id: str, now: str) -> None:
    cur = db.execute(
        "UPDATE print_jobs SET status = ?, claimed_at = ? WHERE id = ? AND status = ?",
        (PRINTING, now, job_id, PENDING),
    )
    if cur.rowcount != 1:
        raise ConflictError("Job was claimed by another poll", {"job_id": job_id})


def claim_next_job(printer_id: str, db: Optional[sqlite3.Connection] = None) -> Optional[Dict[str, Any]]:
    """
    Claim the oldest pending job of a printer, or return None.

    Selection and the status change happen inside one BEGIN IMMEDIATE
    transaction, and the change itself is conditional on status = 'pending'.
    Two concurrent polls can never both receive the same job.
    """
    db = db or dbh.get_db()
    claimed: Optional[Dict[str, Any]] = None
    with dbh.immediate(db):
        for _ in range(CLAIM_ATTEMPTS):
            row = db.execute(
                """
                SELECT id FROM print_jobs
                WHERE printer_id = ? AND status = ?
                ORDER BY created_at ASC, rowid ASC
                LIMIT 1
                """,
                (printer_id, PENDING),
            ).fetchone()
            if row is None:
                return None
            try:
                _compare_and_swap_claim(db, row["id"], _utc_now_iso())
            except ConflictError:
                logger.debug("Lost claim race for job %s; trying next", row["id"])
                continue
            claimed = _get_job_row(db, row["id"])
            break
        else:
            raise ConflictError("Could not claim a job; too much contention", {"printer_id": printer_id})

    logger.info("Printer %s claimed job %s", printer_id, claimed["id"] if claimed else None)
    if claimed is not None:
        FEED.publish(ChangeEvent("print_jobs", UPDATE, record=dict(claimed), old=dict(claimed, status=PENDING)))
    return claimed


def finish_job(job_id: str, status: str, db: Optional[sqlite3.Connection] = None) -> Dict[str, Any]:
    """
    Record the outcome of a claimed job.

    Only a job in 'printing' may finish. A terminal or never-claimed job raises
    ConflictError and is left untouched, including printed_at. When a 'done'
    list job asks for it, the list's items are deleted in the same transaction
    as the status change.
    """
    if status not in TERMINAL_STATUSES:
        raise ValidationError("status must be 'done' or 'failed'")
    db = db or dbh.get_db()
    events: List[ChangeEvent] = []
    with dbh.immediate(db):
        job = _get_job_row(db, job_id)
        if job is None:
            raise NotFoundError("job not found", {"job_id": job_id})
        now = _utc_now_iso()
        cur = db.execute(
            "UPDATE print_jobs SET status = ?, printed_at = ? WHERE id = ? AND status = ?",
            (status, now, job_id, PRINTING),
        )
        if cur.rowcount != 1:
            raise ConflictError(
                f"Job is {job['status']}; only printing jobs can be acknowledged",
                {"job_id": job_id, "status": job["status"]},
            )
        finished = dict(job, status=status, printed_at=now)
        events.append(ChangeEvent("print_jobs", UPDATE, record=finished, old=job))
        if status == DONE and job["clear_after_print"] and job["list_id"]:
            events.extend(dbh.delete_list_items_in_txn(db, job["list_id"]))

    cleared = len(events) - 1
    logger.info("Job %s finished status=%s cleared_items=%d", job_id, status, cleared)
    FEED.publish_many(events)
    return finished


def count_stuck_jobs(older_than_seconds: float, db: Optional[sqlite3.Connection] = None) -> int:
    """
    Jobs still 'printing' after the given age. Nothing reclaims them.
    """
    db = db or dbh.get_db()
    cutoff = (datetime.now(timezone.utc) - timedelta(seconds=older_than_seconds)).isoformat(timespec="microseconds")
    row = db.execute(
        "SELECT COUNT(*) AS n FROM print_jobs WHERE status = ? AND claimed_at < ?",
        (PRINTING, cutoff),
    ).fetchone()
    return int(row["n"] or 0)


def count_by_status(db: Optional[sqlite3.Connection] = None) -> Dict[str, int]:
    db = db or dbh.get_db()
    counts = {s: 0 for s in (PENDING, PRINTING, DONE, FAILED)}
    for row in db.execute("SELECT status, COUNT(*) AS n FROM print_jobs GROUP BY status").fetchall():
        counts[row["status"]] = int(row["n"])
    return counts


__all__ = [
    "DONE",
    "FAILED",
    "JOB_TYPES",
    "PENDING",
    "PRINTING",
    "TERMINAL_STATUSES",
    "claim_next_job",
    "count_by_status",
    "count_stuck_jobs",
    "enqueue_job",
    "finish_job",
    "get_job",
    "list_jobs",
]
