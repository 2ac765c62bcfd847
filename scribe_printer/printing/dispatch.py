"""
Dispatch protocol used by the physical printer.

The printer pulls work; nothing is pushed to it. Two operations:

- claim_next(printer_id, api_key): authenticate, record last_seen, claim the
  oldest pending job and return its content snapshot (or None)
- acknowledge(job_id, api_key, status): report 'done' or 'failed' for a job
  the printer claimed

The api_key is the printer's only credential. On acknowledge it is checked
against the printer that owns the job (job.printer_id), never against a
printer id the caller claims to be. Failures raise the typed errors in
scribe_printer.core.errors and nothing is retried here; the device decides
whether to poll or acknowledge again.
"""

from __future__ import annotations

import hmac
import logging
import sqlite3
from typing import Any, Dict, Optional

from scribe_printer.core import db as dbh
from scribe_printer.core.errors import AuthenticationError, NotFoundError, ValidationError
from scribe_printer.printing import jobs

logger = logging.getLogger(__name__)

ACK_STATUSES = jobs.TERMINAL_STATUSES

# Fields the device receives for a claimed job.
DISPATCH_FIELDS = ("id", "type", "content", "clear_after_print", "list_id", "created_at")


def _authenticate(printer_id: Optional[str], api_key: Optional[str], db: sqlite3.Connection) -> Dict[str, Any]:
    if not printer_id or not api_key:
        raise AuthenticationError()
    printer = dbh.get_printer(printer_id, db=db)
    if printer is None or not hmac.compare_digest(str(printer["api_key"]), str(api_key)):
        logger.warning("Rejected credentials for printer %s", printer_id)
        raise AuthenticationError()
    return printer


def dispatch_view(job: Dict[str, Any]) -> Dict[str, Any]:
    """
    Device-facing projection of a job: the stored snapshot, nothing live.
    """
    return {k: job.get(k) for k in DISPATCH_FIELDS}


def claim_next(printer_id: str, api_key: str, db: Optional[sqlite3.Connection] = None) -> Optional[Dict[str, Any]]:
    """
    Poll for work. Updates last_seen on every authenticated poll, including
    polls that find nothing.
    """
    db = db or dbh.get_db()
    printer = _authenticate(printer_id, api_key, db)
    dbh.touch_printer_last_seen(printer["id"], db=db)
    job = jobs.claim_next_job(printer["id"], db=db)
    if job is None:
        logger.debug("Poll from printer %s: no pending jobs", printer["id"])
        return None
    return dispatch_view(job)


def acknowledge(job_id: str, api_key: str, status: str, db: Optional[sqlite3.Connection] = None) -> Dict[str, Any]:
    """
    Report the outcome of a claimed job. Returns {"ok": True} on success.

    Order of checks: status value, job existence, credentials of the job's
    printer, then the printing -> terminal transition itself.
    """
    if not job_id or not status or not api_key:
        raise ValidationError("job_id, status, and api_key required")
    if status not in ACK_STATUSES:
        raise ValidationError("status must be 'done' or 'failed'")

    db = db or dbh.get_db()
    job = jobs.get_job(job_id, db=db)
    if job is None:
        raise NotFoundError("job not found", {"job_id": job_id})
    _authenticate(job["printer_id"], api_key, db)

    jobs.finish_job(job_id, status, db=db)
    return {"ok": True}


__all__ = ["ACK_STATUSES", "acknowledge", "claim_next", "dispatch_view"]
