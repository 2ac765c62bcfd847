"""
Print job producer.

Turns a member's request into a pending PrintJob. The caller's identity,
household and printer travel in an explicit RequestContext resolved per
request; there is no ambient "current household".

Rules:
- A household without a printer gets PrinterNotConfiguredError and nothing
  is written.
- Content is validated with the pydantic models in scribe_printer.web.schemas
  and stored as an immutable snapshot.
- A list job may only reference a list of the caller's household.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from pydantic import ValidationError as PydanticValidationError

from scribe_printer.core import db as dbh
from scribe_printer.core.errors import AuthenticationError, NotFoundError, PrinterNotConfiguredError, ValidationError
from scribe_printer.printing import jobs
from scribe_printer.web.schemas import ListContent, MessageContent

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RequestContext:
    user_id: str
    household_id: str
    printer_id: Optional[str] = None

    @classmethod
    def for_user(cls, user_id: str, db: Optional[sqlite3.Connection] = None) -> "RequestContext":
        """
        Resolve the context of an authenticated user from the membership store.
        """
        membership = dbh.get_membership(user_id, db=db)
        if membership is None:
            raise AuthenticationError("User is not a member of any household")
        printer = dbh.get_household_printer(membership["household_id"], db=db)
        return cls(
            user_id=user_id,
            household_id=membership["household_id"],
            printer_id=printer["id"] if printer else None,
        )


def _pydantic_message(e: PydanticValidationError) -> str:
    try:
        return str(e.errors()[0].get("msg") or e)
    except (IndexError, AttributeError):
        return str(e)


def _require_printer(ctx: RequestContext) -> str:
    if not ctx.printer_id:
        raise PrinterNotConfiguredError()
    return ctx.printer_id


def submit_list_job(
    ctx: RequestContext,
    list_id: str,
    content: Mapping[str, Any],
    clear_after_print: bool = False,
    db: Optional[sqlite3.Connection] = None,
) -> str:
    """
    Queue a snapshot of a list for printing and return the job id.
    """
    printer_id = _require_printer(ctx)
    try:
        snapshot = ListContent.model_validate(dict(content or {})).model_dump()
    except PydanticValidationError as e:
        raise ValidationError(_pydantic_message(e)) from e

    lst = dbh.get_list(list_id, db=db) if list_id else None
    if lst is None or lst["household_id"] != ctx.household_id:
        raise NotFoundError("List not found", {"list_id": list_id})

    job_id = jobs.enqueue_job(
        ctx.household_id,
        printer_id,
        "list",
        snapshot,
        clear_after_print=bool(clear_after_print),
        list_id=list_id,
        created_by=ctx.user_id,
        db=db,
    )
    logger.info("User %s queued list %s for printing (clear=%s)", ctx.user_id, list_id, bool(clear_after_print))
    return job_id


def submit_message_job(
    ctx: RequestContext,
    content: Mapping[str, Any],
    db: Optional[sqlite3.Connection] = None,
) -> str:
    """
    Queue a free-text note and return the job id.
    """
    printer_id = _require_printer(ctx)
    try:
        snapshot = MessageContent.model_validate(dict(content or {})).model_dump()
    except PydanticValidationError as e:
        raise ValidationError(_pydantic_message(e)) from e

    return jobs.enqueue_job(
        ctx.household_id,
        printer_id,
        "message",
        snapshot,
        created_by=ctx.user_id,
        db=db,
    )


def household_summary(ctx: RequestContext, db: Optional[sqlite3.Connection] = None) -> Dict[str, Any]:
    membership = dbh.get_membership(ctx.user_id, db=db) or {}
    printer = dbh.get_household_printer(ctx.household_id, db=db)
    return {
        "id": ctx.household_id,
        "name": membership.get("household_name"),
        "role": membership.get("role"),
        "printer": dbh.public_printer(printer),
    }


__all__ = ["RequestContext", "household_summary", "submit_list_job", "submit_message_job"]
