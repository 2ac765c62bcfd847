from __future__ import annotations

"""
Member JSON API (v1) for Scribe.

All endpoints require a bearer token (see scribe_printer.core.auth) and are
scoped to the caller's household.

Print jobs:
- POST /api/v1/jobs          : Submit a list or message job. Returns 201 + Location
- GET  /api/v1/jobs          : Recent jobs of the household
- GET  /api/v1/jobs/<job_id> : Fetch one job

Household and printer:
- GET  /api/v1/household     : Household summary with printer (no api_key)
- POST /api/v1/printers      : Register the household's printer; api_key is returned once

Lists and items (the entity-write path replayed by offline clients):
- GET/POST   /api/v1/lists
- GET/POST   /api/v1/lists/<list_id>/items
- PATCH      /api/v1/items/<item_id>   {"checked": bool}
- DELETE     /api/v1/items/<item_id>

Payload shape (POST /api/v1/jobs):
{
  "type": "list" | "message",
  "content": {"title": str, "items": [str]} | {"message": str},
  "list_id": str,               # list jobs only
  "clear_after_print": bool     # list jobs only
}
"""

from typing import Any, Dict

from flask import Blueprint, current_app, g, jsonify, request, url_for

from scribe_printer.core import db as dbh
from scribe_printer.core.auth import member_required
from scribe_printer.core.config import MAX_ITEM_LEN, MAX_LIST_ITEMS, MAX_MESSAGE_LEN, MAX_TITLE_LEN
from scribe_printer.core.errors import NotFoundError
from scribe_printer.printing import jobs, producer
from . import schemas

api_bp = Blueprint("api", __name__, url_prefix="/api/v1")


def _limits() -> Dict[str, Any]:
    return {
        "limits": {
            "MAX_MESSAGE_LEN": current_app.config.get("MAX_MESSAGE_LEN", MAX_MESSAGE_LEN),
            "MAX_ITEM_LEN": current_app.config.get("MAX_ITEM_LEN", MAX_ITEM_LEN),
            "MAX_LIST_ITEMS": current_app.config.get("MAX_LIST_ITEMS", MAX_LIST_ITEMS),
            "MAX_TITLE_LEN": current_app.config.get("MAX_TITLE_LEN", MAX_TITLE_LEN),
        }
    }


def _own_list(list_id: str) -> Dict[str, Any]:
    lst = dbh.get_list(list_id)
    if lst is None or lst["household_id"] != g.ctx.household_id:
        raise NotFoundError("List not found", {"list_id": list_id})
    return lst


def _own_item(item_id: str) -> Dict[str, Any]:
    item = dbh.get_list_item(item_id)
    if item is None:
        raise NotFoundError("Item not found", {"item_id": item_id})
    _own_list(item["list_id"])
    return item


# ----- Print jobs ------------------------------------------------------------


@api_bp.post("/jobs")
@member_required
def submit_job():
    """
    Validate a job submission and store it as a pending job for the
    household's printer.
    """
    req = schemas.parse(schemas.JobSubmitRequest, request.get_json(silent=True), context=_limits())
    ctx = g.ctx
    if req.type == "list":
        job_id = producer.submit_list_job(ctx, req.list_id, req.content, clear_after_print=req.clear_after_print)
    else:
        job_id = producer.submit_message_job(ctx, req.content)

    body = schemas.JobAcceptedResponse(id=job_id, status=jobs.PENDING).model_dump()
    resp = jsonify(body)
    resp.status_code = 201
    resp.headers["Location"] = url_for("api.get_job", job_id=job_id)
    return resp


@api_bp.get("/jobs")
@member_required
def list_jobs():
    limit = request.args.get("limit", default=50, type=int)
    return jsonify({"jobs": jobs.list_jobs(g.ctx.household_id, limit=limit)})


@api_bp.get("/jobs/<job_id>")
@member_required
def get_job(job_id: str):
    job = jobs.get_job(job_id)
    if job is None or job["household_id"] != g.ctx.household_id:
        raise NotFoundError("job not found", {"job_id": job_id})
    return jsonify(job)


# ----- Household and printer -------------------------------------------------


@api_bp.get("/household")
@member_required
def household():
    return jsonify(producer.household_summary(g.ctx))


@api_bp.post("/printers")
@member_required
def create_printer():
    req = schemas.parse(schemas.PrinterCreateRequest, request.get_json(silent=True) or {})
    printer = dbh.create_printer(g.ctx.household_id, req.name)
    current_app.logger.info(f"Printer {printer['id']} added by {g.ctx.user_id}")
    return jsonify({"id": printer["id"], "name": printer["name"], "api_key": printer["api_key"]}), 201


# ----- Lists and items -------------------------------------------------------


@api_bp.get("/lists")
@member_required
def get_lists():
    return jsonify({"lists": dbh.list_lists(g.ctx.household_id)})


@api_bp.post("/lists")
@member_required
def create_list():
    req = schemas.parse(schemas.ListCreateRequest, request.get_json(silent=True))
    lst = dbh.create_list(g.ctx.household_id, req.name, created_by=g.ctx.user_id)
    return jsonify(lst), 201


@api_bp.get("/lists/<list_id>/items")
@member_required
def get_items(list_id: str):
    lst = _own_list(list_id)
    return jsonify({"list": lst, "items": dbh.list_items(list_id)})


@api_bp.post("/lists/<list_id>/items")
@member_required
def add_item(list_id: str):
    _own_list(list_id)
    req = schemas.parse(schemas.ItemCreateRequest, request.get_json(silent=True), context=_limits())
    item = dbh.add_list_item(list_id, req.text, position=req.position, created_by=g.ctx.user_id)
    return jsonify(item), 201


@api_bp.patch("/items/<item_id>")
@member_required
def update_item(item_id: str):
    _own_item(item_id)
    req = schemas.parse(schemas.ItemUpdateRequest, request.get_json(silent=True))
    return jsonify(dbh.set_item_checked(item_id, req.checked))


@api_bp.delete("/items/<item_id>")
@member_required
def delete_item(item_id: str):
    """
    Idempotent: deleting an item that is already gone succeeds.
    """
    if dbh.get_list_item(item_id) is not None:
        _own_item(item_id)
        dbh.delete_list_item(item_id)
    return "", 204


__all__ = ["api_bp"]
