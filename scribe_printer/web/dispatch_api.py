from __future__ import annotations

"""
Printer-facing HTTP surface of the dispatch protocol.

Endpoints:
- GET  /api/v1/printer-jobs?printer_id=..&api_key=.. : claim the next job
       200 {"job": {...}} or {"job": null}
- POST /api/v1/printer-jobs?api_key=..               : acknowledge a job
       body {"job_id": str, "status": "done"|"failed"} (api_key may also be in the body)
       200 {"ok": true}

Errors come back as {"error": str, "code": str} with 400/401/404/409.
"""

from flask import Blueprint, current_app, jsonify, request

from scribe_printer.core.errors import ValidationError
from scribe_printer.printing import dispatch

dispatch_bp = Blueprint("dispatch", __name__, url_prefix="/api/v1")


@dispatch_bp.get("/printer-jobs")
def claim_job():
    printer_id = (request.args.get("printer_id") or "").strip()
    api_key = (request.args.get("api_key") or "").strip()
    if not printer_id or not api_key:
        raise ValidationError("printer_id and api_key required")

    job = dispatch.claim_next(printer_id, api_key)
    if job is not None:
        current_app.logger.info(f"Dispatched job {job['id']} to printer {printer_id}")
    return jsonify({"job": job})


@dispatch_bp.post("/printer-jobs")
def ack_job():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        data = {}
    api_key = (request.args.get("api_key") or data.get("api_key") or "").strip()
    job_id = str(data.get("job_id") or "").strip()
    status = str(data.get("status") or "").strip()

    result = dispatch.acknowledge(job_id, api_key, status)
    return jsonify(result)


__all__ = ["dispatch_bp"]
