from __future__ import annotations

"""
Health endpoint for Scribe.

This blueprint exposes `/healthz`, reporting:
- Overall status ("ok" or "degraded")
- Print job counts by status
- Jobs stuck in 'printing' longer than SCRIBE_STUCK_AFTER_SECONDS (nothing reclaims them)
- Number of live change feed subscriptions
"""

from typing import Any, Dict

from flask import Blueprint, current_app

from scribe_printer.core.config import env_float
from scribe_printer.core.feed import FEED
from scribe_printer.printing.jobs import count_by_status, count_stuck_jobs

health_bp = Blueprint("health", __name__)


@health_bp.get("/healthz")
def healthz():
    status: Dict[str, Any] = {"status": "ok"}
    stuck_after = float(
        current_app.config.get("STUCK_AFTER_SECONDS") or env_float("SCRIBE_STUCK_AFTER_SECONDS", 600.0)
    )

    status["jobs"] = count_by_status()
    status["stuck_jobs"] = count_stuck_jobs(stuck_after)
    status["feed_subscribers"] = FEED.subscriber_count()
    if status["stuck_jobs"]:
        status["status"] = "degraded"
        status["reason"] = "stuck_jobs"
    return status, 200
