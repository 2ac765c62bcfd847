"""
Web module for Scribe Printer.

Exposes blueprints for:
- Printer dispatch (claim/ack): dispatch_bp
- Member JSON API: api_bp
- Change feed (SSE): changes_bp
- Health endpoint: health_bp
"""

from .api import api_bp
from .changes import changes_bp
from .dispatch_api import dispatch_bp
from .health import health_bp

__all__ = ["api_bp", "changes_bp", "dispatch_bp", "health_bp"]
