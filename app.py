#!/usr/bin/env python3
"""
Scribe backend - Flask service for household lists and receipt printing.

Serves the member API, the printer dispatch endpoints and the change feed.
"""

import os

from scribe_printer import create_app

app = create_app()

if __name__ == "__main__":
    host = os.environ.get("SCRIBE_HOST", "0.0.0.0")
    port = int(os.environ.get("SCRIBE_PORT", "5000"))
    app.logger.info(f"Starting Scribe on http://{host}:{port}")
    app.logger.info("Press Ctrl+C to stop the server")
    # Threaded: change feed streams hold a worker each.
    app.run(host=host, port=port, debug=False, threaded=True)
