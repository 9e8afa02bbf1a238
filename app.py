#!/usr/bin/env python3

import logging
import os
import sys
from gantry import create_app

if __name__ == "__main__":
    logging.basicConfig(
        level=os.environ.get("LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app = create_app()

    host = os.environ.get("HOST", "127.0.0.1")
    port = int(os.environ.get("PORT", 5000))
    debug = os.environ.get("FLASK_ENV") == "development"

    print(f"Starting gantry on http://{host}:{port}")
    print("POST /api/runs to start a pipeline run")
    print("Press CTRL+C to stop the server")

    try:
        # The reloader would start a second run worker
        app.run(host=host, port=port, debug=debug, use_reloader=False)
    except KeyboardInterrupt:
        print("\nShutting down gantry...")
        sys.exit(0)
