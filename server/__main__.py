"""CLI entrypoint for running the API server."""
from __future__ import annotations

import argparse
import os

from . import create_app


def main() -> None:
    parser = argparse.ArgumentParser(description="Run the issue relay API server")
    parser.add_argument("--host", default="127.0.0.1", help="Host to bind (default: 127.0.0.1)")
    parser.add_argument("--port", type=int, default=8000, help="Port to bind (default: 8000)")
    parser.add_argument("--debug", action="store_true", help="Enable Flask debug mode")
    parser.add_argument(
        "--worker",
        action="store_true",
        default=None,
        help="Run the background job worker in this process (default: WORKER_ENABLED)",
    )
    args = parser.parse_args()

    # The reloader parent process must not run a second worker.
    reloader_parent = args.debug and os.environ.get("WERKZEUG_RUN_MAIN") != "true"
    app = create_app(start_worker=False if reloader_parent else args.worker)

    if not reloader_parent:
        print(f"Server running: API on http://{args.host}:{args.port}", flush=True)

    app.run(host=args.host, port=args.port, debug=args.debug)


if __name__ == "__main__":  # pragma: no cover
    main()
