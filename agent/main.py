#!/usr/bin/env python3
"""
PostCare Main Entry Point

Usage:
    python main.py api          # FastAPI app (schedules, previews, call logs, webhook)
    python main.py worker       # RQ worker for dispatch, reminder and summary jobs
    python main.py scheduler    # In-process ticker (dispatch + reminder sweeps)
    python main.py cron         # rq-scheduler recurring jobs
    python main.py both         # Worker + ticker
"""
import sys
import os
import json
import time
import logging
import threading
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Optional

from dotenv import load_dotenv

from config.redis import get_redis_url, test_redis_connection


logger = logging.getLogger("postop-main")

MODES = ["api", "worker", "scheduler", "cron", "both"]


class SimpleHealthHandler(BaseHTTPRequestHandler):
    """/health for background modes; 503 once Redis stops answering."""

    def do_GET(self):  # noqa: N802 (http.server API)
        if self.path != "/health":
            self.send_response(404)
            self.end_headers()
            return

        redis_ok = test_redis_connection()
        body = json.dumps({
            "status": "healthy" if redis_ok else "degraded",
            "mode": getattr(self.server, "mode", "background"),
            "redis": redis_ok,
            "timestamp": int(time.time()),
        }).encode()
        self.send_response(200 if redis_ok else 503)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, format, *args):  # noqa: A003 (shadow builtins)
        logger.debug(format % args)


class BackgroundHTTPServer:
    """Health endpoint served from a daemon thread next to the worker."""

    def __init__(self, mode: str, port: int = 8081):
        self.mode = mode
        self._port = port
        self._server: Optional[HTTPServer] = None
        self._thread: Optional[threading.Thread] = None

    def start(self):
        if self._thread is not None:
            return

        self._server = HTTPServer(("0.0.0.0", self._port), SimpleHealthHandler)
        self._server.mode = self.mode
        self._thread = threading.Thread(target=self._server.serve_forever, daemon=True)
        self._thread.start()
        logger.info(f"{self.mode} health endpoint on port {self._port}")

    def stop(self):
        if self._server:
            self._server.shutdown()
            self._server.server_close()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=1.0)
        self._thread = None


def _run_api():
    import uvicorn

    uvicorn.run(
        "api.main:app",
        host=os.getenv("API_HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
        log_level=os.getenv("LOG_LEVEL", "INFO").lower(),
    )


def _run_background(mode: str):
    """Hand off to the scheduling worker CLI with the same mode token."""
    from scheduling.worker import main as worker_main

    original_argv = sys.argv.copy()
    try:
        sys.argv = [sys.argv[0], mode, "--log-level", os.getenv("LOG_LEVEL", "INFO").upper()]
        worker_main()
    finally:
        sys.argv = original_argv


def main():
    """Main entry point router with embedded health endpoint for background modes."""
    load_dotenv()
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    if len(sys.argv) < 2 or sys.argv[1].lower() not in MODES:
        print("Usage: python main.py <mode>")
        print(f"Modes: {', '.join(MODES)}")
        sys.exit(1)

    mode = sys.argv[1].lower()

    if mode == "api":
        _run_api()
        return

    if not test_redis_connection():
        logger.error(f"Redis is not reachable at {get_redis_url()}; {mode} mode needs it")
        sys.exit(1)

    health_server = BackgroundHTTPServer(mode, port=int(os.getenv("HEALTH_PORT", "8081")))
    try:
        health_server.start()
    except OSError as exc:
        logger.error(f"Failed to start health endpoint: {exc}")

    try:
        _run_background(mode)
    finally:
        health_server.stop()


if __name__ == "__main__":
    main()
