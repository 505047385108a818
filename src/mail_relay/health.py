"""
Health check endpoint exposing scheduler status and cycle tallies.
"""

from __future__ import annotations
import json
from http.server import BaseHTTPRequestHandler, HTTPServer
from threading import Thread
from typing import Callable, Optional

from mail_relay.logging import logger


class HealthCheckHandler(BaseHTTPRequestHandler):
    """HTTP handler for health check endpoint."""

    health_func: Optional[Callable[[], dict]] = None

    def do_GET(self) -> None:
        if self.path in ("/health", "/health/"):
            self._handle_health()
        elif self.path in ("/", "/status"):
            self._send_response(200, {"service": "mail-relay", "status": "running"})
        else:
            self._send_response(404, {"error": "Not found"})

    def _handle_health(self) -> None:
        health_func = type(self).health_func
        if health_func is None:
            self._send_response(503, {"status": "unavailable", "message": "Health check not configured"})
            return
        try:
            health_data = health_func()
        except Exception as e:
            logger.error(f"Health check failed: {e}")
            self._send_response(500, {"status": "error", "error": str(e)})
            return
        status_code = 200 if health_data.get("status") == "healthy" else 503
        self._send_response(status_code, health_data)

    def _send_response(self, status_code: int, data: dict) -> None:
        """Send JSON response."""
        try:
            self.send_response(status_code)
            self.send_header("Content-Type", "application/json")
            self.end_headers()
            self.wfile.write(json.dumps(data, indent=2, default=str).encode("utf-8"))
        except BrokenPipeError:
            # Client closed connection before response was sent - this is normal
            pass

    def log_message(self, format: str, *args) -> None:
        """Override to use our logger instead of default."""
        logger.debug(f"HTTP {format % args}")


class HealthCheckServer:
    """
    Simple HTTP server for health checks.

    Provides endpoints:
    - GET /health - Scheduler status and statistics
    - GET /status - Simple liveness check
    """

    def __init__(
        self,
        port: int = 8080,
        health_func: Optional[Callable[[], dict]] = None,
        host: str = "0.0.0.0",
    ) -> None:
        self.port = port
        self.host = host
        self.server: Optional[HTTPServer] = None
        self.thread: Optional[Thread] = None
        HealthCheckHandler.health_func = health_func

    def set_health_func(self, health_func: Callable[[], dict]) -> None:
        HealthCheckHandler.health_func = health_func

    def start(self) -> None:
        """Start health check server in background thread."""
        if self.server:
            logger.warning("Health check server is already running")
            return

        self.server = HTTPServer((self.host, self.port), HealthCheckHandler)
        self.thread = Thread(target=self.server.serve_forever, daemon=True)
        self.thread.start()
        logger.info(f"Health check server started on port {self.server.server_port}")

    def stop(self) -> None:
        """Stop health check server."""
        if self.server:
            self.server.shutdown()
            self.server.server_close()
            self.server = None
            logger.info("Health check server stopped")
