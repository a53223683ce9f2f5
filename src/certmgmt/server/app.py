"""HTTP server for certmgmt using stdlib http.server.

Routes:
    GET    /health                   — health check
    GET    /certificates             — list committed certificates
    POST   /certificates/revoke      — revoke certificates by id
    GET    /ca-bundle                — current CA bundle
    POST   /ca-bundle                — replace the CA bundle
    POST   /can-generate-csr         — ask whether the target can generate a CSR
    POST   /sessions                 — open an install/rotate session
    POST   /sessions/{id}/steps      — send one step on a session
    DELETE /sessions/{id}            — cancel a session (rolls back)

Usage:
    python -m certmgmt.server.app --port 8080
    python -m certmgmt.server.app --config certmgmt.json
"""
from __future__ import annotations

import argparse
import json
import logging
import re
import urllib.parse
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path

from certmgmt.config import load_config
from certmgmt.server import routes

logger = logging.getLogger(__name__)

_SESSION_STEP_PATTERN = re.compile(r"^/sessions/([0-9a-f]+)/steps$")
_SESSION_PATTERN = re.compile(r"^/sessions/([0-9a-f]+)$")


class CertManagementHandler(BaseHTTPRequestHandler):
    """HTTP request handler for the certmgmt server.

    All request bodies and responses use JSON.
    """

    def log_message(self, format: str, *args: object) -> None:
        """Override to route access logs through the Python logging system."""
        logger.debug(format, *args)

    # ── GET ───────────────────────────────────────────────────────────────────

    def do_GET(self) -> None:
        path = urllib.parse.urlparse(self.path).path.rstrip("/")

        if path == "/health":
            self._send_json(*routes.handle_health())
        elif path == "/certificates":
            self._send_json(*routes.handle_get_certificates())
        elif path == "/ca-bundle":
            self._send_json(*routes.handle_get_ca_bundle())
        else:
            self._not_found("GET", path)

    # ── POST ──────────────────────────────────────────────────────────────────

    def do_POST(self) -> None:
        path = urllib.parse.urlparse(self.path).path.rstrip("/")

        body = self._read_json_body()
        if body is None:
            return

        if path == "/sessions":
            self._send_json(*routes.handle_start_session(body))
        elif path == "/certificates/revoke":
            self._send_json(*routes.handle_revoke_certificates(body))
        elif path == "/ca-bundle":
            self._send_json(*routes.handle_load_ca_bundle(body))
        elif path == "/can-generate-csr":
            self._send_json(*routes.handle_can_generate_csr(body))
        else:
            match = _SESSION_STEP_PATTERN.match(path)
            if match:
                self._send_json(*routes.handle_session_step(match.group(1), body))
            else:
                self._not_found("POST", path)

    # ── DELETE ────────────────────────────────────────────────────────────────

    def do_DELETE(self) -> None:
        path = urllib.parse.urlparse(self.path).path.rstrip("/")
        match = _SESSION_PATTERN.match(path)
        if match:
            self._send_json(*routes.handle_cancel_session(match.group(1)))
        else:
            self._not_found("DELETE", path)

    # ── Helpers ───────────────────────────────────────────────────────────────

    def _not_found(self, method: str, path: str) -> None:
        self._send_json(404, {"error": "Not found", "detail": f"No route for {method} {path}"})

    def _send_json(self, status: int, data: dict[str, object]) -> None:
        """Serialize *data* to JSON and send an HTTP response with *status*."""
        body = json.dumps(data, default=str).encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "application/json; charset=utf-8")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def _read_json_body(self) -> dict[str, object] | None:
        """Read and parse the JSON request body.

        Returns None (and sends a 400 error response) if parsing fails.
        """
        content_length = int(self.headers.get("Content-Length", 0))
        if content_length == 0:
            return {}

        raw = self.rfile.read(content_length)
        try:
            parsed = json.loads(raw.decode("utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            self._send_json(400, {"error": "Invalid JSON", "detail": str(exc)})
            return None
        if not isinstance(parsed, dict):
            self._send_json(400, {"error": "Invalid JSON", "detail": "Body must be an object"})
            return None
        return parsed


def create_server(host: str = "127.0.0.1", port: int = 8080) -> ThreadingHTTPServer:
    """Create (but do not start) the certmgmt HTTP server.

    Each request is served on its own thread so sessions for different
    identities proceed in parallel.
    """
    server = ThreadingHTTPServer((host, port), CertManagementHandler)
    logger.info("certmgmt server created at http://%s:%d", host, port)
    return server


def run_server(host: str = "127.0.0.1", port: int = 8080) -> None:
    """Create and run the certmgmt HTTP server (blocking)."""
    server = create_server(host=host, port=port)
    logger.info("Serving certmgmt on http://%s:%d (Ctrl-C to stop)", host, port)
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        logger.info("Shutting down certmgmt server.")
    finally:
        server.server_close()


def _build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="certmgmt HTTP server",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument("--host", default="127.0.0.1", help="Bind address")
    parser.add_argument("--port", type=int, default=8080, help="TCP port")
    parser.add_argument("--config", type=Path, default=None, help="JSON config file")
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level",
    )
    return parser


if __name__ == "__main__":
    args = _build_arg_parser().parse_args()
    logging.basicConfig(level=getattr(logging, args.log_level))
    routes.configure(load_config(args.config))
    run_server(host=args.host, port=args.port)
