"""
HTTP surface — maps requests onto the router.

    POST /secrets/   -> {"response": <encrypted catalog>}
    POST /secret/    -> {"response": <armored secret>} | 400 {"error": ...}

Every other method on those routes gets 405 with ``Allow: POST``; a
Content-Type other than application/json gets 415. One thread per
request; all heavy work already happened when the snapshot was built.
"""

from __future__ import annotations

import logging
import re
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Callable, Optional
from urllib.parse import urlsplit

from . import __version__
from .errors import RequestError, RequestValidationError
from .router import RequestRouter
from .snapshot import error_body

logger = logging.getLogger("passbridge.server")

JSON_MEDIA_TYPE = "application/json"
_TOKEN = re.compile(r"^[!#$%&'*+.^_`|~0-9a-zA-Z-]+$")


def media_type(content_type: Optional[str]) -> Optional[str]:
    """Bare, lower-cased media type of a Content-Type header value.

    Returns None for anything malformed, including parameters without
    a value (``application/json; charset``). A trailing ``;`` is allowed.
    """
    if not content_type:
        return None
    value, *params = content_type.split(";")
    kind, sep, subtype = value.strip().lower().partition("/")
    if not sep or not _TOKEN.match(kind) or not _TOKEN.match(subtype):
        return None
    for i, param in enumerate(params):
        param = param.strip()
        if not param:
            if i == len(params) - 1:
                continue
            return None
        key, sep, val = param.partition("=")
        if not sep or not _TOKEN.match(key.strip()) or not val.strip():
            return None
    return f"{kind}/{subtype}"


class BridgeHTTPServer(ThreadingHTTPServer):
    """Threading HTTP server carrying the router and request limits."""

    daemon_threads = True

    def __init__(
        self,
        address: tuple[str, int],
        router: RequestRouter,
        max_body_bytes: int = 1024 * 1024,
    ):
        self.router = router
        self.max_body_bytes = max_body_bytes
        super().__init__(address, BridgeRequestHandler)


class BridgeRequestHandler(BaseHTTPRequestHandler):
    """Request handler for the two bridge routes."""

    server: BridgeHTTPServer
    server_version = f"passbridge/{__version__}"

    def _routes(self) -> dict[str, Callable[[bytes], str]]:
        router = self.server.router
        return {
            "/secrets/": router.fetch_catalog,
            "/secret/": router.fetch_secret,
        }

    def do_POST(self):
        self._dispatch()

    def __getattr__(self, name: str):
        # Any method name dispatches; non-POST is answered there.
        if name.startswith("do_"):
            return self._dispatch
        raise AttributeError(name)

    def _dispatch(self) -> None:
        path = urlsplit(self.path).path
        routes = self._routes()
        handler = next(
            (fn for prefix, fn in routes.items() if path.startswith(prefix)), None
        )
        if handler is None:
            if path + "/" in routes:
                self._redirect(path + "/")
            else:
                self._send_error(HTTPStatus.NOT_FOUND, "not found")
            return

        if self.command != "POST":
            self._send_error(
                HTTPStatus.METHOD_NOT_ALLOWED,
                "method not allowed",
                extra_headers={"Allow": "POST"},
            )
            return

        if media_type(self.headers.get("Content-Type")) != JSON_MEDIA_TYPE:
            self._send_error(HTTPStatus.UNSUPPORTED_MEDIA_TYPE, "unsupported media type")
            return

        try:
            body = self._read_body()
            payload = handler(body)
        except RequestError as exc:
            self._send_error(exc.status, exc.message)
        except Exception:
            logger.exception("Unhandled error serving %s", path)
            self._send_error(HTTPStatus.INTERNAL_SERVER_ERROR, "internal error")
        else:
            self._send(HTTPStatus.OK, payload)

    def _read_body(self) -> bytes:
        raw_length = self.headers.get("Content-Length")
        if raw_length is None:
            return b""
        try:
            length = int(raw_length)
        except ValueError as exc:
            raise RequestValidationError("invalid Content-Length") from exc
        if length < 0:
            raise RequestValidationError("invalid Content-Length")
        if length > self.server.max_body_bytes:
            raise RequestError("request body too large", HTTPStatus.REQUEST_ENTITY_TOO_LARGE)
        return self.rfile.read(length)

    def _redirect(self, location: str) -> None:
        self.send_response(HTTPStatus.MOVED_PERMANENTLY)
        self.send_header("Location", location)
        self.send_header("Content-Length", "0")
        self.end_headers()

    def _send_error(
        self,
        status: int,
        message: str,
        extra_headers: Optional[dict[str, str]] = None,
    ) -> None:
        self._send(status, error_body(message), extra_headers)

    def _send(
        self,
        status: int,
        body: str,
        extra_headers: Optional[dict[str, str]] = None,
    ) -> None:
        data = body.encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", JSON_MEDIA_TYPE)
        self.send_header("Content-Length", str(len(data)))
        for name, value in (extra_headers or {}).items():
            self.send_header(name, value)
        self.end_headers()
        if self.command != "HEAD":
            self.wfile.write(data)

    def log_message(self, format, *args):
        logger.debug("API: %s", format % args)


def make_server(
    router: RequestRouter,
    host: str = "127.0.0.1",
    port: int = 7277,
    max_body_bytes: int = 1024 * 1024,
) -> BridgeHTTPServer:
    """Bind a BridgeHTTPServer; port 0 picks a free port."""
    return BridgeHTTPServer((host, port), router, max_body_bytes)
