"""Response normalization for the JSON API.

Every response leaves as ``application/json`` with the CORS headers the
frontend expects. Pre-flight requests are answered without reaching the
router, and plain-text bodies produced below the app (framework defaults,
proxies in tests) are wrapped as ``{"message": ..., "status": ...}``. An
exception that escapes the app before its response starts is logged and
rendered here as the opaque 500, so it carries the same headers.
"""

from __future__ import annotations

import json
from typing import List

from starlette.datastructures import MutableHeaders
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from lessonhub.api.error_handling import server_error_response
from lessonhub.logging import get_correlation_id, get_logger

logger = get_logger(__name__)

ALLOWED_METHODS = "GET, POST, PUT, DELETE, OPTIONS"
ALLOWED_HEADERS = "Content-Type, Authorization"


def _is_json(body: bytes) -> bool:
    try:
        json.loads(body)
    except ValueError:
        return False
    return True


def wrap_non_json(body: bytes, status_code: int) -> bytes:
    """Return ``body`` unchanged if it is empty or JSON, else the wrapped envelope."""
    if not body or _is_json(body):
        return body
    text = body.decode("utf-8", errors="replace")
    return json.dumps({"message": text, "status": status_code}).encode("utf-8")


class JsonEnvelopeMiddleware:
    """Raw ASGI middleware; buffers the response so the body can be rewritten."""

    def __init__(self, app: ASGIApp, *, allow_origin: str = "*") -> None:
        self.app = app
        self.allow_origin = allow_origin

    def _apply_headers(self, headers: MutableHeaders) -> None:
        headers["content-type"] = "application/json"
        headers["access-control-allow-origin"] = self.allow_origin
        headers["access-control-allow-methods"] = ALLOWED_METHODS
        headers["access-control-allow-headers"] = ALLOWED_HEADERS
        headers["access-control-allow-credentials"] = "true"

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope.get("type") != "http":
            await self.app(scope, receive, send)
            return

        if scope.get("method", "").upper() == "OPTIONS":
            headers = MutableHeaders(raw=[])
            self._apply_headers(headers)
            headers["content-length"] = "0"
            await send({"type": "http.response.start", "status": 200, "headers": headers.raw})
            await send({"type": "http.response.body", "body": b""})
            return

        start: dict = {}
        chunks: List[bytes] = []
        flushed = False

        async def buffered_send(message: Message) -> None:
            nonlocal flushed
            if message["type"] == "http.response.start":
                start.update(message)
                return
            if message["type"] == "http.response.body":
                chunks.append(message.get("body", b""))
                if message.get("more_body", False):
                    return
                flushed = True
                await self._flush(start, b"".join(chunks), send)
                return
            await send(message)

        try:
            await self.app(scope, receive, buffered_send)
        except Exception as exc:
            if flushed:
                raise
            logger.exception(
                "unhandled_exception",
                exc_info=exc,
                path=scope.get("path"),
                method=scope.get("method"),
                error_type=type(exc).__name__,
                error=str(exc),
            )
            start.clear()
            chunks.clear()
            await server_error_response()(scope, receive, buffered_send)

    async def _flush(self, start: dict, body: bytes, send: Send) -> None:
        status_code = start.get("status", 200)
        body = wrap_non_json(body, status_code)
        headers = MutableHeaders(raw=list(start.get("headers", [])))
        self._apply_headers(headers)
        correlation_id = get_correlation_id()
        if correlation_id and "x-request-id" not in headers:
            headers["x-request-id"] = correlation_id
        headers["content-length"] = str(len(body))
        await send({"type": "http.response.start", "status": status_code, "headers": headers.raw})
        await send({"type": "http.response.body", "body": body})
