"""
ASGI middleware for the render service.

Pure ASGI classes, so they compose with CORSMiddleware and never touch the
response objects built by the route handlers.
"""

import json
import logging
import time
import uuid
from typing import List, Optional

from starlette.types import ASGIApp, Message, Receive, Scope, Send

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = b"x-request-id"


def new_request_id() -> str:
    return uuid.uuid4().hex[:12]


class RequestLoggingMiddleware:
    """
    Log the start and end of every HTTP request with its correlation id.

    The id comes from the ``X-Request-ID`` header when the caller sends one.
    It is exposed to handlers as ``request.state.request_id`` and echoed back
    in the response headers.
    """

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request_id = None
        for name, value in scope.get("headers", []):
            if name == REQUEST_ID_HEADER:
                request_id = value.decode("latin-1").strip()[:64] or None
                break
        request_id = request_id or new_request_id()
        scope.setdefault("state", {})["request_id"] = request_id

        method = scope.get("method")
        path = scope.get("path")
        client = scope.get("client")
        client_host = client[0] if client else "-"
        started = time.monotonic()
        status_code = 500

        logger.info(f"[{request_id}] Request started: {method} {path} client={client_host}")

        async def send_with_request_id(message: Message) -> None:
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = message["status"]
                headers = list(message.get("headers", []))
                headers.append((REQUEST_ID_HEADER, request_id.encode("latin-1")))
                message = {**message, "headers": headers}
            await send(message)

        try:
            await self.app(scope, receive, send_with_request_id)
        finally:
            duration_ms = int((time.monotonic() - started) * 1000)
            logger.info(
                f"[{request_id}] Request completed: {method} {path} "
                f"status={status_code} duration_ms={duration_ms}"
            )


class SecurityHeadersMiddleware:
    """Add security headers to all responses (pure ASGI, compatible with CORSMiddleware)."""

    _HEADERS = [
        (b"x-content-type-options", b"nosniff"),
        (b"x-frame-options", b"DENY"),
        (b"x-dns-prefetch-control", b"off"),
        (b"strict-transport-security", b"max-age=31536000; includeSubDomains"),
        (b"referrer-policy", b"no-referrer"),
        (b"cross-origin-opener-policy", b"same-origin"),
    ]

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        async def send_with_headers(message: Message) -> None:
            if message["type"] == "http.response.start":
                headers = list(message.get("headers", [])) + self._HEADERS
                message = {**message, "headers": headers}
            await send(message)

        await self.app(scope, receive, send_with_headers)


class BodySizeLimitMiddleware:
    """
    Reject requests whose body exceeds ``max_body_bytes`` with a 413.

    A declared Content-Length is checked up front. Bodies without one
    (chunked uploads) are read and counted before the app sees them, then
    replayed to it.
    """

    def __init__(self, app: ASGIApp, max_body_bytes: int) -> None:
        self.app = app
        self.max_body_bytes = max_body_bytes

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        declared = self._declared_length(scope)
        if declared is not None:
            if declared > self.max_body_bytes:
                await self._reject(send)
                return
            await self.app(scope, receive, send)
            return

        messages: List[Message] = []
        received = 0
        more_body = True
        while more_body:
            message = await receive()
            messages.append(message)
            if message["type"] != "http.request":
                break
            received += len(message.get("body", b""))
            if received > self.max_body_bytes:
                await self._reject(send)
                return
            more_body = message.get("more_body", False)

        async def replay() -> Message:
            if messages:
                return messages.pop(0)
            return await receive()

        await self.app(scope, replay, send)

    @staticmethod
    def _declared_length(scope: Scope) -> Optional[int]:
        for name, value in scope.get("headers", []):
            if name == b"content-length":
                try:
                    return int(value)
                except ValueError:
                    return None
        return None

    async def _reject(self, send: Send) -> None:
        body = json.dumps({
            "error": "Request body too large",
            "details": f"Limit is {self.max_body_bytes} bytes",
        }).encode("utf-8")
        await send({
            "type": "http.response.start",
            "status": 413,
            "headers": [
                (b"content-type", b"application/json"),
                (b"content-length", str(len(body)).encode("latin-1")),
            ],
        })
        await send({"type": "http.response.body", "body": body})
