"""
Unit tests for the ASGI middleware.

Each middleware is mounted on a tiny FastAPI app of its own.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.testclient import TestClient

from render_service.middleware import (
    BodySizeLimitMiddleware,
    RequestLoggingMiddleware,
    SecurityHeadersMiddleware,
)


def make_client(middleware, **options) -> TestClient:
    app = FastAPI()

    @app.get("/ping")
    async def ping(request: Request):
        return {"request_id": getattr(request.state, "request_id", None)}

    @app.post("/echo")
    async def echo(request: Request):
        body = await request.body()
        return {"size": len(body)}

    app.add_middleware(middleware, **options)
    return TestClient(app)


class TestRequestLoggingMiddleware:
    """Tests for RequestLoggingMiddleware."""

    def test_generates_request_id(self):
        client = make_client(RequestLoggingMiddleware)

        response = client.get("/ping")

        request_id = response.headers["x-request-id"]
        assert request_id
        assert response.json()["request_id"] == request_id

    def test_keeps_caller_request_id(self):
        client = make_client(RequestLoggingMiddleware)

        response = client.get("/ping", headers={"X-Request-ID": "trace-42"})

        assert response.headers["x-request-id"] == "trace-42"
        assert response.json()["request_id"] == "trace-42"

    def test_logs_start_and_completion(self, caplog):
        client = make_client(RequestLoggingMiddleware)

        with caplog.at_level(logging.INFO, logger="render_service.middleware"):
            client.get("/ping", headers={"X-Request-ID": "trace-7"})

        messages = [r.getMessage() for r in caplog.records]
        assert any("[trace-7] Request started: GET /ping" in m for m in messages)
        assert any("[trace-7] Request completed: GET /ping status=200" in m for m in messages)


class TestSecurityHeadersMiddleware:
    """Tests for SecurityHeadersMiddleware."""

    def test_headers_added(self):
        client = make_client(SecurityHeadersMiddleware)

        response = client.get("/ping")

        assert response.headers["x-content-type-options"] == "nosniff"
        assert response.headers["x-frame-options"] == "DENY"
        assert "max-age" in response.headers["strict-transport-security"]


class TestBodySizeLimitMiddleware:
    """Tests for BodySizeLimitMiddleware."""

    def test_small_body_passes(self):
        client = make_client(BodySizeLimitMiddleware, max_body_bytes=1024)

        response = client.post("/echo", content=b"x" * 100)

        assert response.status_code == 200
        assert response.json() == {"size": 100}

    def test_large_body_rejected(self):
        client = make_client(BodySizeLimitMiddleware, max_body_bytes=1024)

        response = client.post("/echo", content=b"x" * 2048)

        assert response.status_code == 413
        assert response.json()["error"] == "Request body too large"

    def test_chunked_body_counted(self):
        client = make_client(BodySizeLimitMiddleware, max_body_bytes=1024)

        def chunks():
            for _ in range(8):
                yield b"x" * 1024

        response = client.post("/echo", content=chunks())

        assert response.status_code == 413
        assert response.json()["error"] == "Request body too large"

    def test_small_chunked_body_replayed(self):
        client = make_client(BodySizeLimitMiddleware, max_body_bytes=1024)

        def chunks():
            yield b"x" * 300
            yield b"y" * 300

        response = client.post("/echo", content=chunks())

        assert response.status_code == 200
        assert response.json() == {"size": 600}
