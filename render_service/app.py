"""
Render Service - FastAPI application for PDF generation.

Renders a URL or an HTML document to PDF with one long-lived headless
Chromium. The engine is launched at startup (or lazily on the first request),
restarted after any rendering failure and shut down with the process.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from . import __version__
from .config import RenderSettings, get_settings, validate_config_on_startup
from .conversion import ConversionService
from .engine import Engine, PlaywrightEngine
from .errors import EngineUnavailable
from .lifecycle import ProcessLifecycleHooks
from .middleware import BodySizeLimitMiddleware, RequestLoggingMiddleware, SecurityHeadersMiddleware
from .models import ErrorResponse, GeneratePDFRequest, HealthResponse
from .supervisor import EngineSupervisor

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S"
)
logger = logging.getLogger(__name__)


def _error_response(status_code: int, error: str, details: Optional[str] = None) -> JSONResponse:
    body = ErrorResponse(error=error, details=details)
    return JSONResponse(status_code=status_code, content=body.model_dump(exclude_none=True))


def create_app(settings: Optional[RenderSettings] = None, engine: Optional[Engine] = None) -> FastAPI:
    """
    Build the application around one engine supervisor.

    Args:
        settings: configuration; defaults to the environment
        engine: rendering engine; defaults to Playwright/Chromium

    Returns:
        FastAPI app with the supervisor, conversion service and lifecycle
        hooks on ``app.state``
    """
    settings = validate_config_on_startup(settings)
    logging.getLogger().setLevel(settings.log_level)

    supervisor = EngineSupervisor(engine or PlaywrightEngine(), settings.launch_config())
    service = ConversionService(
        supervisor,
        wait_policy=settings.wait_policy(),
        render_timeout_seconds=settings.render_timeout_seconds,
    )
    hooks = ProcessLifecycleHooks(supervisor)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Render service starting")
        hooks.install()
        if settings.engine_launch_on_startup:
            try:
                await supervisor.ensure_engine()
            except EngineUnavailable as e:
                # Not fatal: the next request launches the engine again.
                logger.error(f"Engine failed to launch on startup: {e}")
        try:
            yield
        finally:
            logger.info("Render service stopping")
            await hooks.shutdown()
            hooks.uninstall()

    app = FastAPI(
        title="Render Service",
        version=__version__,
        description="Renders URLs and HTML documents to PDF using Playwright/Chromium",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.supervisor = supervisor
    app.state.conversion_service = service
    app.state.lifecycle = hooks

    limiter = Limiter(key_func=get_remote_address, enabled=settings.rate_limit_enabled)
    app.state.limiter = limiter

    @app.exception_handler(RateLimitExceeded)
    async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
        return _error_response(429, "Too many requests from this IP, please try again later.")

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        details = errors[0].get("msg") if errors else None
        return _error_response(400, "Invalid request body", details)

    # Added last runs first: request logging wraps everything else.
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["Content-Disposition", "X-Request-ID"],
    )
    app.add_middleware(BodySizeLimitMiddleware, max_body_bytes=settings.max_body_bytes)
    app.add_middleware(RequestLoggingMiddleware)

    # ============================================================================
    # Health Check Endpoint
    # ============================================================================

    @app.get("/health", response_model=HealthResponse)
    async def health_check():
        """
        Health check endpoint for container orchestration.

        Reports whether Chromium is running. An absent engine is reported as
        DEGRADED rather than failing, since the next request relaunches it.
        Returns HTTP 503 once the service is shutting down.
        """
        engine_status = supervisor.status()
        health = HealthResponse(
            status="OK" if engine_status["ready"] else "DEGRADED",
            timestamp=datetime.now(timezone.utc),
            browser="connected" if engine_status["ready"] else "disconnected",
            accepting=hooks.accepting,
            engine=engine_status,
        )
        if not hooks.accepting:
            health.status = "SHUTTING_DOWN"
            return JSONResponse(status_code=503, content=health.model_dump(mode="json"))
        return health

    # ============================================================================
    # PDF Generation Endpoint
    # ============================================================================

    @app.post(
        "/api/generate-pdf",
        response_class=Response,
        responses={
            200: {"content": {"application/pdf": {}}, "description": "The rendered PDF"},
            400: {"model": ErrorResponse, "description": "Invalid request"},
            413: {"model": ErrorResponse, "description": "Request body too large"},
            429: {"model": ErrorResponse, "description": "Rate limit exceeded"},
            500: {"model": ErrorResponse, "description": "Rendering failed"},
            503: {"model": ErrorResponse, "description": "Engine unavailable or shutting down"},
        },
    )
    @limiter.limit(settings.rate_limit)
    async def generate_pdf(request: Request, body: GeneratePDFRequest):
        """
        Render a URL or an HTML document to PDF.

        Returns:
            The PDF as an attachment

        Errors come back as ``{"error": ..., "details": ...}``: 400 for
        invalid input, 500 for rendering failures, 503 when the engine cannot
        be launched or the service is shutting down.
        """
        request_id = getattr(request.state, "request_id", None)
        if not hooks.accepting:
            logger.warning(f"[{request_id}] Rejecting conversion during shutdown")
            return _error_response(503, "Service is shutting down")

        result = await service.convert(body.to_conversion_request(), request_id=request_id)
        if not result.ok:
            return _error_response(result.error.status_code, **result.error.to_payload())

        return Response(
            content=result.pdf_bytes,
            media_type="application/pdf",
            headers={"Content-Disposition": 'attachment; filename="document.pdf"'},
        )

    return app


app = create_app()


def main() -> None:
    """Run the service with uvicorn."""
    settings = app.state.settings
    logger.info(f"PDF API: POST http://{settings.host}:{settings.port}/api/generate-pdf")
    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    main()
