"""
Conversion service.

Drives one request from validation to PDF bytes. Engine-side failures trigger
a best-effort engine restart before they are reported, since a crashed or
wedged browser otherwise keeps failing every later request. A failed request
is never retried here; the caller retries.
"""

import logging
import time
from dataclasses import dataclass
from typing import Optional

from pydantic import AnyHttpUrl, TypeAdapter, ValidationError

from .engine import EngineHandle, PageOptions, WaitPolicy
from .errors import ConversionError, InvalidRequest, RenderFailed
from .models import ConversionRequest, SourceKind
from .session import open_session
from .supervisor import EngineSupervisor

logger = logging.getLogger(__name__)

_http_url = TypeAdapter(AnyHttpUrl)


@dataclass
class ConversionResult:
    """Outcome of a conversion: PDF bytes or a tagged error, never both."""

    pdf_bytes: Optional[bytes] = None
    error: Optional[ConversionError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, pdf_bytes: bytes) -> "ConversionResult":
        return cls(pdf_bytes=pdf_bytes)

    @classmethod
    def failure(cls, error: ConversionError) -> "ConversionResult":
        return cls(error=error)


def validate_request(request: ConversionRequest) -> None:
    """
    Check the request's shape before anything touches the engine.

    Raises:
        InvalidRequest: neither or both sources given, or a malformed URL
    """
    if not request.url and not request.html:
        raise InvalidRequest(error="Either url or html parameter is required")
    if request.url and request.html:
        raise InvalidRequest(error="Provide either url or html, not both")
    if request.url:
        try:
            _http_url.validate_python(request.url)
        except ValidationError as e:
            raise InvalidRequest(
                error="Invalid URL format",
                details=e.errors()[0]["msg"],
            ) from e


class ConversionService:
    """Renders ConversionRequests to PDF against the supervised engine."""

    def __init__(
        self,
        supervisor: EngineSupervisor,
        wait_policy: Optional[WaitPolicy] = None,
        page_options: Optional[PageOptions] = None,
        render_timeout_seconds: Optional[float] = None,
    ) -> None:
        self._supervisor = supervisor
        self._wait_policy = wait_policy or WaitPolicy()
        self._page_options = page_options or PageOptions()
        self._render_timeout_seconds = render_timeout_seconds

    async def convert(self, request: ConversionRequest, request_id: Optional[str] = None) -> ConversionResult:
        """Render ``request`` to PDF. Failures come back as tagged results."""
        try:
            validate_request(request)
        except InvalidRequest as e:
            logger.info(f"[{request_id}] Rejected request: {e}")
            return ConversionResult.failure(e)

        started = time.monotonic()
        kind = request.source_kind.value
        stage = "engine"
        handle: Optional[EngineHandle] = None
        try:
            handle = await self._supervisor.ensure_engine()
            stage = "open"
            async with open_session(handle, request_id) as session:
                stage = "render"
                logger.info(f"[{request_id}] Render started (source={kind})")
                pdf_bytes = await session.render(
                    request,
                    self._wait_policy,
                    self._page_options,
                    timeout_seconds=self._render_timeout_seconds,
                )
        except ConversionError as e:
            logger.error(
                f"[{request_id}] Render failed stage={stage} duration_ms={_elapsed_ms(started)}: {e}"
            )
            error = e
        except Exception as e:
            logger.exception(f"[{request_id}] Unexpected render error stage={stage}: {e}")
            error = RenderFailed(str(e) or e.__class__.__name__)
        else:
            logger.info(
                f"[{request_id}] Render succeeded source={kind} bytes={len(pdf_bytes)} "
                f"duration_ms={_elapsed_ms(started)}"
            )
            return ConversionResult.success(pdf_bytes)

        # EngineUnavailable does not restart: the failed launch was the recovery.
        if error.restarts_engine:
            await self._recover(handle, request_id)
        return ConversionResult.failure(error)

    async def _recover(self, handle: Optional[EngineHandle], request_id: Optional[str]) -> None:
        try:
            await self._supervisor.restart_engine(failed_handle=handle)
        except Exception as e:
            logger.error(f"[{request_id}] Engine restart after failure did not succeed: {e}")


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


__all__ = [
    "ConversionRequest",
    "ConversionResult",
    "ConversionService",
    "SourceKind",
    "validate_request",
]
