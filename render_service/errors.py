"""
Error taxonomy for PDF conversion.

Every failure a conversion can end in is one of the classes below. The
class decides the HTTP status and whether the engine is restarted before the
error is reported, so callers branch on type instead of message text.
"""

from enum import Enum
from typing import Dict, Optional


class ErrorKind(str, Enum):
    """Tag carried by every conversion failure."""

    INVALID_REQUEST = "invalid_request"
    ENGINE_UNAVAILABLE = "engine_unavailable"
    SESSION_OPEN_FAILED = "session_open_failed"
    RENDER_FAILED = "render_failed"


class ConversionError(Exception):
    """Base class for conversion failures."""

    kind: ErrorKind = ErrorKind.RENDER_FAILED
    status_code: int = 500
    error: str = "Failed to generate PDF"
    restarts_engine: bool = False

    def __init__(self, details: Optional[str] = None, error: Optional[str] = None) -> None:
        self.details = details
        if error is not None:
            self.error = error
        super().__init__(f"{self.error}: {details}" if details else self.error)

    def to_payload(self) -> Dict[str, str]:
        """Body of the JSON error response."""
        payload = {"error": self.error}
        if self.details:
            payload["details"] = self.details
        return payload


class InvalidRequest(ConversionError):
    """Malformed or contradictory input. Rejected before the engine is touched."""

    kind = ErrorKind.INVALID_REQUEST
    status_code = 400
    error = "Invalid request"


class EngineUnavailable(ConversionError):
    """The rendering engine could not be launched."""

    kind = ErrorKind.ENGINE_UNAVAILABLE
    status_code = 503
    error = "Rendering engine unavailable"


class SessionOpenFailed(ConversionError):
    """The engine was believed ready but no page could be opened on it."""

    kind = ErrorKind.SESSION_OPEN_FAILED
    status_code = 500
    restarts_engine = True


class RenderFailed(ConversionError):
    """Navigation, content loading or PDF rasterization failed (timeouts included)."""

    kind = ErrorKind.RENDER_FAILED
    status_code = 500
    restarts_engine = True
