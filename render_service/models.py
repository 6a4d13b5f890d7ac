"""
Shared models for the render service.

Pydantic models define the HTTP request/response bodies; the dataclasses are
the value objects the conversion core works with.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class SourceKind(str, Enum):
    URL = "url"
    HTML = "html"


@dataclass(frozen=True)
class ConversionRequest:
    """
    What to render: a URL or an HTML document, never both.

    Empty strings count as not provided.
    """

    url: Optional[str] = None
    html: Optional[str] = None

    @property
    def source_kind(self) -> Optional[SourceKind]:
        """The kind of source, or None unless exactly one is set."""
        if bool(self.url) == bool(self.html):
            return None
        return SourceKind.URL if self.url else SourceKind.HTML

    @property
    def source_content(self) -> str:
        return self.url or self.html or ""


# ============================================================================
# HTTP bodies
# ============================================================================

class GeneratePDFRequest(BaseModel):
    """Body of POST /api/generate-pdf."""

    url: Optional[str] = Field(None, description="Absolute http(s) URL to render")
    html: Optional[str] = Field(None, description="HTML document to render")

    def to_conversion_request(self) -> ConversionRequest:
        return ConversionRequest(url=self.url, html=self.html)


class ErrorResponse(BaseModel):
    """Error payload returned for every failed request."""

    error: str
    details: Optional[str] = None


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "OK"
    timestamp: datetime
    browser: str
    accepting: bool = True
    engine: Dict[str, Any] = Field(default_factory=dict)
