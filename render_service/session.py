"""
Render sessions.

A session is one page opened on the engine for one conversion. It must be
closed exactly once whatever happens to the request, because pages left open
keep their memory in the browser until the whole engine is restarted. Use it
as an async context manager (or through ``open_session``) so the close is not
forgotten on error paths.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from .engine import EngineHandle, PageOptions, Surface, WaitPolicy
from .errors import RenderFailed, SessionOpenFailed
from .models import ConversionRequest, SourceKind

logger = logging.getLogger(__name__)


class RenderSession:
    """One page on the engine, used for a single conversion."""

    def __init__(self, surface: Surface, request_id: Optional[str] = None) -> None:
        self._surface = surface
        self.request_id = request_id
        self.source_kind: Optional[SourceKind] = None
        self.source_content: Optional[str] = None
        self._closed = False

    @classmethod
    async def open(cls, handle: EngineHandle, request_id: Optional[str] = None) -> "RenderSession":
        """
        Open a fresh page on the engine.

        Raises:
            SessionOpenFailed: the engine died or refused to create a page
        """
        if not handle.alive:
            raise SessionOpenFailed("Rendering engine is not running")
        try:
            surface = await handle.new_surface()
        except Exception as e:
            raise SessionOpenFailed(str(e)) from e
        return cls(surface, request_id)

    @property
    def closed(self) -> bool:
        return self._closed

    async def render(
        self,
        request: ConversionRequest,
        wait_policy: WaitPolicy,
        page_options: PageOptions,
        timeout_seconds: Optional[float] = None,
    ) -> bytes:
        """
        Load the request's source into the page and print it to PDF.

        Raises:
            RenderFailed: loading or printing failed, or took longer than
                ``timeout_seconds``
        """
        if self._closed:
            raise RenderFailed("Render session is already closed")

        self.source_kind = request.source_kind
        self.source_content = request.source_content
        try:
            pdf_bytes = await asyncio.wait_for(
                self._render(request, wait_policy, page_options),
                timeout=timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            limit = f" after {timeout_seconds}s" if timeout_seconds else ""
            raise RenderFailed(f"Rendering timed out{limit}") from e
        except Exception as e:
            raise RenderFailed(str(e) or e.__class__.__name__) from e

        if not pdf_bytes:
            raise RenderFailed("Engine returned an empty PDF")
        return pdf_bytes

    async def _render(
        self, request: ConversionRequest, wait_policy: WaitPolicy, page_options: PageOptions
    ) -> bytes:
        if self.source_kind == SourceKind.URL:
            await self._surface.navigate(request.url, wait_policy)
        elif self.source_kind == SourceKind.HTML:
            await self._surface.set_content(request.html, wait_policy)
        else:
            raise ValueError("Request carries neither a single url nor html")
        return await self._surface.render_to_pdf(page_options)

    async def close(self) -> None:
        """Release the page. Later calls do nothing."""
        if self._closed:
            return
        self._closed = True
        try:
            # Shielded so that a cancelled request still releases its page.
            await asyncio.shield(self._surface.close())
        except asyncio.CancelledError:
            logger.warning(f"[{self.request_id}] Cancelled while closing page")
            raise
        except Exception as e:
            logger.warning(f"[{self.request_id}] Failed to close page: {e}")

    async def __aenter__(self) -> "RenderSession":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()


@asynccontextmanager
async def open_session(handle: EngineHandle, request_id: Optional[str] = None) -> AsyncIterator[RenderSession]:
    """Open a session on ``handle`` and close it when the block exits."""
    session = await RenderSession.open(handle, request_id)
    async with session:
        yield session
