"""
Unit tests for render sessions.

Every test checks that the page is released, whatever the outcome.
"""

import asyncio

import pytest

from render_service.engine import PageOptions, WaitPolicy
from render_service.errors import RenderFailed, SessionOpenFailed
from render_service.models import ConversionRequest, SourceKind
from render_service.session import RenderSession, open_session

POLICY = WaitPolicy(idle_ms=0, timeout_ms=1000)
OPTIONS = PageOptions()


class TestOpen:
    """Tests for RenderSession.open."""

    @pytest.mark.asyncio
    async def test_open_creates_page(self, supervisor, fake_engine):
        handle = await supervisor.ensure_engine()

        session = await RenderSession.open(handle, request_id="abc")

        assert session.request_id == "abc"
        assert len(fake_engine.current.surfaces) == 1
        await session.close()

    @pytest.mark.asyncio
    async def test_open_on_dead_engine(self, supervisor, fake_engine):
        handle = await supervisor.ensure_engine()
        fake_engine.current.connected = False

        with pytest.raises(SessionOpenFailed):
            await RenderSession.open(handle)

        assert fake_engine.current.surfaces == []

    @pytest.mark.asyncio
    async def test_open_when_page_creation_fails(self, supervisor, fake_engine):
        handle = await supervisor.ensure_engine()
        fake_engine.current.fail_new_surface = True

        with pytest.raises(SessionOpenFailed) as exc_info:
            await RenderSession.open(handle)

        assert "Target closed" in exc_info.value.details


class TestRender:
    """Tests for RenderSession.render."""

    @pytest.mark.asyncio
    async def test_render_html(self, supervisor, fake_engine):
        handle = await supervisor.ensure_engine()

        async with open_session(handle) as session:
            pdf = await session.render(ConversionRequest(html="<h1>Hi</h1>"), POLICY, OPTIONS)

        surface = fake_engine.current.surfaces[0]
        assert pdf.startswith(b"%PDF-")
        assert surface.loaded == ("html", "<h1>Hi</h1>")
        assert surface.pdf_options.format == "A4"
        assert session.source_kind == SourceKind.HTML
        assert surface.close_calls == 1

    @pytest.mark.asyncio
    async def test_render_url(self, supervisor, fake_engine):
        handle = await supervisor.ensure_engine()

        async with open_session(handle) as session:
            await session.render(ConversionRequest(url="https://example.com"), POLICY, OPTIONS)

        assert fake_engine.current.surfaces[0].loaded == ("url", "https://example.com")
        assert session.source_kind == SourceKind.URL
        assert session.source_content == "https://example.com"

    @pytest.mark.asyncio
    async def test_engine_error_becomes_render_failed(self, supervisor, fake_engine):
        handle = await supervisor.ensure_engine()
        fake_engine.current.broken = True

        with pytest.raises(RenderFailed) as exc_info:
            async with open_session(handle) as session:
                await session.render(ConversionRequest(html="<p>x</p>"), POLICY, OPTIONS)

        assert "Page crashed" in exc_info.value.details
        assert fake_engine.current.surfaces[0].close_calls == 1

    @pytest.mark.asyncio
    async def test_timeout_becomes_render_failed(self, supervisor, fake_engine):
        handle = await supervisor.ensure_engine()
        fake_engine.current.render_delay = 1.0

        with pytest.raises(RenderFailed) as exc_info:
            async with open_session(handle) as session:
                await session.render(
                    ConversionRequest(html="<p>x</p>"), POLICY, OPTIONS, timeout_seconds=0.05
                )

        assert "timed out" in exc_info.value.details
        assert fake_engine.current.surfaces[0].close_calls == 1

    @pytest.mark.asyncio
    async def test_empty_pdf_is_a_failure(self, supervisor, fake_engine):
        handle = await supervisor.ensure_engine()
        fake_engine.current.pdf_bytes = b""

        with pytest.raises(RenderFailed):
            async with open_session(handle) as session:
                await session.render(ConversionRequest(html="<p>x</p>"), POLICY, OPTIONS)

    @pytest.mark.asyncio
    async def test_render_after_close(self, supervisor):
        handle = await supervisor.ensure_engine()
        session = await RenderSession.open(handle)
        await session.close()

        with pytest.raises(RenderFailed):
            await session.render(ConversionRequest(html="<p>x</p>"), POLICY, OPTIONS)


class TestClose:
    """Tests for RenderSession.close."""

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, supervisor, fake_engine):
        handle = await supervisor.ensure_engine()
        session = await RenderSession.open(handle)

        await session.close()
        await session.close()

        assert session.closed
        assert fake_engine.current.surfaces[0].close_calls == 1

    @pytest.mark.asyncio
    async def test_close_error_is_logged_not_raised(self, supervisor, fake_engine):
        handle = await supervisor.ensure_engine()
        fake_engine.current.fail_close = True
        session = await RenderSession.open(handle)

        await session.close()

        assert session.closed

    @pytest.mark.asyncio
    async def test_cancelled_render_still_closes_page(self, supervisor, fake_engine):
        handle = await supervisor.ensure_engine()
        fake_engine.current.render_delay = 10

        async def render():
            async with open_session(handle) as session:
                await session.render(ConversionRequest(html="<p>x</p>"), POLICY, OPTIONS)

        task = asyncio.create_task(render())
        await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert fake_engine.current.surfaces[0].close_calls == 1
