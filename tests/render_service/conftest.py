"""
Pytest fixtures for render service tests.

The fake engine below stands in for Playwright/Chromium: it launches
instantly, hands out in-memory pages and can be told to fail at launch,
page creation or render time.
"""

import asyncio
from typing import List, Optional

import pytest
from fastapi.testclient import TestClient

from render_service.app import create_app
from render_service.config import RenderSettings
from render_service.conversion import ConversionService
from render_service.engine import LaunchConfig, PageOptions, WaitPolicy
from render_service.supervisor import EngineSupervisor

FAKE_PDF = b"%PDF-1.4\n% fake document\n%%EOF\n"


class FakeSurface:
    """In-memory page."""

    def __init__(self, process: "FakeProcess") -> None:
        self._process = process
        self.loaded: Optional[tuple] = None
        self.pdf_options: Optional[PageOptions] = None
        self.close_calls = 0

    async def navigate(self, url: str, policy: WaitPolicy) -> None:
        await self._maybe_fail("navigate")
        self.loaded = ("url", url)

    async def set_content(self, html: str, policy: WaitPolicy) -> None:
        await self._maybe_fail("set_content")
        self.loaded = ("html", html)

    async def render_to_pdf(self, options: PageOptions) -> bytes:
        await self._maybe_fail("pdf")
        self.pdf_options = options
        return self._process.pdf_bytes

    async def close(self) -> None:
        self.close_calls += 1
        if self._process.fail_close:
            raise RuntimeError("Target page, context or browser has been closed")

    async def _maybe_fail(self, step: str) -> None:
        if self._process.render_delay:
            await asyncio.sleep(self._process.render_delay)
        if self._process.broken:
            raise RuntimeError(f"{step}: Page crashed!")


class FakeProcess:
    """In-memory browser process."""

    def __init__(self, number: int) -> None:
        self.number = number
        self.connected = True
        self.broken = False
        self.fail_new_surface = False
        self.fail_terminate = False
        self.fail_close = False
        self.render_delay = 0.0
        self.pdf_bytes = FAKE_PDF
        self.surfaces: List[FakeSurface] = []
        self.terminate_calls = 0

    def is_connected(self) -> bool:
        return self.connected

    async def new_surface(self) -> FakeSurface:
        if self.fail_new_surface or not self.connected:
            raise RuntimeError("Target closed")
        surface = FakeSurface(self)
        self.surfaces.append(surface)
        return surface

    async def terminate(self) -> None:
        self.terminate_calls += 1
        self.connected = False
        if self.fail_terminate:
            raise RuntimeError("Browser.close: Connection closed")

    @property
    def open_surfaces(self) -> int:
        return sum(1 for s in self.surfaces if s.close_calls == 0)


class FakeEngine:
    """Launches FakeProcess instances."""

    def __init__(self) -> None:
        self.processes: List[FakeProcess] = []
        self.launch_calls = 0
        self.fail_launch = False
        self.launch_delay = 0.0
        self.configs: List[LaunchConfig] = []

    async def launch(self, config: LaunchConfig) -> FakeProcess:
        self.launch_calls += 1
        self.configs.append(config)
        if self.launch_delay:
            await asyncio.sleep(self.launch_delay)
        if self.fail_launch:
            raise RuntimeError("Executable doesn't exist at /ms-playwright/chromium/chrome")
        process = FakeProcess(len(self.processes) + 1)
        self.processes.append(process)
        return process

    @property
    def live_processes(self) -> List[FakeProcess]:
        return [p for p in self.processes if p.connected]

    @property
    def current(self) -> FakeProcess:
        return self.processes[-1]


@pytest.fixture
def fake_engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture
def supervisor(fake_engine) -> EngineSupervisor:
    return EngineSupervisor(fake_engine, LaunchConfig())


@pytest.fixture
def conversion_service(supervisor) -> ConversionService:
    return ConversionService(
        supervisor,
        wait_policy=WaitPolicy(idle_ms=0, timeout_ms=1000),
        render_timeout_seconds=5,
    )


@pytest.fixture
def settings() -> RenderSettings:
    """Settings isolated from the environment and .env files."""
    return RenderSettings(
        _env_file=None,
        environment="development",
        rate_limit_enabled=False,
        engine_launch_on_startup=False,
        network_idle_ms=0,
    )


@pytest.fixture
def app(settings, fake_engine):
    return create_app(settings=settings, engine=fake_engine)


@pytest.fixture
def client(app):
    """Test client without lifespan; the engine launches on first use."""
    return TestClient(app)
