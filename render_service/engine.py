"""
Rendering engine capability interface and its Playwright/Chromium adapter.

The supervisor and render sessions only talk to the protocols defined here:
an ``Engine`` launches an ``EngineProcess``, a process hands out ``Surface``
objects (browser pages), and a surface loads content and prints it to PDF.
``PlaywrightEngine`` is the production implementation; tests substitute an
in-memory fake.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol, Set

from playwright.async_api import Browser, Page, Playwright, Request, async_playwright

logger = logging.getLogger(__name__)

# Chromium flags for unattended runs inside a container. The font flags
# remove hinting and subpixel positioning so repeated renders lay out the
# same way.
SANDBOX_ARGS = ["--no-sandbox", "--disable-setuid-sandbox"]
CONTAINER_ARGS = ["--disable-dev-shm-usage", "--disable-gpu"]
FONT_ARGS = [
    "--font-render-hinting=none",
    "--disable-font-subpixel-positioning",
    "--disable-lcd-text",
]


@dataclass
class LaunchConfig:
    """How to start the browser."""

    headless: bool = True
    executable_path: Optional[str] = None
    timeout_ms: int = 30000
    extra_args: List[str] = field(default_factory=list)

    @property
    def args(self) -> List[str]:
        return SANDBOX_ARGS + CONTAINER_ARGS + FONT_ARGS + list(self.extra_args)


@dataclass
class WaitPolicy:
    """
    When a loaded document counts as settled.

    The document must have fired ``load`` and then gone ``idle_ms`` without a
    request starting or finishing while at most ``max_inflight`` requests are
    still open. ``timeout_ms`` bounds the whole wait.
    """

    max_inflight: int = 2
    idle_ms: int = 500
    timeout_ms: int = 30000


@dataclass
class PageOptions:
    """PDF page setup."""

    format: str = "A4"
    print_background: bool = True
    margin: str = "1cm"

    def to_pdf_kwargs(self) -> Dict[str, Any]:
        return {
            "format": self.format,
            "print_background": self.print_background,
            "margin": {
                "top": self.margin,
                "right": self.margin,
                "bottom": self.margin,
                "left": self.margin,
            },
        }


class Surface(Protocol):
    async def navigate(self, url: str, policy: WaitPolicy) -> None: ...

    async def set_content(self, html: str, policy: WaitPolicy) -> None: ...

    async def render_to_pdf(self, options: PageOptions) -> bytes: ...

    async def close(self) -> None: ...


class EngineProcess(Protocol):
    def is_connected(self) -> bool: ...

    async def new_surface(self) -> Surface: ...

    async def terminate(self) -> None: ...


class Engine(Protocol):
    async def launch(self, config: LaunchConfig) -> EngineProcess: ...


class EngineHandle:
    """
    A running engine process, as held by the supervisor.

    Nothing outside the supervisor keeps a handle beyond a single request;
    sessions receive it only to open their page.
    """

    def __init__(self, process: EngineProcess, launched_at: Optional[datetime] = None) -> None:
        self._process = process
        self.launched_at = launched_at or datetime.now(timezone.utc)
        self._terminated = False

    @property
    def alive(self) -> bool:
        if self._terminated:
            return False
        try:
            return self._process.is_connected()
        except Exception:
            return False

    async def new_surface(self) -> Surface:
        return await self._process.new_surface()

    async def terminate(self) -> None:
        # Marked dead first: a failed terminate still retires the handle.
        self._terminated = True
        await self._process.terminate()


# ============================================================================
# Playwright adapter
# ============================================================================

class NetworkIdleTimeout(Exception):
    """The page kept too many requests in flight for longer than the wait policy allows."""


class _NetworkIdleWatcher:
    """Tracks in-flight requests of a page to detect the settled state."""

    def __init__(self, page: Page, max_inflight: int, idle_ms: int) -> None:
        self._page = page
        self._max_inflight = max_inflight
        self._idle_seconds = idle_ms / 1000
        self._inflight: Set[Request] = set()
        self._changed = asyncio.Event()

    def _on_request(self, request: Request) -> None:
        self._inflight.add(request)
        self._changed.set()

    def _on_done(self, request: Request) -> None:
        self._inflight.discard(request)
        self._changed.set()

    def attach(self) -> None:
        self._page.on("request", self._on_request)
        self._page.on("requestfinished", self._on_done)
        self._page.on("requestfailed", self._on_done)

    def detach(self) -> None:
        self._page.remove_listener("request", self._on_request)
        self._page.remove_listener("requestfinished", self._on_done)
        self._page.remove_listener("requestfailed", self._on_done)

    async def _settle(self) -> None:
        while True:
            self._changed.clear()
            if len(self._inflight) > self._max_inflight:
                await self._changed.wait()
                continue
            try:
                await asyncio.wait_for(self._changed.wait(), timeout=self._idle_seconds)
            except asyncio.TimeoutError:
                return

    async def wait(self, timeout_ms: int) -> None:
        try:
            await asyncio.wait_for(self._settle(), timeout=timeout_ms / 1000)
        except asyncio.TimeoutError as e:
            raise NetworkIdleTimeout(
                f"Network did not become idle within {timeout_ms}ms "
                f"({len(self._inflight)} requests in flight)"
            ) from e


class PlaywrightSurface:
    """A Chromium page."""

    def __init__(self, page: Page) -> None:
        self._page = page

    async def _load(self, loader, policy: WaitPolicy) -> None:
        watcher = _NetworkIdleWatcher(self._page, policy.max_inflight, policy.idle_ms)
        watcher.attach()
        try:
            await loader()
            await watcher.wait(policy.timeout_ms)
        finally:
            watcher.detach()

    async def navigate(self, url: str, policy: WaitPolicy) -> None:
        await self._load(
            lambda: self._page.goto(url, wait_until="load", timeout=policy.timeout_ms),
            policy,
        )

    async def set_content(self, html: str, policy: WaitPolicy) -> None:
        await self._load(
            lambda: self._page.set_content(html, wait_until="load", timeout=policy.timeout_ms),
            policy,
        )

    async def render_to_pdf(self, options: PageOptions) -> bytes:
        return await self._page.pdf(**options.to_pdf_kwargs())

    async def close(self) -> None:
        await self._page.close()


class PlaywrightProcess:
    """A Chromium browser together with the Playwright driver that owns it."""

    def __init__(self, playwright: Playwright, browser: Browser) -> None:
        self._playwright = playwright
        self._browser = browser
        self._connected = True
        browser.on("disconnected", self._on_disconnected)

    def _on_disconnected(self, _browser: Browser) -> None:
        logger.warning("Chromium disconnected")
        self._connected = False

    def is_connected(self) -> bool:
        return self._connected and self._browser.is_connected()

    async def new_surface(self) -> PlaywrightSurface:
        page = await self._browser.new_page()
        return PlaywrightSurface(page)

    async def terminate(self) -> None:
        self._connected = False
        try:
            await self._browser.close()
        finally:
            await self._playwright.stop()


class PlaywrightEngine:
    """Launches headless Chromium through Playwright."""

    async def launch(self, config: LaunchConfig) -> PlaywrightProcess:
        playwright = await async_playwright().start()
        try:
            browser = await playwright.chromium.launch(
                headless=config.headless,
                executable_path=config.executable_path,
                args=config.args,
                timeout=config.timeout_ms,
            )
        except Exception:
            await playwright.stop()
            raise
        logger.info(f"Chromium {browser.version} launched (headless={config.headless})")
        return PlaywrightProcess(playwright, browser)
