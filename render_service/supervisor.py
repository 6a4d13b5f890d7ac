"""
Engine supervisor.

Owns the one rendering engine of the process. All lifecycle transitions go
through ``ensure_engine``, ``restart_engine`` and ``shutdown``, which are
serialized by a single asyncio lock so that no two handles are ever live at
the same time. Requests holding a reference to the current handle keep
rendering concurrently; only launching and tearing down are exclusive.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from .engine import Engine, EngineHandle, LaunchConfig
from .errors import EngineUnavailable

logger = logging.getLogger(__name__)


class EngineState(str, Enum):
    ABSENT = "absent"
    LAUNCHING = "launching"
    READY = "ready"
    TERMINATING = "terminating"


@dataclass
class SupervisorStats:
    """Lifetime counters reported by the health endpoint."""

    launches: int = 0
    launch_failures: int = 0
    restarts: int = 0
    last_error: Optional[str] = None


class EngineSupervisor:
    """Lazily launches, restarts and terminates the shared engine."""

    def __init__(self, engine: Engine, config: LaunchConfig) -> None:
        self._engine = engine
        self._config = config
        self._handle: Optional[EngineHandle] = None
        self._state = EngineState.ABSENT
        self._lock = asyncio.Lock()
        self.stats = SupervisorStats()

    @property
    def state(self) -> EngineState:
        return self._state

    @property
    def ready(self) -> bool:
        handle = self._handle
        return self._state == EngineState.READY and handle is not None and handle.alive

    async def ensure_engine(self) -> EngineHandle:
        """
        Return the live engine handle, launching the engine if there is none.

        Raises:
            EngineUnavailable: the engine could not be launched
        """
        handle = self._handle
        if handle is not None and handle.alive:
            return handle

        async with self._lock:
            # Another caller may have launched while we waited for the lock.
            handle = self._handle
            if handle is not None and handle.alive:
                return handle
            if handle is not None:
                logger.warning("Engine handle is no longer alive, discarding it")
                await self._terminate_current()
            return await self._launch()

    async def restart_engine(self, failed_handle: Optional[EngineHandle] = None) -> EngineHandle:
        """
        Replace the current engine with a freshly launched one.

        ``failed_handle`` is the handle a failed request was using. If the
        supervisor has already moved on from it, the restart has effectively
        happened and the current handle is returned as is.

        Raises:
            EngineUnavailable: the replacement could not be launched; the
                supervisor is left ABSENT and the next ``ensure_engine`` retries
        """
        async with self._lock:
            current = self._handle
            if (
                failed_handle is not None
                and failed_handle is not current
                and current is not None
                and current.alive
            ):
                logger.info("Engine already replaced by a concurrent restart, skipping")
                return current

            logger.info("Restarting engine")
            self.stats.restarts += 1
            await self._terminate_current()
            return await self._launch()

    async def shutdown(self) -> None:
        """Terminate the engine if one is running. Safe to call repeatedly."""
        async with self._lock:
            if self._handle is None:
                logger.debug("Shutdown requested with no engine running")
                return
            logger.info("Shutting down engine")
            await self._terminate_current()

    def status(self) -> Dict[str, Any]:
        """Snapshot of the lifecycle state for health reporting."""
        handle = self._handle
        launched_at = handle.launched_at if handle is not None else None
        uptime = None
        if launched_at is not None and self.ready:
            uptime = round((datetime.now(timezone.utc) - launched_at).total_seconds(), 1)
        return {
            "state": self._state.value,
            "ready": self.ready,
            "launched_at": launched_at.isoformat() if launched_at else None,
            "uptime_seconds": uptime,
            "launches": self.stats.launches,
            "launch_failures": self.stats.launch_failures,
            "restarts": self.stats.restarts,
            "last_error": self.stats.last_error,
        }

    # Callers must hold self._lock for the two helpers below.

    async def _launch(self) -> EngineHandle:
        self._state = EngineState.LAUNCHING
        started = time.monotonic()
        try:
            process = await self._engine.launch(self._config)
        except Exception as e:
            self._handle = None
            self._state = EngineState.ABSENT
            self.stats.launch_failures += 1
            self.stats.last_error = str(e)
            logger.error(f"Engine launch failed after {_elapsed_ms(started)}ms: {e}")
            raise EngineUnavailable(str(e)) from e

        self._handle = EngineHandle(process)
        self._state = EngineState.READY
        self.stats.launches += 1
        logger.info(f"Engine launched in {_elapsed_ms(started)}ms")
        return self._handle

    async def _terminate_current(self) -> None:
        handle = self._handle
        if handle is None:
            self._state = EngineState.ABSENT
            return
        self._state = EngineState.TERMINATING
        started = time.monotonic()
        try:
            await handle.terminate()
            logger.info(f"Engine terminated in {_elapsed_ms(started)}ms")
        except Exception as e:
            logger.warning(f"Engine termination failed, discarding handle anyway: {e}")
        finally:
            self._handle = None
            self._state = EngineState.ABSENT


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)
