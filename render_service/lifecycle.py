"""
Process lifecycle hooks.

Ties engine shutdown to the life of the hosting process: once a termination
signal arrives no new conversions are accepted, and the engine is shut down
exactly once before the process goes away, so no Chromium is left orphaned.

The signal handlers are chained in front of whatever handler is already
installed (uvicorn installs its own to start a graceful exit), so the server
keeps its normal shutdown sequence and the FastAPI lifespan runs
``ProcessLifecycleHooks.shutdown``.
"""

import asyncio
import logging
import signal
import sys
from typing import Any, Callable, Dict, Iterable, Union

from .supervisor import EngineSupervisor

logger = logging.getLogger(__name__)

DEFAULT_SIGNALS = (signal.SIGINT, signal.SIGTERM)

_Handler = Union[Callable[[int, Any], Any], int, None]


class ProcessLifecycleHooks:
    """Stops intake on termination signals and shuts the engine down once."""

    def __init__(self, supervisor: EngineSupervisor) -> None:
        self._supervisor = supervisor
        self._accepting = True
        self._shutdown_started = False
        self._lock = asyncio.Lock()
        self._previous: Dict[int, _Handler] = {}

    @property
    def accepting(self) -> bool:
        """False once a termination signal arrived or shutdown began."""
        return self._accepting

    @property
    def shut_down(self) -> bool:
        return self._shutdown_started

    def stop_accepting(self) -> None:
        if self._accepting:
            logger.info("No longer accepting conversion requests")
        self._accepting = False

    def install(self, signals: Iterable[int] = DEFAULT_SIGNALS) -> None:
        """Chain our handler in front of the currently installed ones."""
        for signum in signals:
            if signum in self._previous:
                continue
            try:
                previous = signal.getsignal(signum)
                signal.signal(signum, self._handle_signal)
            except ValueError:
                # signal.signal only works in the main thread of the main interpreter.
                logger.warning(f"Cannot install handler for signal {signum} outside the main thread")
                continue
            self._previous[signum] = previous

    def uninstall(self) -> None:
        """Restore the handlers that were in place before ``install``."""
        for signum, previous in self._previous.items():
            try:
                signal.signal(signum, previous if previous is not None else signal.SIG_DFL)
            except ValueError:
                logger.warning(f"Cannot restore handler for signal {signum} outside the main thread")
        self._previous.clear()

    def _handle_signal(self, signum: int, frame: Any) -> None:
        logger.info(f"Received signal {signal.Signals(signum).name}, stopping intake")
        self.stop_accepting()

        previous = self._previous.get(signum)
        if callable(previous):
            previous(signum, frame)
        elif previous == signal.SIG_IGN:
            return
        elif signum == signal.SIGINT:
            raise KeyboardInterrupt
        else:
            sys.exit(128 + signum)

    async def shutdown(self) -> None:
        """Shut the engine down. Only the first call does any work."""
        async with self._lock:
            if self._shutdown_started:
                return
            self._shutdown_started = True
            self.stop_accepting()
        try:
            await self._supervisor.shutdown()
        except Exception as e:
            logger.error(f"Engine shutdown failed: {e}")
        else:
            logger.info("Engine shut down")
