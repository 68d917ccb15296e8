from __future__ import annotations

import asyncio
import signal
from typing import Optional

from loguru import logger

from .connection import ConnectionManager
from .dispatcher import EventDispatcher
from .types import LineSink

SHUTDOWN_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class ShutdownCoordinator:
    """Single exit path for the process.

    Triggered by SIGINT/SIGTERM (exit code 0) or by the connection manager
    exhausting its retry budget (exit code 1). The first trigger decides the
    exit code; later triggers wait for the same shutdown to finish.
    """

    def __init__(
        self,
        manager: ConnectionManager,
        dispatcher: EventDispatcher,
        sink: LineSink,
        *,
        timeout: float = 5.0,
    ):
        self._manager = manager
        self._dispatcher = dispatcher
        self._sink = sink
        self._timeout = timeout
        self._task: Optional[asyncio.Task[int]] = None
        self._done = asyncio.Event()
        self._exit_code: Optional[int] = None
        self._installed: list[signal.Signals] = []
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    @property
    def requested(self) -> bool:
        return self._task is not None

    @property
    def exit_code(self) -> Optional[int]:
        return self._exit_code

    def install_signal_handlers(
        self, loop: Optional[asyncio.AbstractEventLoop] = None
    ) -> list[signal.Signals]:
        loop = loop or asyncio.get_running_loop()
        self._loop = loop
        for sig in SHUTDOWN_SIGNALS:
            reason = f"Received {sig.name}; closing subscriptions..."
            try:
                loop.add_signal_handler(sig, self.request, reason)
            except (NotImplementedError, RuntimeError):
                # Windows event loops have no add_signal_handler
                signal.signal(
                    sig, lambda _s, _f, r=reason: loop.call_soon_threadsafe(self.request, r)
                )
            self._installed.append(sig)
        return list(self._installed)

    def remove_signal_handlers(self) -> None:
        for sig in self._installed:
            try:
                if self._loop is not None:
                    self._loop.remove_signal_handler(sig)
            except (NotImplementedError, RuntimeError):
                signal.signal(sig, signal.SIG_DFL)
        self._installed.clear()

    def request(self, reason: str = "Termination requested; closing subscriptions...") -> None:
        """Signal-safe trigger: schedules a graceful shutdown with exit code 0."""
        if self._task is not None:
            logger.debug("Shutdown already in progress")
            return
        self._start(0, reason)

    async def shutdown(self, exit_code: int = 0, reason: Optional[str] = None) -> int:
        """Run (or join) the shutdown sequence; returns the decided exit code."""
        if self._task is None:
            self._start(exit_code, reason)
        assert self._task is not None
        return await asyncio.shield(self._task)

    async def fail(self, reason: str) -> int:
        return await self.shutdown(exit_code=1, reason=reason)

    async def wait(self) -> int:
        await self._done.wait()
        assert self._exit_code is not None
        return self._exit_code

    def _start(self, exit_code: int, reason: Optional[str]) -> None:
        self._task = asyncio.get_running_loop().create_task(self._run(exit_code, reason))

    async def _run(self, exit_code: int, reason: Optional[str]) -> int:
        if exit_code == 0:
            logger.warning(reason or "Shutting down; closing subscriptions...")
        else:
            logger.error(f"Fatal: {reason or 'unrecoverable error'}; exiting with status {exit_code}")

        try:
            await self._manager.terminate(timeout=self._timeout)
        except Exception as exc:
            logger.opt(exception=exc).error(f"Error while terminating connection: {exc}")

        await self._dispatcher.stop(drain=True, timeout=self._timeout)

        if exit_code == 0:
            logger.info("Monitor stopped")
        await logger.complete()
        try:
            await self._sink.flush()
        except Exception as exc:
            logger.error(f"Sink flush failed: {exc}")

        self._exit_code = exit_code
        self._done.set()
        return exit_code
