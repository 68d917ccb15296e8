"""
MarketMonitor wiring.

Assembles channel, registry, connection manager, dispatcher and shutdown
coordinator around one event source and one sink. Usable as an async
context manager (tests, embedding) or through ``run()`` (the CLI), which
installs signal handlers and returns the process exit code.
"""

from __future__ import annotations

from typing import Optional, Sequence

from loguru import logger

from ..models import SubscriptionSpec
from .channel import EventChannel
from .connection import ConnectionHealth, ConnectionManager
from .dispatcher import EventDispatcher
from .policy import DisconnectClassifier, ReconnectPolicy
from .registry import SubscriptionRegistry
from .shutdown import ShutdownCoordinator
from .types import EventSource, LineSink


class MarketMonitor:
    def __init__(
        self,
        source: EventSource,
        specs: Sequence[SubscriptionSpec],
        sink: LineSink,
        *,
        policy: Optional[ReconnectPolicy] = None,
        classifier: Optional[DisconnectClassifier] = None,
        channel_capacity: int = 10_000,
        shutdown_timeout: float = 5.0,
        poll_interval: float = 0.25,
    ):
        self.sink = sink
        self.channel = EventChannel(capacity=channel_capacity)
        self.registry = SubscriptionRegistry()
        self.manager = ConnectionManager(
            source,
            specs,
            self.registry,
            self.channel,
            policy,
            classifier=classifier,
            on_fatal=self._on_fatal,
        )
        self.dispatcher = EventDispatcher(
            specs,
            sink,
            self.channel,
            on_stream_error=self.manager.handle_stream_error,
            poll_interval=poll_interval,
        )
        self.shutdown = ShutdownCoordinator(
            self.manager, self.dispatcher, sink, timeout=shutdown_timeout
        )

    async def _on_fatal(self, reason: str) -> int:
        return await self.shutdown.fail(reason)

    def health(self) -> ConnectionHealth:
        return self.manager.health()

    async def start(self) -> None:
        self.dispatcher.start()
        await self.manager.start()

    async def run(self, *, install_signals: bool = True) -> int:
        """Run until shutdown; returns 0 after a signal, 1 after budget exhaustion."""
        if install_signals:
            self.shutdown.install_signal_handlers()
        try:
            await self.start()
            code = await self.shutdown.wait()
        finally:
            if install_signals:
                self.shutdown.remove_signal_handlers()
        logger.debug(f"Monitor exiting with status {code}")
        return code

    async def __aenter__(self) -> "MarketMonitor":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.shutdown.shutdown()
