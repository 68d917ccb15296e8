from __future__ import annotations

import asyncio
from typing import Optional

from loguru import logger

from ..metrics.registry import CHANNEL_DEPTH
from .types import BackpressureCallback, ChannelMessage


class ChannelClosedError(Exception):
    """Raised by ``put`` after the channel was closed."""


class EventChannel:
    """Bounded FIFO of channel messages with high/low watermark signals.

    Producers are the subscription callbacks of the connection manager; the
    single consumer is the dispatch loop. FIFO order preserves per-stream
    delivery order.
    """

    def __init__(
        self,
        capacity: int = 10_000,
        high_watermark: int | None = None,
        low_watermark: int | None = None,
        *,
        on_high: Optional[BackpressureCallback] = None,
        on_low: Optional[BackpressureCallback] = None,
    ):
        if capacity <= 0:
            raise ValueError("capacity must be > 0")

        self._capacity = capacity
        self._q: asyncio.Queue[ChannelMessage] = asyncio.Queue(maxsize=capacity)
        self._high_wm = (
            high_watermark if high_watermark is not None else max(1, int(0.8 * capacity))
        )
        self._low_wm = low_watermark if low_watermark is not None else int(0.5 * capacity)
        self._on_high = on_high
        self._on_low = on_low
        self._high_fired = False  # avoid duplicate signals
        self._closed = False

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def size(self) -> int:
        return self._q.qsize()

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        """Reject further puts; queued messages stay available to ``get``."""
        self._closed = True

    async def put(self, msg: ChannelMessage) -> None:
        if self._closed:
            raise ChannelClosedError("EventChannel is closed")
        await self._q.put(msg)
        CHANNEL_DEPTH.set(self._q.qsize())
        await self._maybe_signal_high()

    async def get(self, timeout: float | None = None) -> ChannelMessage:
        """Get the next message; raises asyncio.TimeoutError after ``timeout`` seconds."""
        if timeout is None:
            msg = await self._q.get()
        else:
            msg = await asyncio.wait_for(self._q.get(), timeout=timeout)
        CHANNEL_DEPTH.set(self._q.qsize())
        await self._maybe_signal_low()
        return msg

    def get_nowait(self) -> ChannelMessage:
        msg = self._q.get_nowait()
        CHANNEL_DEPTH.set(self._q.qsize())
        return msg

    async def _maybe_signal_high(self) -> None:
        if not self._high_fired and self._q.qsize() >= self._high_wm:
            self._high_fired = True
            logger.warning(
                f"Event channel above high watermark ({self._q.qsize()}/{self._capacity}); "
                "dispatch is falling behind"
            )
            if self._on_high:
                await self._on_high()

    async def _maybe_signal_low(self) -> None:
        if self._high_fired and self._q.qsize() <= self._low_wm:
            self._high_fired = False
            logger.info(f"Event channel recovered ({self._q.qsize()}/{self._capacity})")
            if self._on_low:
                await self._on_low()
