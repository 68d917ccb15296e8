from __future__ import annotations

import asyncio
from collections.abc import Mapping
from datetime import datetime
from typing import Awaitable, Callable, Optional, Sequence

from loguru import logger

from ..errors import DecodeError
from ..metrics.registry import EVENTS_TOTAL
from ..models import RawEvent, SubscriptionSpec
from ..utils import iso_timestamp, utc_now
from .channel import EventChannel
from .types import ChannelMessage, EventBatch, LineSink, StreamFailure

StreamErrorHandler = Callable[[StreamFailure], Awaitable[object]]

DISPATCH_ERROR_CATEGORY = "dispatch-error"


def render_value(value: object, unit: Optional[str] = None) -> str:
    text = value.hex() if isinstance(value, (bytes, bytearray)) else str(value)
    return f"{text} {unit}" if unit else text


def render_line(timestamp: str, category: str, body: str) -> str:
    """One sink line: ``[<ISO-8601>] [<category>] <body>``."""
    return f"[{timestamp}] [{category}] {body}"


class EventDispatcher:
    """Renders event batches into sink lines and runs the single dispatch loop.

    Dispatch never raises past ``on_event_batch``: a malformed event becomes a
    ``dispatch-error`` line at its position in the batch and the remaining
    events are still rendered.
    """

    def __init__(
        self,
        specs: Sequence[SubscriptionSpec],
        sink: LineSink,
        channel: Optional[EventChannel] = None,
        *,
        on_stream_error: Optional[StreamErrorHandler] = None,
        clock: Callable[[], datetime] = utc_now,
        poll_interval: float = 0.25,
    ):
        self._specs = {s.name: s for s in specs}
        self._sink = sink
        self._channel = channel
        self._on_stream_error = on_stream_error
        self._clock = clock
        self._poll = poll_interval
        self._task: Optional[asyncio.Task[None]] = None
        self._stopping = False

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    # ---------------------------
    # Rendering
    # ---------------------------

    def render(self, spec: SubscriptionSpec, event: RawEvent, timestamp: str) -> str:
        if getattr(event, "error", None):
            raise DecodeError(event.error)
        args = getattr(event, "args", None)
        if not isinstance(args, Mapping):
            raise DecodeError(f"event has no args mapping ({type(event).__name__})")
        missing = [f.name for f in spec.fields if args.get(f.name) is None]
        if missing:
            raise DecodeError(f"missing field(s) {', '.join(repr(m) for m in missing)}")
        body = ", ".join(f"{f.name}: {render_value(args[f.name], f.unit)}" for f in spec.fields)
        return render_line(timestamp, spec.label, body)

    def _error_line(self, spec_name: str, event: object, exc: Exception, timestamp: str) -> str:
        where = ""
        tx = getattr(event, "transaction_hash", None)
        if tx:
            where = f" (tx {tx})"
        return render_line(timestamp, DISPATCH_ERROR_CATEGORY, f"{spec_name}: {exc}{where}")

    async def on_event_batch(self, spec_name: str, events: Sequence[RawEvent]) -> int:
        """Render ``events`` in order and hand the lines to the sink. Returns lines written."""
        if not events:
            return 0

        spec = self._specs.get(spec_name)
        lines: list[str] = []
        for event in events:
            ts = iso_timestamp(self._clock())
            try:
                if spec is None:
                    raise DecodeError("unknown subscription spec")
                lines.append(self.render(spec, event, ts))
                EVENTS_TOTAL.labels(spec=spec_name, outcome="ok").inc()
            except Exception as exc:
                lines.append(self._error_line(spec_name, event, exc, ts))
                EVENTS_TOTAL.labels(spec=spec_name, outcome="malformed").inc()

        try:
            await self._sink.write(lines)
        except Exception as exc:
            logger.error(f"Sink write failed for {len(lines)} {spec_name} line(s): {exc}")
            return 0
        return len(lines)

    # ---------------------------
    # Dispatch loop
    # ---------------------------

    def start(self) -> None:
        if self._channel is None:
            raise RuntimeError("EventDispatcher.start() requires a channel")
        if self.running:
            return
        self._stopping = False
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def stop(self, drain: bool = True, timeout: float | None = None) -> None:
        """Stop the loop; with ``drain`` queued messages are dispatched first."""
        if self._channel is not None:
            self._channel.close()
        self._stopping = True
        if self._task is None:
            return
        if not drain:
            self._task.cancel()
        done, _ = await asyncio.wait([self._task], timeout=timeout)
        if not done:
            logger.warning(f"Dispatch loop did not drain in time ({self._channel.size} left)")
            self._task.cancel()
            await asyncio.wait([self._task])
        self._task = None

    async def _run(self) -> None:
        assert self._channel is not None
        while True:
            if self._stopping and self._channel.size == 0:
                break
            try:
                msg = await self._channel.get(timeout=self._poll)
            except asyncio.TimeoutError:
                continue
            await self._handle(msg)

    async def _handle(self, msg: ChannelMessage) -> None:
        if isinstance(msg, EventBatch):
            await self.on_event_batch(msg.spec_name, msg.events)
            return
        if self._on_stream_error is None:
            logger.error(f"{msg.spec_name} subscription error: {msg.error}")
            return
        try:
            await self._on_stream_error(msg)
        except Exception as exc:
            logger.opt(exception=exc).error(
                f"Stream error handler failed for {msg.spec_name}: {exc}"
            )
