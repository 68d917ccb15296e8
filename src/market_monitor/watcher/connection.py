"""
Connection manager.

Owns the single transport connection and drives the lifecycle state machine:

    idle -> connecting -> connected -> disconnected -> connecting -> ...

Any state may move to ``terminated`` on shutdown; ``disconnected`` also moves
there when the retry budget is exhausted.

All reads and writes of the state, the reconnect counter, the epoch and the
pending reconnect timer happen under one asyncio.Lock. A transport closure
reported by N subscriptions of the same epoch produces exactly one reconnect
schedule: only the caller that observes ``connected`` for the current epoch
performs the transition.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Sequence

from loguru import logger

from ..errors import InvariantViolation
from ..metrics.registry import RECONNECTS_TOTAL, record_state
from ..models import RawEvent, SubscriptionSpec
from .channel import ChannelClosedError, EventChannel
from .policy import DisconnectClassifier, ReconnectPolicy, default_disconnect_classifier
from .registry import SubscriptionRegistry
from .types import (
    Connection,
    ConnectionState,
    ErrorCallback,
    EventBatch,
    EventCallback,
    EventSource,
    StreamFailure,
    SubscriptionHandle,
)

FatalCallback = Callable[[str], Awaitable[object]]


@dataclass(frozen=True)
class ConnectionHealth:
    state: str
    epoch: int
    reconnect_attempts: int
    max_retries: int
    pending_reconnect: bool
    subscriptions: int


class ConnectionManager:
    def __init__(
        self,
        source: EventSource,
        specs: Sequence[SubscriptionSpec],
        registry: SubscriptionRegistry,
        channel: EventChannel,
        policy: Optional[ReconnectPolicy] = None,
        *,
        classifier: Optional[DisconnectClassifier] = None,
        on_fatal: Optional[FatalCallback] = None,
    ):
        if not specs:
            raise ValueError("at least one subscription spec is required")
        self._source = source
        self._specs = list(specs)
        self._registry = registry
        self._channel = channel
        self._policy = policy or ReconnectPolicy()
        self._classify = classifier or default_disconnect_classifier
        self._on_fatal = on_fatal

        self._lock = asyncio.Lock()
        self._state = ConnectionState.IDLE
        self._attempts = 0  # reconnects scheduled since the last successful connection
        self._epoch = 0
        self._failed_epoch: Optional[int] = None  # closure reported while still connecting
        self._started = False
        self._has_connected = False
        self._connection: Optional[Connection] = None
        self._timer: Optional[asyncio.TimerHandle] = None
        self._attempt_task: Optional[asyncio.Task[None]] = None
        self._fatal_task: Optional[asyncio.Task[object]] = None
        record_state(self._state.value)

    # ---------------------------
    # Introspection
    # ---------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def epoch(self) -> int:
        return self._epoch

    @property
    def reconnect_attempts(self) -> int:
        return self._attempts

    @property
    def pending_reconnect(self) -> bool:
        return self._timer is not None

    def health(self) -> ConnectionHealth:
        return ConnectionHealth(
            state=self._state.value,
            epoch=self._epoch,
            reconnect_attempts=self._attempts,
            max_retries=self._policy.max_retries,
            pending_reconnect=self.pending_reconnect,
            subscriptions=self._registry.size,
        )

    # ---------------------------
    # Lifecycle
    # ---------------------------

    async def start(self) -> None:
        """Leave ``idle`` and run the first connection attempt."""
        async with self._lock:
            if self._started:
                raise InvariantViolation(f"start() called twice (state={self._state.value})")
            self._started = True
            task = self._spawn_attempt()
        logger.info("Starting market event monitoring...")
        await asyncio.wait([task])

    async def terminate(self, timeout: float | None = None) -> bool:
        """Move to ``terminated`` and release everything. Returns True for the first caller."""
        async with self._lock:
            first = self._state is not ConnectionState.TERMINATED
            self._set_state(ConnectionState.TERMINATED)
            self._cancel_timer()
            task = self._attempt_task

        if task is not None and not task.done() and task is not asyncio.current_task():
            done, _ = await asyncio.wait([task], timeout=timeout)
            if not done:
                logger.warning("Connection attempt did not finish in time; cancelling it")
                task.cancel()
                await asyncio.wait([task])

        await self._release_epoch()
        return first

    async def handle_stream_error(self, failure: StreamFailure) -> bool:
        """React to one subscription's error. Returns True if it triggered a reconnect."""
        error = failure.error
        if not self._classify(error):
            logger.error(f"{failure.spec_name} subscription error: {type(error).__name__}: {error}")
            return False

        async with self._lock:
            if failure.epoch != self._epoch:
                logger.debug(
                    f"Ignoring closure from stale epoch {failure.epoch} (current {self._epoch})"
                )
                return False
            if self._state is ConnectionState.CONNECTING:
                self._failed_epoch = failure.epoch
                return False
            if self._state is not ConnectionState.CONNECTED:
                return False
            self._set_state(ConnectionState.DISCONNECTED)
            logger.warning(f"WebSocket connection lost ({error}); preparing to reconnect...")
            fatal = self._schedule_reconnect_locked()

        if fatal:
            await self._give_up()
        return True

    # ---------------------------
    # Connection attempts
    # ---------------------------

    def _spawn_attempt(self) -> asyncio.Task[None]:
        task = asyncio.get_running_loop().create_task(self._attempt())
        task.add_done_callback(_log_task_failure)
        self._attempt_task = task
        return task

    def _on_timer(self) -> None:
        self._timer = None
        if self._state is ConnectionState.TERMINATED:
            return
        self._spawn_attempt()

    async def _attempt(self) -> None:
        async with self._lock:
            if self._state is ConnectionState.TERMINATED:
                return
            reconnecting = self._has_connected or self._attempts > 0
            self._epoch += 1
            epoch = self._epoch
            self._failed_epoch = None
            self._set_state(ConnectionState.CONNECTING)
            attempt_no = self._attempts

        if reconnecting:
            logger.info(f"Reconnecting (attempt {attempt_no}/{self._policy.max_retries})...")
        # the previous epoch's handles must be gone before new ones exist
        await self._release_epoch()

        conn: Optional[Connection] = None
        handles: dict[str, SubscriptionHandle] = {}
        try:
            conn = await self._source.connect()
            for spec in self._specs:
                handles[spec.name] = await conn.subscribe(
                    spec,
                    on_event=self._event_callback(spec.name, epoch),
                    on_error=self._error_callback(spec.name, epoch),
                )
        except asyncio.CancelledError:
            await self._discard(conn, handles)
            raise
        except Exception as exc:
            logger.error(f"Connection failed: {type(exc).__name__}: {exc}")
            await self._discard(conn, handles)
            await self._after_failure()
            return

        async with self._lock:
            terminated = self._state is ConnectionState.TERMINATED
            closed_meanwhile = self._failed_epoch == epoch
            if not terminated and not closed_meanwhile:
                self._connection = conn
                await self._registry.register_all(handles, epoch=epoch)
                self._set_state(ConnectionState.CONNECTED)
                self._attempts = 0
                self._has_connected = True
                self._cancel_timer()

        if terminated:
            logger.info("Shutdown in progress; abandoning connection attempt")
            await self._discard(conn, handles)
            return
        if closed_meanwhile:
            logger.error("Connection failed: transport closed while subscribing")
            await self._discard(conn, handles)
            await self._after_failure()
            return

        names = ", ".join(handles)
        if reconnecting:
            logger.success(f"Reconnected; event subscriptions restored ({names})")
        else:
            logger.info(f"WebSocket connection established; subscribed to {names}")

    async def _after_failure(self) -> None:
        async with self._lock:
            if self._state is ConnectionState.TERMINATED:
                return
            self._set_state(ConnectionState.DISCONNECTED)
            fatal = self._schedule_reconnect_locked()
        if fatal:
            await self._give_up()

    def _schedule_reconnect_locked(self) -> bool:
        """Arm the reconnect timer; returns True when the retry budget is exhausted."""
        if self._policy.exhausted(self._attempts):
            self._set_state(ConnectionState.TERMINATED)
            self._cancel_timer()
            return True

        self._cancel_timer()
        delay = self._policy.delay(self._attempts)
        self._attempts += 1
        RECONNECTS_TOTAL.inc()
        logger.warning(
            f"Reconnect attempt {self._attempts}/{self._policy.max_retries} "
            f"in {delay:.1f}s..."
        )
        self._timer = asyncio.get_running_loop().call_later(delay, self._on_timer)
        return False

    async def _give_up(self) -> None:
        reason = f"Reached maximum reconnect attempts ({self._policy.max_retries}); giving up"
        logger.critical(reason)
        await self._release_epoch()
        if self._on_fatal is not None and self._fatal_task is None:
            # terminate() awaits the attempt task this may be running in
            self._fatal_task = asyncio.get_running_loop().create_task(self._on_fatal(reason))
            self._fatal_task.add_done_callback(_log_task_failure)

    # ---------------------------
    # Epoch resources
    # ---------------------------

    async def _release_epoch(self) -> None:
        await self._registry.teardown_all()
        conn, self._connection = self._connection, None
        if conn is not None:
            await _close_quietly(conn)

    async def _discard(
        self, conn: Optional[Connection], handles: dict[str, SubscriptionHandle]
    ) -> None:
        """Undo a partial or abandoned epoch that never reached the registry."""
        if handles:
            scratch = SubscriptionRegistry()
            await scratch.register_all(handles)
            await scratch.teardown_all()
        if conn is not None:
            await _close_quietly(conn)

    # ---------------------------
    # Subscription callbacks -> channel
    # ---------------------------

    def _event_callback(self, spec_name: str, epoch: int) -> EventCallback:
        async def on_event(events: Sequence[RawEvent]) -> None:
            await self._publish(EventBatch(spec_name, epoch, tuple(events)))

        return on_event

    def _error_callback(self, spec_name: str, epoch: int) -> ErrorCallback:
        async def on_error(error: BaseException) -> None:
            await self._publish(StreamFailure(spec_name, epoch, error))

        return on_error

    async def _publish(self, msg: EventBatch | StreamFailure) -> None:
        try:
            await self._channel.put(msg)
        except ChannelClosedError:
            logger.debug(f"Dropping {type(msg).__name__} for {msg.spec_name}: channel closed")

    # ---------------------------
    # Helpers
    # ---------------------------

    def _set_state(self, state: ConnectionState) -> None:
        if self._state is not state:
            logger.debug(f"Connection state {self._state.value} -> {state.value}")
            self._state = state
            record_state(state.value)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None


async def _close_quietly(conn: Connection) -> None:
    try:
        await conn.close()
    except Exception as exc:
        logger.warning(f"Error closing connection: {type(exc).__name__}: {exc}")


def _log_task_failure(task: asyncio.Task) -> None:
    if not task.cancelled() and task.exception() is not None:
        exc = task.exception()
        logger.opt(exception=exc).error(f"Background task failed: {exc}")
