"""
Pytest configuration and fixtures for market-monitor.

Provides cross-platform event loop configuration, an in-memory event source
and a collecting sink.
"""

import asyncio
import sys
from typing import Optional

import pytest
from loguru import logger

from market_monitor.errors import ConnectError, SubscribeError, TransportClosedError
from market_monitor.models import RawEvent
from market_monitor.specs import market_specs
from market_monitor.watcher import LineSink, ReconnectPolicy

# Set policy *before* pytest-asyncio creates any loops
if sys.platform.startswith("win"):
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())


class FakeHandle:
    def __init__(self, name: str, fail: bool = False):
        self.name = name
        self.fail = fail
        self.calls = 0

    async def unsubscribe(self) -> None:
        self.calls += 1
        if self.fail:
            raise RuntimeError(f"unsubscribe {self.name} boom")


class FakeConnection:
    def __init__(self, fail_subscribe: frozenset = frozenset()):
        self.fail_subscribe = fail_subscribe
        self.routes = {}
        self.handles: list[FakeHandle] = []
        self.closed = False

    async def subscribe(self, spec, on_event, on_error):
        await asyncio.sleep(0)
        if spec.name in self.fail_subscribe:
            raise SubscribeError(f"eth_subscribe {spec.name} rejected")
        handle = FakeHandle(spec.name)
        self.routes[spec.name] = (on_event, on_error)
        self.handles.append(handle)
        return handle

    async def close(self) -> None:
        self.closed = True

    async def emit(self, spec_name: str, events) -> None:
        await self.routes[spec_name][0](events)

    async def fail(self, spec_name: str, error: BaseException) -> None:
        await self.routes[spec_name][1](error)

    async def drop(self, message: str = "socket has been closed") -> None:
        """Every subscription reports the closure concurrently."""
        await asyncio.gather(
            *(on_error(TransportClosedError(message)) for _, on_error in self.routes.values())
        )


class FakeEventSource:
    def __init__(self, fail_connects: int = 0):
        self.fail_connects = fail_connects
        self.fail_always = False
        self.fail_subscribe_once: frozenset = frozenset()
        self.gate: Optional[asyncio.Event] = None
        self.connect_calls = 0
        self.connections: list[FakeConnection] = []

    @property
    def latest(self) -> FakeConnection:
        return self.connections[-1]

    async def connect(self) -> FakeConnection:
        self.connect_calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.fail_always or self.connect_calls <= self.fail_connects:
            raise ConnectError("connection refused")
        conn = FakeConnection(self.fail_subscribe_once)
        self.fail_subscribe_once = frozenset()
        self.connections.append(conn)
        return conn


class CollectSink(LineSink):
    def __init__(self):
        self.lines: list[str] = []
        self.flushed = 0

    def append(self, line: str) -> None:
        self.lines.append(line)

    async def flush(self) -> None:
        self.flushed += 1


def event(**args) -> RawEvent:
    return RawEvent(args=args)


async def _wait_until(predicate, timeout: float = 2.0, interval: float = 0.005) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(interval)


@pytest.fixture
def specs():
    return market_specs()


@pytest.fixture
def source():
    return FakeEventSource()


@pytest.fixture
def sink():
    return CollectSink()


@pytest.fixture
def fast_policy():
    """Millisecond backoff so reconnect paths run quickly."""
    return ReconnectPolicy(max_retries=3, base_delay_ms=1, max_delay_ms=5, multiplier=2.0)


@pytest.fixture
def wait_until():
    return _wait_until


@pytest.fixture
def make_event():
    return event


@pytest.fixture
def log_messages():
    """Capture loguru messages emitted during the test."""
    messages: list[str] = []
    handler_id = logger.add(lambda m: messages.append(m.record["message"]), level="DEBUG")
    yield messages
    logger.remove(handler_id)


@pytest.fixture
def fake_handle():
    return FakeHandle
