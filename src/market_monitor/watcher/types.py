from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Protocol, Sequence, Union

from ..models import RawEvent, SubscriptionSpec


class ConnectionState(str, Enum):
    """Lifecycle of the single transport connection."""

    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    TERMINATED = "terminated"


EventCallback = Callable[[Sequence[RawEvent]], Awaitable[None]]
ErrorCallback = Callable[[BaseException], Awaitable[None]]
BackpressureCallback = Callable[[], Awaitable[None]]


class SubscriptionHandle(Protocol):
    """Capability returned by a connection for one live subscription."""

    async def unsubscribe(self) -> None: ...


class Connection(Protocol):
    async def subscribe(
        self,
        spec: SubscriptionSpec,
        on_event: EventCallback,
        on_error: ErrorCallback,
    ) -> SubscriptionHandle: ...

    async def close(self) -> None: ...


class EventSource(Protocol):
    """Remote event source. ``connect`` raises ConnectError on failure."""

    async def connect(self) -> Connection: ...


class LineSink(ABC):
    """Destination for rendered log lines.

    ``append`` must be safe to call from loguru handlers (synchronous);
    ``write`` is the async batch entry point used by the dispatcher.
    """

    @abstractmethod
    def append(self, line: str) -> None: ...

    async def write(self, lines: Sequence[str]) -> None:
        for line in lines:
            self.append(line)

    async def flush(self) -> None:
        return None


@dataclass(frozen=True)
class EventBatch:
    """Events delivered by one subscription in one notification."""

    spec_name: str
    epoch: int
    events: tuple[RawEvent, ...]


@dataclass(frozen=True)
class StreamFailure:
    """Error reported by one subscription's ``on_error`` callback."""

    spec_name: str
    epoch: int
    error: BaseException


ChannelMessage = Union[EventBatch, StreamFailure]
