"""Event watcher (connection lifecycle + dispatch)

Resilient subscription pipeline:
- ReconnectPolicy with bounded exponential backoff
- Configurable transport-closure classifier
- SubscriptionRegistry with idempotent teardown
- ConnectionManager state machine (single reconnect per closure storm)
- EventChannel + EventDispatcher (single dispatch loop, per-event isolation)
- ShutdownCoordinator (signals, budget exhaustion)
- FileSink (append-only daily log mirrored to the terminal)
"""

from .types import (
    ConnectionState,
    EventSource,
    Connection,
    SubscriptionHandle,
    LineSink,
    EventBatch,
    StreamFailure,
)
from .policy import (
    ReconnectPolicy,
    default_disconnect_classifier,
    make_disconnect_classifier,
)
from .channel import EventChannel, ChannelClosedError
from .registry import SubscriptionRegistry
from .connection import ConnectionManager, ConnectionHealth
from .dispatcher import EventDispatcher, DISPATCH_ERROR_CATEGORY
from .shutdown import ShutdownCoordinator
from .sink import FileSink
from .monitor import MarketMonitor

__all__ = [
    # types
    "ConnectionState",
    "EventSource",
    "Connection",
    "SubscriptionHandle",
    "LineSink",
    "EventBatch",
    "StreamFailure",
    "ConnectionHealth",
    # policies
    "ReconnectPolicy",
    "default_disconnect_classifier",
    "make_disconnect_classifier",
    # runtime
    "EventChannel",
    "ChannelClosedError",
    "SubscriptionRegistry",
    "ConnectionManager",
    "EventDispatcher",
    "DISPATCH_ERROR_CATEGORY",
    "ShutdownCoordinator",
    "MarketMonitor",
    # tooling
    "FileSink",
]
