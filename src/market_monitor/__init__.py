"""
Market Monitor

Keeps websocket subscriptions to marketplace contract events alive across
transport failures and writes every event as one timestamped line to a
daily log file mirrored on the terminal.

Usage:
    from market_monitor import MarketMonitor, FileSink, market_specs
    from market_monitor.sources import WebSocketEventSource

    sink = FileSink.for_directory("logs")
    monitor = MarketMonitor(WebSocketEventSource(url), market_specs(), sink)
    exit_code = await monitor.run()
"""

from .models import FieldSpec, SubscriptionSpec, RawEvent
from .specs import market_specs, load_specs
from .watcher import (
    ConnectionState,
    ReconnectPolicy,
    SubscriptionRegistry,
    ConnectionManager,
    EventDispatcher,
    ShutdownCoordinator,
    MarketMonitor,
    FileSink,
)

__version__ = "1.0.0"
__all__ = [
    "FieldSpec",
    "SubscriptionSpec",
    "RawEvent",
    "market_specs",
    "load_specs",
    "ConnectionState",
    "ReconnectPolicy",
    "SubscriptionRegistry",
    "ConnectionManager",
    "EventDispatcher",
    "ShutdownCoordinator",
    "MarketMonitor",
    "FileSink",
]
