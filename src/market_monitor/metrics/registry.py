"""
Prometheus collectors for the monitor, registered in the global REGISTRY.
Call ``start_metrics_server`` at startup to expose them over HTTP.
"""

from prometheus_client import Counter, Gauge, start_http_server

from loguru import logger


EVENTS_TOTAL = Counter(
    "monitor_events_total",
    "Events handled by the dispatcher",
    ["spec", "outcome"],
)

RECONNECTS_TOTAL = Counter(
    "monitor_reconnects_total",
    "Reconnect attempts scheduled",
)

TEARDOWN_TOTAL = Counter(
    "monitor_teardown_total",
    "Subscription handle releases",
    ["outcome"],
)

CONNECTION_STATE = Gauge(
    "monitor_connection_state",
    "1 for the current connection state, 0 otherwise",
    ["state"],
)

CHANNEL_DEPTH = Gauge(
    "monitor_channel_depth",
    "Messages waiting in the event channel",
)


def record_state(state: str) -> None:
    from market_monitor.watcher.types import ConnectionState

    for s in ConnectionState:
        CONNECTION_STATE.labels(state=s.value).set(1 if s.value == state else 0)


def start_metrics_server(port: int) -> None:
    start_http_server(port)
    logger.info(f"Prometheus metrics exposed on :{port}")
