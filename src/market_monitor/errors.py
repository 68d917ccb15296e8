"""
Custom exceptions for the market monitor.

Provides a structured error taxonomy so transport failures, subscription
setup failures and application-level event errors are never conflated.
"""

import asyncio


class MonitorError(Exception):
    """Base error for the market monitor."""

    pass


class ConnectError(MonitorError):
    """Transport could not be established."""

    pass


class SubscribeError(MonitorError):
    """A subscription could not be registered on an open connection."""

    pass


class TransportClosedError(MonitorError):
    """The underlying transport closed; all subscriptions on it are dead."""

    pass


class InvariantViolation(MonitorError):
    """Internal lifecycle invariant broken (e.g. registering over live handles)."""

    pass


class DecodeError(MonitorError):
    """A raw notification could not be decoded against its subscription spec."""

    pass


class ConfigError(MonitorError):
    """Unrecoverable startup configuration error."""

    pass


def map_transport_error(e: Exception, *, during: str = "connect") -> MonitorError:
    import websockets.exceptions as W

    if isinstance(e, MonitorError):
        return e
    if isinstance(e, W.ConnectionClosed):
        return TransportClosedError(f"socket has been closed ({e})")
    if isinstance(e, (asyncio.TimeoutError, TimeoutError)):
        msg = f"{during} timed out"
    else:
        msg = f"{during} failed: {type(e).__name__}: {e}"
    if during == "subscribe":
        return SubscribeError(msg)
    return ConnectError(msg)


class JsonRpcError(MonitorError):
    """Error object returned by the remote JSON-RPC endpoint."""

    def __init__(self, message: str, code: int | None = None):
        super().__init__(message if code is None else f"{message} (code {code})")
        self.code = code
