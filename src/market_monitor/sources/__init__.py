"""Event source adapters."""

from .abi import decode_log, decode_word
from .websocket import RpcSubscription, WebSocketConnection, WebSocketEventSource

__all__ = [
    "decode_log",
    "decode_word",
    "RpcSubscription",
    "WebSocketConnection",
    "WebSocketEventSource",
]
