"""
Websocket JSON-RPC event source (``eth_subscribe`` log subscriptions).

One ``WebSocketConnection`` multiplexes every subscription over a single
socket. A reader task routes ``eth_subscription`` notifications to the
matching subscription's ``on_event`` and resolves request futures by id.
When the socket closes, every live subscription's ``on_error`` receives a
``TransportClosedError`` concurrently, as the connection manager expects.
"""

from __future__ import annotations

import asyncio
import itertools
import json
from dataclasses import dataclass
from typing import Any, Optional

import websockets
from loguru import logger

from ..errors import JsonRpcError, SubscribeError, TransportClosedError, map_transport_error
from ..models import SubscriptionSpec
from ..watcher.types import ErrorCallback, EventCallback
from .abi import decode_log


@dataclass
class _Route:
    spec: SubscriptionSpec
    on_event: EventCallback
    on_error: ErrorCallback


class RpcSubscription:
    """Handle for one ``eth_subscribe`` subscription."""

    def __init__(self, conn: "WebSocketConnection", subscription_id: str, spec_name: str):
        self._conn = conn
        self.subscription_id = subscription_id
        self.spec_name = spec_name

    async def unsubscribe(self) -> None:
        await self._conn.unsubscribe(self.subscription_id)

    def __repr__(self) -> str:
        return f"RpcSubscription({self.spec_name!r}, id={self.subscription_id!r})"


class WebSocketConnection:
    def __init__(self, ws: Any, *, request_timeout: float = 10.0):
        self._ws = ws
        self._timeout = request_timeout
        self._ids = itertools.count(1)
        self._pending: dict[int, asyncio.Future[Any]] = {}
        self._routes: dict[str, _Route] = {}
        self._reader: Optional[asyncio.Task[None]] = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def subscription_count(self) -> int:
        return len(self._routes)

    def start(self) -> None:
        self._reader = asyncio.get_running_loop().create_task(self._read_loop())

    async def request(self, method: str, params: list[Any]) -> Any:
        if self._closed:
            raise TransportClosedError("socket has been closed")
        req_id = next(self._ids)
        fut: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._pending[req_id] = fut
        try:
            await self._ws.send(
                json.dumps({"jsonrpc": "2.0", "id": req_id, "method": method, "params": params})
            )
            return await asyncio.wait_for(fut, timeout=self._timeout)
        except websockets.exceptions.ConnectionClosed as e:
            raise TransportClosedError(f"socket has been closed ({e})") from e
        finally:
            self._pending.pop(req_id, None)

    async def subscribe(
        self,
        spec: SubscriptionSpec,
        on_event: EventCallback,
        on_error: ErrorCallback,
    ) -> RpcSubscription:
        params = ["logs", {"address": spec.address, "topics": [spec.event_topic]}]
        try:
            sub_id = await self.request("eth_subscribe", params)
        except JsonRpcError as e:
            raise SubscribeError(f"eth_subscribe {spec.name} rejected: {e}") from e
        except Exception as e:
            raise map_transport_error(e, during="subscribe") from e
        if not isinstance(sub_id, str):
            raise SubscribeError(f"eth_subscribe {spec.name} returned {sub_id!r}")

        self._routes[sub_id] = _Route(spec, on_event, on_error)
        logger.debug(f"Subscribed {spec.name} ({spec.event_topic}) as {sub_id}")
        return RpcSubscription(self, sub_id, spec.name)

    async def unsubscribe(self, subscription_id: str) -> None:
        """Drop the route and tell the server; server-side state dies with a closed socket."""
        if self._routes.pop(subscription_id, None) is None or self._closed:
            return
        ok = await self.request("eth_unsubscribe", [subscription_id])
        if ok is not True:
            raise JsonRpcError(f"eth_unsubscribe {subscription_id} returned {ok!r}")

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._routes.clear()
        try:
            await self._ws.close()
        finally:
            if self._reader is not None and self._reader is not asyncio.current_task():
                self._reader.cancel()
                await asyncio.wait([self._reader])
            self._fail_pending(TransportClosedError("socket has been closed"))

    # ---------------------------
    # Reader
    # ---------------------------

    async def _read_loop(self) -> None:
        reason = "socket has been closed"
        try:
            async for raw in self._ws:
                try:
                    await self._on_message(raw)
                except Exception as e:
                    logger.warning(f"Dropping malformed frame: {type(e).__name__}: {e}")
        except websockets.exceptions.ConnectionClosed as e:
            reason = f"socket has been closed ({e})"
        except Exception as e:
            logger.opt(exception=e).error(f"WebSocket reader failed: {e}")
            reason = f"socket has been closed (reader failed: {type(e).__name__})"
            await self._abort_socket()
        finally:
            await self._notify_closed(reason)

    async def _abort_socket(self) -> None:
        try:
            await self._ws.close()
        except Exception as e:
            logger.debug(f"Error closing websocket after reader failure: {e}")

    async def _notify_closed(self, reason: str) -> None:
        if self._closed:
            return  # closed by us, nobody to notify
        self._closed = True
        error = TransportClosedError(reason)
        self._fail_pending(error)

        routes = list(self._routes.values())
        logger.debug(f"Transport closed; notifying {len(routes)} subscription(s)")
        results = await asyncio.gather(*(r.on_error(error) for r in routes), return_exceptions=True)
        for route, result in zip(routes, results):
            if isinstance(result, Exception):
                logger.warning(f"{route.spec.name} on_error callback failed: {result}")

    async def _on_message(self, raw: str | bytes) -> None:
        try:
            msg = json.loads(raw)
        except (TypeError, ValueError):
            logger.warning(f"Ignoring non-JSON frame ({len(raw)} bytes)")
            return
        if not isinstance(msg, dict):
            return

        if msg.get("method") == "eth_subscription":
            await self._on_notification(msg.get("params") or {})
            return

        fut = self._pending.get(msg.get("id"))
        if fut is None or fut.done():
            return
        if "error" in msg:
            err = msg["error"] or {}
            fut.set_exception(JsonRpcError(str(err.get("message", err)), err.get("code")))
        else:
            fut.set_result(msg.get("result"))

    async def _on_notification(self, params: dict[str, Any]) -> None:
        route = self._routes.get(params.get("subscription"))
        if route is None:
            logger.debug(f"Notification for unknown subscription {params.get('subscription')}")
            return
        result = params.get("result")
        logs = result if isinstance(result, list) else [result]
        events = [decode_log(route.spec, log) for log in logs]
        try:
            await route.on_event(events)
        except Exception as e:
            await route.on_error(e)

    def _fail_pending(self, error: Exception) -> None:
        for fut in self._pending.values():
            if not fut.done():
                fut.set_exception(error)
        self._pending.clear()


class WebSocketEventSource:
    """Opens one JSON-RPC websocket per connection epoch."""

    def __init__(
        self,
        url: str,
        *,
        request_timeout: float = 10.0,
        open_timeout: float = 10.0,
        ping_interval: float | None = 20.0,
        ping_timeout: float | None = 20.0,
    ):
        self.url = url
        self._request_timeout = request_timeout
        self._open_timeout = open_timeout
        self._ping_interval = ping_interval
        self._ping_timeout = ping_timeout

    async def connect(self) -> WebSocketConnection:
        try:
            ws = await websockets.connect(
                self.url,
                open_timeout=self._open_timeout,
                ping_interval=self._ping_interval,
                ping_timeout=self._ping_timeout,
                close_timeout=5,
            )
        except Exception as e:
            raise map_transport_error(e, during="connect") from e

        conn = WebSocketConnection(ws, request_timeout=self._request_timeout)
        conn.start()
        logger.debug(f"WebSocket opened to {self.url}")
        return conn
