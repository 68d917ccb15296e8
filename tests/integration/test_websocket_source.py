"""
Integration tests for the websocket JSON-RPC source against a local server.
"""

import contextlib
import itertools
import json

import pytest
import websockets

from market_monitor.errors import ConnectError, SubscribeError, TransportClosedError
from market_monitor.sources import WebSocketEventSource


class RpcServer:
    """Tiny eth_subscribe endpoint; notifications are pushed explicitly."""

    def __init__(self):
        self.url = ""
        self.connections = []
        self.requests = []
        self.reject = set()
        self._ids = itertools.count(1)

    async def handler(self, ws):
        self.connections.append(ws)
        async for raw in ws:
            req = json.loads(raw)
            self.requests.append(req)
            if req["method"] == "eth_subscribe" and req["params"][1]["topics"][0] in self.reject:
                reply = {"error": {"code": -32602, "message": "invalid topic"}}
            elif req["method"] == "eth_subscribe":
                reply = {"result": f"0x{next(self._ids):x}"}
            else:
                reply = {"result": True}
            await ws.send(json.dumps({"jsonrpc": "2.0", "id": req["id"], **reply}))

    async def push(self, subscription_id, log):
        msg = {
            "jsonrpc": "2.0",
            "method": "eth_subscription",
            "params": {"subscription": subscription_id, "result": log},
        }
        await self.connections[-1].send(json.dumps(msg))

    async def send_raw(self, frame):
        await self.connections[-1].send(frame if isinstance(frame, str) else json.dumps(frame))


@contextlib.asynccontextmanager
async def rpc_server():
    state = RpcServer()
    async with websockets.serve(state.handler, "127.0.0.1", 0) as server:
        port = list(server.sockets)[0].getsockname()[1]
        state.url = f"ws://127.0.0.1:{port}"
        yield state


def listed_log(spec, token_id=5, price=42):
    return {
        "address": spec.address.lower(),
        "topics": [spec.event_topic, f"0x{token_id:064x}", "0x" + "00" * 12 + "22" * 20],
        "data": f"0x{price:064x}",
        "blockNumber": "0x1",
        "transactionHash": "0xabc",
        "logIndex": "0x0",
    }


@pytest.mark.asyncio
async def test_subscribe_receive_and_unsubscribe(specs, wait_until):
    listed = specs[0]
    batches, errors = [], []

    async def on_event(events):
        batches.append(events)

    async def on_error(exc):
        errors.append(exc)

    async with rpc_server() as srv:
        conn = await WebSocketEventSource(srv.url, request_timeout=2.0).connect()
        handle = await conn.subscribe(listed, on_event, on_error)

        assert srv.requests[0]["method"] == "eth_subscribe"
        assert srv.requests[0]["params"] == [
            "logs",
            {"address": listed.address, "topics": [listed.event_topic]},
        ]

        await srv.push(handle.subscription_id, listed_log(listed))
        await wait_until(lambda: len(batches) == 1)
        (event,) = batches[0]
        assert event.args == {"tokenId": 5, "seller": "0x" + "22" * 20, "price": 42}
        assert event.transaction_hash == "0xabc"

        await handle.unsubscribe()
        assert srv.requests[-1]["method"] == "eth_unsubscribe"
        assert srv.requests[-1]["params"] == [handle.subscription_id]
        assert conn.subscription_count == 0

        await conn.close()
        assert conn.closed
    assert errors == []


@pytest.mark.asyncio
async def test_server_close_notifies_every_subscription(specs, wait_until):
    errors = []

    async def on_event(events):
        pass

    async def on_error(exc):
        errors.append(exc)

    async with rpc_server() as srv:
        conn = await WebSocketEventSource(srv.url, request_timeout=2.0).connect()
        handles = [await conn.subscribe(s, on_event, on_error) for s in specs]

        await srv.connections[-1].close()
        await wait_until(lambda: len(errors) == 2)

        assert all(isinstance(e, TransportClosedError) for e in errors)
        assert all("socket has been closed" in str(e) for e in errors)
        assert conn.closed

        # releasing handles on a dead socket sends nothing
        sent = len(srv.requests)
        for h in handles:
            await h.unsubscribe()
        assert len(srv.requests) == sent
        await conn.close()


@pytest.mark.asyncio
async def test_malformed_frames_do_not_stall_the_stream(specs, wait_until, log_messages):
    listed = specs[0]
    batches, errors = [], []

    async def on_event(events):
        batches.append(events)

    async def on_error(exc):
        errors.append(exc)

    async with rpc_server() as srv:
        conn = await WebSocketEventSource(srv.url, request_timeout=2.0).connect()
        handle = await conn.subscribe(listed, on_event, on_error)

        await srv.push(handle.subscription_id, listed_log(listed) | {"transactionHash": 12345})
        await srv.send_raw({"jsonrpc": "2.0", "id": [1], "result": True})
        await srv.send_raw({"jsonrpc": "2.0", "method": "eth_subscription", "params": [1]})
        await srv.send_raw("not json")
        await srv.push(handle.subscription_id, listed_log(listed, token_id=6))

        await wait_until(lambda: len(batches) == 2)
        assert batches[0][0].args["tokenId"] == 5
        assert batches[0][0].transaction_hash is None
        assert batches[1][0].args["tokenId"] == 6
        assert errors == []
        assert not conn.closed
        assert sum("Dropping malformed frame" in m for m in log_messages) == 2

        # the connection still serves requests
        await handle.unsubscribe()
        assert srv.requests[-1]["method"] == "eth_unsubscribe"
        await conn.close()


@pytest.mark.asyncio
async def test_callback_failure_is_routed_to_on_error(specs, wait_until):
    listed = specs[0]
    errors = []

    async def on_event(events):
        raise ValueError("handler exploded")

    async def on_error(exc):
        errors.append(exc)

    async with rpc_server() as srv:
        conn = await WebSocketEventSource(srv.url, request_timeout=2.0).connect()
        handle = await conn.subscribe(listed, on_event, on_error)
        await srv.push(handle.subscription_id, listed_log(listed))
        await wait_until(lambda: len(errors) == 1)
        assert isinstance(errors[0], ValueError)
        assert not conn.closed
        await conn.close()


@pytest.mark.asyncio
async def test_rejected_subscribe_raises(specs):
    listed = specs[0]

    async def noop(_):
        pass

    async with rpc_server() as srv:
        srv.reject.add(listed.event_topic)
        conn = await WebSocketEventSource(srv.url, request_timeout=2.0).connect()
        with pytest.raises(SubscribeError, match="invalid topic"):
            await conn.subscribe(listed, noop, noop)
        assert conn.subscription_count == 0
        await conn.close()


@pytest.mark.asyncio
async def test_connect_refused_raises_connect_error():
    source = WebSocketEventSource("ws://127.0.0.1:1", open_timeout=2.0)
    with pytest.raises(ConnectError):
        await source.connect()
