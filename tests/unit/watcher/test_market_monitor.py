"""
End-to-end tests of MarketMonitor with the in-memory event source.
"""

import asyncio

import pytest

from market_monitor.watcher import ConnectionState, MarketMonitor


@pytest.mark.asyncio
async def test_events_flow_across_reconnect(
    source, specs, sink, fast_policy, make_event, wait_until, log_messages
):
    async with MarketMonitor(source, specs, sink, policy=fast_policy, poll_interval=0.01) as mon:
        await source.latest.emit("NFTListed", [make_event(tokenId=1, seller="0xs", price=100)])
        await wait_until(lambda: len(sink.lines) == 1)

        # both subscriptions report the closure; one reconnect follows
        await source.latest.drop()
        await wait_until(
            lambda: source.connect_calls == 2 and mon.manager.state is ConnectionState.CONNECTED
        )
        assert mon.health().reconnect_attempts == 0

        await source.latest.emit(
            "NFTPurchased", [make_event(tokenId=1, buyer="0xb", seller="0xs", price=100)]
        )
        await wait_until(lambda: len(sink.lines) == 2)

    assert "[listed] tokenId: 1, seller: 0xs, price: 100 Wei" in sink.lines[0]
    assert "[purchased] tokenId: 1, buyer: 0xb, seller: 0xs, price: 100 Wei" in sink.lines[1]
    assert mon.manager.state is ConnectionState.TERMINATED
    assert sum("Reconnect attempt" in m for m in log_messages) == 1


@pytest.mark.asyncio
async def test_run_exits_1_when_budget_exhausted(source, specs, sink, fast_policy, log_messages):
    source.fail_always = True
    mon = MarketMonitor(source, specs, sink, policy=fast_policy, poll_interval=0.01)

    code = await asyncio.wait_for(mon.run(install_signals=False), timeout=2.0)

    assert code == 1
    assert source.connect_calls == 1 + fast_policy.max_retries
    assert any("giving up" in m for m in log_messages)
    assert sink.flushed == 1


@pytest.mark.asyncio
async def test_application_errors_keep_connection(
    source, specs, sink, fast_policy, make_event, wait_until, log_messages
):
    async with MarketMonitor(source, specs, sink, policy=fast_policy, poll_interval=0.01) as mon:
        await source.latest.fail("NFTListed", ValueError("callback blew up"))
        await source.latest.emit("NFTListed", [make_event(tokenId=9, seller="0xs", price=1)])
        await wait_until(lambda: len(sink.lines) == 1)

        assert mon.manager.state is ConnectionState.CONNECTED
        assert source.connect_calls == 1
    assert any("callback blew up" in m for m in log_messages)
