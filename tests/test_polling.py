import asyncio
import socket

import aiohttp
import orjson
import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from matchview.datafeed.codec import parse_metrics
from matchview.datafeed.polling import PollingChannel, PollOutcome, PollScheduler
from matchview.engine.coordinator import SyncCoordinator


def metrics_body(total_orders: int) -> bytes:
    return orjson.dumps({
        "totalOrders": total_orders,
        "totalTrades": 1,
        "avgLatencyMicros": 2.5,
        "commodities": {},
    })


def unused_url() -> str:
    sock = socket.socket()
    sock.bind(("127.0.0.1", 0))
    port = sock.getsockname()[1]
    sock.close()
    return f"http://127.0.0.1:{port}/api/metrics"


@pytest.mark.asyncio
async def test_poll_success():
    async def handler(request: web.Request) -> web.Response:
        return web.Response(body=metrics_body(42), content_type="application/json")

    app = web.Application()
    app.router.add_get("/api/metrics", handler)
    async with TestServer(app) as server, aiohttp.ClientSession() as session:
        channel = PollingChannel(session, str(server.make_url("/api/metrics")), parse_metrics)
        outcome = await channel.poll()

    assert outcome.ok
    assert outcome.value.total_orders == 42
    assert channel.polls == 1
    assert channel.failures == 0


@pytest.mark.asyncio
async def test_http_500_keeps_previous_snapshot():
    calls = {"n": 0}

    async def handler(request: web.Request) -> web.Response:
        calls["n"] += 1
        if calls["n"] == 1:
            return web.Response(body=metrics_body(7), content_type="application/json")
        return web.Response(status=500, text="boom")

    app = web.Application()
    app.router.add_get("/api/metrics", handler)
    coord = SyncCoordinator()
    async with TestServer(app) as server, aiohttp.ClientSession() as session:
        channel = PollingChannel(session, str(server.make_url("/api/metrics")), parse_metrics)
        coord.on_metrics_polled(await channel.poll())
        prior = coord.current_state().metrics
        failed = await channel.poll()
        coord.on_metrics_polled(failed)

    assert not failed.ok
    assert failed.error.status == 500
    assert coord.current_state().metrics is prior
    assert coord.current_state().metrics.total_orders == 7
    # Push is still connecting, so the failure surfaces as degraded
    assert coord.current_state().degraded


@pytest.mark.asyncio
async def test_malformed_body_is_a_poll_failure():
    async def handler(request: web.Request) -> web.Response:
        return web.Response(text="<html>oops</html>")

    app = web.Application()
    app.router.add_get("/api/metrics", handler)
    async with TestServer(app) as server, aiohttp.ClientSession() as session:
        channel = PollingChannel(session, str(server.make_url("/api/metrics")), parse_metrics)
        outcome = await channel.poll()

    assert not outcome.ok
    assert "malformed" in str(outcome.error)
    assert channel.failures == 1


@pytest.mark.asyncio
async def test_connection_refused_is_a_poll_failure():
    async with aiohttp.ClientSession() as session:
        channel = PollingChannel(session, unused_url(), parse_metrics, timeout=2.0)
        outcome = await channel.poll()

    assert not outcome.ok
    assert outcome.value is None


@pytest.mark.asyncio
async def test_overlapping_polls_apply_newest_issued():
    release_first = asyncio.Event()
    calls = {"n": 0}

    async def handler(request: web.Request) -> web.Response:
        calls["n"] += 1
        n = calls["n"]
        if n == 1:
            await release_first.wait()
        return web.Response(body=metrics_body(n), content_type="application/json")

    app = web.Application()
    app.router.add_get("/api/metrics", handler)
    coord = SyncCoordinator()
    applied = []

    async with TestServer(app) as server, aiohttp.ClientSession() as session:
        channel = PollingChannel(session, str(server.make_url("/api/metrics")), parse_metrics)

        async def poll_and_apply() -> None:
            outcome = await channel.poll()
            applied.append(outcome.seq)
            coord.on_metrics_polled(outcome)

        first = asyncio.create_task(poll_and_apply())
        while calls["n"] < 1:
            await asyncio.sleep(0.01)
        second = asyncio.create_task(poll_and_apply())
        await second
        assert coord.current_state().metrics.total_orders == 2

        release_first.set()
        await first

    # First-issued completed last and was discarded
    assert applied[0] > applied[1]
    assert coord.current_state().metrics.total_orders == 2
    assert coord.stale_discarded == 1


class FakeChannel:
    url = "fake://metrics"

    def __init__(self, delays):
        self.delays = list(delays)
        self.seq = 0

    async def poll(self) -> PollOutcome:
        self.seq += 1
        seq = self.seq
        await asyncio.sleep(self.delays[(seq - 1) % len(self.delays)])
        return PollOutcome(seq, value=seq)


@pytest.mark.asyncio
async def test_scheduler_overlaps_polls_and_stops_cleanly():
    results = []
    channel = FakeChannel(delays=[0.05])
    scheduler = PollScheduler(channel, interval=0.01, on_result=results.append)

    scheduler.start()
    await asyncio.sleep(0.03)
    # Several polls issued before the first one could complete
    assert channel.seq >= 2
    await asyncio.sleep(0.1)
    scheduler.stop()
    seen = len(results)
    await asyncio.sleep(0.1)

    assert seen >= 1
    assert len(results) == seen
    assert not scheduler.running
    scheduler.stop()


@pytest.mark.asyncio
async def test_scheduler_stop_before_start_is_safe():
    scheduler = PollScheduler(FakeChannel([0]), interval=1.0, on_result=lambda o: None)
    scheduler.stop()
    scheduler.stop()
    assert not scheduler.running


@pytest.mark.asyncio
async def test_poll_on_closed_session_is_a_poll_failure():
    session = aiohttp.ClientSession()
    await session.close()
    channel = PollingChannel(session, "http://127.0.0.1:1/api/metrics", parse_metrics)

    outcome = await channel.poll()

    assert not outcome.ok
    assert "session closed" in str(outcome.error)
    assert channel.failures == 1
