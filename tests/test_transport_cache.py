import anyio
import pytest
from mcp.server.fastmcp import FastMCP
from mcp.server.streamable_http import StreamableHTTPServerTransport

from teams_mcp.transport_cache import TransportSessionCache

from .helpers import wait_for


class CountingTransport(StreamableHTTPServerTransport):
    def __init__(self, session_id):
        super().__init__(mcp_session_id=session_id, is_json_response_enabled=True)
        self.terminate_calls = 0

    async def terminate(self):
        self.terminate_calls += 1
        await super().terminate()


def make_cache(timer, maxsize=3, ttl=30.0, drain_timeout=5.0):
    return TransportSessionCache(
        lambda: FastMCP("test"),
        maxsize=maxsize,
        ttl=ttl,
        timer=timer,
        transport_factory=CountingTransport,
        reap_interval=0.05,
        drain_timeout=drain_timeout,
    )


@pytest.mark.asyncio
async def test_acquire_requires_running_cache(timer):
    with pytest.raises(RuntimeError):
        await make_cache(timer).acquire("abc")


@pytest.mark.asyncio
async def test_lookup_by_session_id(timer):
    cache = make_cache(timer)
    async with cache.run():
        first = await cache.acquire("abc")
        again = await cache.acquire("abc")
        other = await cache.acquire("xyz")

        assert first is again
        assert first is not other
        assert first.transport.mcp_session_id == "abc"
        assert len(cache) == 2
        assert cache.acquired_count == 3


@pytest.mark.asyncio
async def test_missing_id_mints_a_fresh_session(timer):
    cache = make_cache(timer)
    async with cache.run():
        a = await cache.acquire()
        b = await cache.acquire()
        assert a.id != b.id
        assert not a.resumed
        assert a.id in cache


@pytest.mark.asyncio
async def test_unknown_id_resumes(timer):
    cache = make_cache(timer)
    async with cache.run():
        assert (await cache.acquire("known-to-client")).resumed
        assert not (await cache.acquire("fresh", resume=False)).resumed


@pytest.mark.asyncio
async def test_capacity_overflow_evicts_least_recently_used(timer):
    cache = make_cache(timer, maxsize=3)
    async with cache.run():
        sessions = [await cache.acquire(f"s{i}") for i in range(3)]
        # touch s0 so s1 becomes the oldest
        await cache.acquire("s0")
        await cache.acquire("s3")

        assert len(cache) == 3
        assert "s1" not in cache
        assert "s0" in cache
        evicted = sessions[1]
        await wait_for(lambda: evicted.closed and evicted.transport.terminate_calls == 1)
        assert evicted.transport.is_terminated
        assert sessions[0].transport.terminate_calls == 0


@pytest.mark.asyncio
async def test_entries_expire_after_ttl(timer):
    cache = make_cache(timer, ttl=30.0)
    async with cache.run():
        session = await cache.acquire("old")
        timer.advance(10)
        await cache.acquire("old")
        timer.advance(21)

        cache.expire()
        assert "old" not in cache
        await wait_for(lambda: session.transport.terminate_calls == 1)

        replacement = await cache.acquire("old")
        assert replacement is not session
        assert replacement.resumed


@pytest.mark.asyncio
async def test_reaper_expires_idle_entries(timer):
    cache = make_cache(timer, ttl=5.0)
    async with cache.run():
        session = await cache.acquire("idle")
        timer.advance(6)
        await wait_for(lambda: session.closed)
        assert len(cache) == 0
        assert session.transport.terminate_calls == 1


@pytest.mark.asyncio
async def test_discard_closes_once(timer):
    cache = make_cache(timer)
    async with cache.run():
        session = await cache.acquire("gone")
        cache.discard(session)
        cache.discard(session)
        assert "gone" not in cache
        await wait_for(lambda: session.closed)
        await anyio.sleep(0.05)
        assert session.transport.terminate_calls == 1


@pytest.mark.asyncio
async def test_terminated_transport_is_replaced(timer):
    cache = make_cache(timer)
    async with cache.run():
        session = await cache.acquire("t")
        await session.transport.terminate()
        replacement = await cache.acquire("t")
        assert replacement is not session


@pytest.mark.asyncio
async def test_teardown_closes_everything_exactly_once(timer):
    cache = make_cache(timer)
    async with cache.run():
        sessions = [await cache.acquire(f"s{i}") for i in range(3)]
        cache.discard(sessions[0])
        await wait_for(lambda: sessions[0].closed)

    assert len(cache) == 0
    assert all(s.closed for s in sessions)
    assert [s.transport.terminate_calls for s in sessions] == [1, 1, 1]


@pytest.mark.asyncio
async def test_concurrent_acquire_creates_one_session(timer):
    cache = make_cache(timer)
    found = []

    async def grab():
        found.append(await cache.acquire("shared"))

    async with cache.run():
        async with anyio.create_task_group() as tg:
            for _ in range(5):
                tg.start_soon(grab)
        assert len({id(s) for s in found}) == 1
        assert len(cache) == 1


@pytest.mark.asyncio
async def test_expired_session_stays_open_while_a_request_runs(timer):
    cache = make_cache(timer, ttl=1.0)
    async with cache.run():
        session = await cache.acquire("busy")
        with session.in_use():
            timer.advance(2)
            cache.expire()
            assert "busy" not in cache
            await anyio.sleep(0.1)
            assert not session.closed
            assert session.transport.terminate_calls == 0

        await wait_for(lambda: session.closed)
        assert session.transport.terminate_calls == 1
        assert await cache.acquire("busy") is not session


@pytest.mark.asyncio
async def test_waiting_for_running_requests_is_bounded(timer):
    cache = make_cache(timer, ttl=1.0, drain_timeout=0.1)
    async with cache.run():
        session = await cache.acquire("stuck")
        with session.in_use():
            timer.advance(2)
            cache.expire()
            await wait_for(lambda: session.closed)
            assert session.transport.terminate_calls == 1
