"""Tests for the single-flight TTL cache."""

import asyncio

import pytest

from daily_tally.services.single_flight import SingleFlightCache


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class CountingLoader:
    """Loader that counts calls and can be held open until released."""

    def __init__(self):
        self.calls = 0
        self.release = asyncio.Event()
        self.release.set()
        self.fail_with = None

    async def __call__(self):
        self.calls += 1
        await self.release.wait()
        if self.fail_with is not None:
            raise self.fail_with
        return {"value": self.calls}


@pytest.fixture
def clock():
    return FakeClock()


class TestSingleFlightCache:
    """Test SingleFlightCache."""

    @pytest.mark.asyncio
    async def test_cold_concurrent_callers_share_one_load(self, clock):
        """Test N concurrent callers on a cold cache trigger exactly one load."""
        loader = CountingLoader()
        loader.release.clear()
        cache = SingleFlightCache(loader, ttl_seconds=5.0, clock=clock)

        waiters = [asyncio.ensure_future(cache.get()) for _ in range(20)]
        await asyncio.sleep(0)
        loader.release.set()
        results = await asyncio.gather(*waiters)

        assert loader.calls == 1
        assert cache.loads == 1
        assert all(result is results[0] for result in results)

    @pytest.mark.asyncio
    async def test_reads_within_ttl_are_identical(self, clock):
        """Test two reads inside the TTL return the same value with one load."""
        loader = CountingLoader()
        cache = SingleFlightCache(loader, ttl_seconds=5.0, clock=clock)

        first = await cache.get()
        clock.advance(4.9)
        second = await cache.get()

        assert first is second
        assert loader.calls == 1
        assert cache.hits == 1

    @pytest.mark.asyncio
    async def test_expired_entry_reloads(self, clock):
        """Test a read after the TTL starts a new load."""
        loader = CountingLoader()
        cache = SingleFlightCache(loader, ttl_seconds=5.0, clock=clock)

        await cache.get()
        clock.advance(5.0)
        result = await cache.get()

        assert loader.calls == 2
        assert result == {"value": 2}

    @pytest.mark.asyncio
    async def test_failure_reaches_all_waiters_and_is_not_cached(self, clock):
        """Test a failed load propagates to every waiter and the next call retries."""
        loader = CountingLoader()
        loader.release.clear()
        loader.fail_with = RuntimeError("upstream down")
        cache = SingleFlightCache(loader, ttl_seconds=5.0, clock=clock)

        waiters = [asyncio.ensure_future(cache.get()) for _ in range(5)]
        await asyncio.sleep(0)
        loader.release.set()
        results = await asyncio.gather(*waiters, return_exceptions=True)

        assert loader.calls == 1
        assert all(isinstance(r, RuntimeError) for r in results)
        assert cache.peek() is None

        loader.fail_with = None
        assert await cache.get() == {"value": 2}

    @pytest.mark.asyncio
    async def test_cancelled_waiter_does_not_cancel_shared_load(self, clock):
        """Test cancelling one waiter leaves the load running for the others."""
        loader = CountingLoader()
        loader.release.clear()
        cache = SingleFlightCache(loader, ttl_seconds=5.0, clock=clock)

        cancelled = asyncio.ensure_future(cache.get())
        survivor = asyncio.ensure_future(cache.get())
        await asyncio.sleep(0)
        cancelled.cancel()
        loader.release.set()

        assert await survivor == {"value": 1}
        assert cancelled.cancelled()
        assert loader.calls == 1

    @pytest.mark.asyncio
    async def test_refresh_ignores_freshness(self, clock):
        """Test refresh always loads, even when the value is fresh."""
        loader = CountingLoader()
        cache = SingleFlightCache(loader, ttl_seconds=5.0, clock=clock)

        await cache.get()
        result = await cache.refresh()

        assert loader.calls == 2
        assert result == {"value": 2}
        assert cache.peek() == {"value": 2}

    @pytest.mark.asyncio
    async def test_invalidate_forces_reload(self, clock):
        """Test invalidate clears the entry so the next get loads."""
        loader = CountingLoader()
        cache = SingleFlightCache(loader, ttl_seconds=5.0, clock=clock)

        await cache.get()
        cache.invalidate()
        assert cache.peek() is None

        await cache.get()
        assert loader.calls == 2

    @pytest.mark.asyncio
    async def test_invalidate_during_load_discards_result(self, clock):
        """Test a load that was in flight across an invalidate is not cached."""
        loader = CountingLoader()
        loader.release.clear()
        cache = SingleFlightCache(loader, ttl_seconds=5.0, clock=clock)

        waiter = asyncio.ensure_future(cache.get())
        await asyncio.sleep(0)
        cache.invalidate()
        loader.release.set()

        assert await waiter == {"value": 1}
        assert cache.peek() is None

    @pytest.mark.asyncio
    async def test_get_after_invalidate_starts_new_load(self, clock):
        """Test a reader arriving after invalidate does not join the older load."""
        versions = iter(["before-write", "after-write"])
        release = asyncio.Event()

        async def loader():
            value = next(versions)
            await release.wait()
            return value

        cache = SingleFlightCache(loader, ttl_seconds=5.0, clock=clock)

        stale = asyncio.ensure_future(cache.get())
        await asyncio.sleep(0)
        cache.invalidate()
        fresh = asyncio.ensure_future(cache.get())
        await asyncio.sleep(0)
        release.set()

        assert await stale == "before-write"
        assert await fresh == "after-write"
        assert cache.loads == 2
        assert cache.peek() == "after-write"

    @pytest.mark.asyncio
    async def test_update_keeps_fetch_time(self, clock):
        """Test update patches the value and it still expires on schedule."""
        loader = CountingLoader()
        cache = SingleFlightCache(loader, ttl_seconds=5.0, clock=clock)

        await cache.get()
        clock.advance(3.0)
        assert cache.update(lambda v: {"value": v["value"] + 10}) is True
        assert cache.peek() == {"value": 11}

        clock.advance(2.0)
        assert cache.peek() is None

    def test_update_without_value(self, clock):
        """Test update reports False when nothing is cached."""
        cache = SingleFlightCache(CountingLoader(), ttl_seconds=5.0, clock=clock)
        assert cache.update(lambda v: v) is False
