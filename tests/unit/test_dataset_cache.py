"""Unit tests for DatasetCache refill, staleness and single-flight behaviour."""

import asyncio

import pytest

from app.core.exceptions.exceptions import UpstreamHttpError, UpstreamTimeoutError
from app.services.dataset_cache import DatasetCache


def _cache(client, clock, **kwargs):
    params = dict(ttl_seconds=3600, page_size=10, concurrency=5, max_records=10_000, retry_cooldown=30, clock=clock)
    params.update(kwargs)
    return DatasetCache(client, **params)


class TestRefill:

    @pytest.mark.asyncio
    async def test_first_get_fetches_whole_dataset_in_order(self, make_client, records_factory, clock):
        records = records_factory(47)
        client = make_client(records)
        cache = _cache(client, clock)

        result = await cache.get_all()

        assert list(result) == records
        assert sorted(c["offset"] for c in client.calls) == [0, 10, 20, 30, 40]
        assert cache.refill_count == 1

    @pytest.mark.asyncio
    async def test_small_dataset_needs_single_call(self, lumpini_client, clock):
        cache = _cache(lumpini_client, clock)

        result = await cache.get_all()

        assert len(result) == 3
        assert len(lumpini_client.calls) == 1

    @pytest.mark.asyncio
    async def test_stops_on_short_page_when_total_is_unknown(self, make_client, records_factory, clock):
        client = make_client(records_factory(25))
        original = client.fetch_page

        def without_total(offset, limit, search=None):
            page = original(offset, limit, search)
            return type(page)(records=page.records, total=None, offset=page.offset)

        client.fetch_page = without_total
        cache = _cache(client, clock, concurrency=2)

        result = await cache.get_all()

        assert len(result) == 25
        # first page, then one batch of two where the second is short
        assert sorted(c["offset"] for c in client.calls) == [0, 10, 20]

    @pytest.mark.asyncio
    async def test_max_records_ceiling_truncates(self, make_client, records_factory, clock):
        client = make_client(records_factory(100))
        cache = _cache(client, clock, max_records=35)

        result = await cache.get_all()

        assert len(result) == 35
        assert max(c["offset"] for c in client.calls) == 30

    @pytest.mark.asyncio
    async def test_fan_out_is_bounded_by_concurrency(self, make_client, records_factory, clock):
        client = make_client(records_factory(200), delay=0.02)
        cache = _cache(client, clock, page_size=5, concurrency=3)

        result = await cache.get_all()

        assert len(result) == 200
        assert 1 < client.max_in_flight <= 3

    @pytest.mark.asyncio
    async def test_empty_dataset_is_a_valid_snapshot(self, make_client, clock):
        client = make_client([])
        cache = _cache(client, clock)

        assert await cache.get_all() == ()
        assert cache.snapshot is not None
        assert not cache.is_stale()


class TestFreshness:

    @pytest.mark.asyncio
    async def test_fresh_cache_is_reused(self, lumpini_client, clock):
        cache = _cache(lumpini_client, clock)

        first = await cache.get_all()
        clock.advance(3599)
        second = await cache.get_all()

        assert first == second
        assert cache.refill_count == 1
        assert len(lumpini_client.calls) == 1

    @pytest.mark.asyncio
    async def test_stale_cache_refills_once(self, lumpini_client, clock):
        cache = _cache(lumpini_client, clock)
        await cache.get_all()

        clock.advance(3601)
        assert cache.is_stale()
        await cache.get_all()

        assert cache.refill_count == 2
        assert not cache.is_stale()

    @pytest.mark.asyncio
    async def test_concurrent_requests_on_empty_cache_share_one_refill(self, make_client, records_factory, clock):
        client = make_client(records_factory(30), delay=0.02)
        cache = _cache(client, clock)

        results = await asyncio.gather(*(cache.get_all() for _ in range(10)))

        assert cache.refill_count == 1
        assert len(client.calls) == 3
        assert all(len(r) == 30 for r in results)

    @pytest.mark.asyncio
    async def test_concurrent_requests_on_stale_cache_trigger_one_refill(self, make_client, records_factory, clock):
        client = make_client(records_factory(30), delay=0.02)
        cache = _cache(client, clock)
        await cache.get_all()
        calls_before = len(client.calls)

        clock.advance(3601)
        results = await asyncio.gather(*(cache.get_all() for _ in range(10)))

        assert cache.refill_count == 2
        assert len(client.calls) - calls_before == 3
        assert all(len(r) == 30 for r in results)

    @pytest.mark.asyncio
    async def test_readers_see_previous_snapshot_during_refill(self, make_client, records_factory, clock):
        client = make_client(records_factory(3), delay=0.05)
        cache = _cache(client, clock)
        old = await cache.get_all()

        client.records = records_factory(4, name="Fresh")
        clock.advance(3601)
        refill = asyncio.create_task(cache.get_all())
        await asyncio.sleep(0.01)

        assert cache.refilling
        assert await cache.get_all() == old
        assert len(await refill) == 4

    @pytest.mark.asyncio
    async def test_clear_forces_refill(self, lumpini_client, clock):
        cache = _cache(lumpini_client, clock)
        await cache.get_all()

        cache.clear()
        await cache.get_all()

        assert cache.refill_count == 2


class TestFailures:

    @pytest.mark.asyncio
    async def test_failure_on_empty_cache_propagates(self, lumpini_client, clock):
        lumpini_client.error = UpstreamHttpError(0, status_code=503, attempts=3)
        cache = _cache(lumpini_client, clock)

        with pytest.raises(UpstreamHttpError):
            await cache.get_all()

        assert cache.snapshot is None

    @pytest.mark.asyncio
    async def test_concurrent_requests_share_one_failing_refill(self, lumpini_client, clock):
        lumpini_client.delay = 0.02
        lumpini_client.error = UpstreamHttpError(0, status_code=503, attempts=3)
        cache = _cache(lumpini_client, clock)

        results = await asyncio.gather(*(cache.get_all() for _ in range(10)), return_exceptions=True)

        assert len(lumpini_client.calls) == 1
        assert len(results) == 10
        assert all(isinstance(r, UpstreamHttpError) for r in results)
        assert not cache.refilling

        # with no snapshot to fall back on, the next request tries again
        lumpini_client.error = None
        assert len(await cache.get_all()) == 3
        assert len(lumpini_client.calls) == 2

    @pytest.mark.asyncio
    async def test_failed_batch_waits_for_sibling_pages(self, make_client, records_factory, clock):
        client = make_client(records_factory(100), delay=0.05)
        client.fail_offsets = {10}
        cache = _cache(client, clock, page_size=10, concurrency=5)

        for _ in range(2):
            with pytest.raises(UpstreamHttpError):
                await cache.get_all()
            # nothing from the aborted refill is still talking to upstream
            assert client.in_flight == 0

        assert client.max_in_flight <= 5
        assert sorted(c["offset"] for c in client.calls) == [0, 0, 10, 10, 20, 20, 30, 30, 40, 40, 50, 50]

    @pytest.mark.asyncio
    async def test_one_failing_page_aborts_refill_and_keeps_old_snapshot(self, make_client, records_factory, clock):
        client = make_client(records_factory(50))
        cache = _cache(client, clock)
        old_snapshot = (await cache.get_all(), cache.snapshot)

        original = client.fetch_page

        def flaky(offset, limit, search=None):
            if offset == 30:
                raise UpstreamTimeoutError(offset, attempts=3)
            return original(offset, limit, search)

        client.fetch_page = flaky
        client.records = records_factory(50, name="New")
        clock.advance(3601)

        with pytest.raises(UpstreamTimeoutError) as exc_info:
            await cache.get_all()

        assert exc_info.value.offset == 30
        assert cache.snapshot is old_snapshot[1]
        assert cache.refill_count == 1

    @pytest.mark.asyncio
    async def test_stale_snapshot_served_during_failure_cooldown(self, lumpini_client, clock):
        cache = _cache(lumpini_client, clock)
        old = await cache.get_all()

        lumpini_client.error = UpstreamHttpError(0, status_code=503, attempts=3)
        clock.advance(3601)
        with pytest.raises(UpstreamHttpError):
            await cache.get_all()
        calls_after_failure = len(lumpini_client.calls)

        clock.advance(10)
        assert await cache.get_all() == old
        assert len(lumpini_client.calls) == calls_after_failure

        # once the cooldown is over the next request tries again
        lumpini_client.error = None
        clock.advance(30)
        await cache.get_all()
        assert cache.refill_count == 2
        assert not cache.is_stale()

    def test_rejects_non_positive_settings(self, lumpini_client, clock):
        with pytest.raises(ValueError):
            _cache(lumpini_client, clock, concurrency=0)
