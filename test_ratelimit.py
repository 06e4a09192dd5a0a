#!/usr/bin/env python3
"""
Tests for the token bucket and the rate limiter stage
"""

import asyncio

import pytest

from portsweep.core.models import MultiPortScanRequest
from portsweep.core.ratelimit import END_OF_STREAM, TokenBucket, rate_limit_stage, wait_or_cancel


class FakeClock:
    """Deterministic clock whose sleep just moves time forward"""

    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now

    async def sleep(self, delay):
        self.now += delay
        await asyncio.sleep(0)


def max_in_window(stamps, width=1.0):
    stamps = sorted(stamps)
    best = 0
    for i, start in enumerate(stamps):
        count = sum(1 for t in stamps[i:] if t < start + width)
        best = max(best, count)
    return best


async def test_bucket_starts_full():
    clock = FakeClock()
    bucket = TokenBucket(10, burst=5, clock=clock, sleep=clock.sleep)

    for _ in range(5):
        assert await bucket.acquire()
    assert clock.now == 0.0
    assert not bucket.try_acquire()
    assert bucket.delay() == pytest.approx(0.1)


async def test_bucket_window_bound():
    clock = FakeClock()
    rate, burst = 10, 5
    bucket = TokenBucket(rate, burst=burst, clock=clock, sleep=clock.sleep)

    stamps = []

    async def drain():
        for _ in range(60):
            await bucket.acquire()
            stamps.append(clock())

    await asyncio.wait_for(drain(), timeout=5)
    assert max_in_window(stamps) <= burst + rate
    # Sustained rate after the initial burst
    assert stamps[-1] == pytest.approx((60 - burst) / rate, abs=0.01)


async def test_bucket_grants_after_sleep_despite_float_rounding():
    # Summing 0.1s refills can leave the count at 0.9999999999999998
    clock = FakeClock()
    bucket = TokenBucket(10, burst=5, clock=clock, sleep=clock.sleep)

    async def drain():
        for _ in range(20):
            assert await bucket.acquire()

    await asyncio.wait_for(drain(), timeout=2)
    assert clock.now == pytest.approx(1.5)
    assert 0.0 <= bucket.tokens < 1


async def test_bucket_refills_up_to_burst_only():
    clock = FakeClock()
    bucket = TokenBucket(2, burst=3, clock=clock, sleep=clock.sleep)
    for _ in range(3):
        bucket.try_acquire()

    clock.now += 100
    granted = sum(1 for _ in range(10) if bucket.try_acquire())
    assert granted == 3


def test_bucket_defaults_burst_to_rate():
    assert TokenBucket(20).burst == 20
    assert TokenBucket(0.5).burst == 1


@pytest.mark.parametrize("rate, burst", [(0, None), (-1, None), (5, 0)])
def test_bucket_rejects_bad_settings(rate, burst):
    with pytest.raises(ValueError):
        TokenBucket(rate, burst=burst)


async def test_bucket_acquire_cancelled():
    bucket = TokenBucket(1, burst=1)
    assert await bucket.acquire()

    cancel = asyncio.Event()
    asyncio.get_running_loop().call_later(0.05, cancel.set)
    granted = await asyncio.wait_for(bucket.acquire(cancel), timeout=2)
    assert granted is False


async def test_wait_or_cancel():
    cancel = asyncio.Event()
    assert await wait_or_cancel(asyncio.sleep(0, result="done"), cancel) == (True, "done")

    cancel.set()
    assert await wait_or_cancel(asyncio.sleep(10), cancel) == (False, None)


def make_unit(i):
    return MultiPortScanRequest(host=f"10.0.0.{i}", ports=(22,))


async def test_stage_forwards_everything_then_closes():
    clock = FakeClock()
    source, sink = asyncio.Queue(), asyncio.Queue()
    for i in range(8):
        source.put_nowait(make_unit(i))
    source.put_nowait(END_OF_STREAM)

    bucket = TokenBucket(4, burst=2, clock=clock, sleep=clock.sleep)
    forwarded = await rate_limit_stage(source, sink, bucket, asyncio.Event())

    assert forwarded == 8
    items = [sink.get_nowait() for _ in range(sink.qsize())]
    assert items[-1] is END_OF_STREAM
    assert [u.host for u in items[:-1]] == [f"10.0.0.{i}" for i in range(8)]
    assert clock.now == pytest.approx(6 / 4)


async def test_stage_stops_on_cancel_without_forwarding_pending():
    source, sink = asyncio.Queue(), asyncio.Queue()
    for i in range(5):
        source.put_nowait(make_unit(i))

    cancel = asyncio.Event()
    bucket = TokenBucket(1, burst=1)
    asyncio.get_running_loop().call_later(0.1, cancel.set)

    forwarded = await asyncio.wait_for(rate_limit_stage(source, sink, bucket, cancel), timeout=2)

    assert forwarded == 1
    assert sink.qsize() == 1
    assert sink.get_nowait().host == "10.0.0.0"
    # Stopped consuming: the pending unit was taken, the rest stay queued
    assert source.qsize() == 3
