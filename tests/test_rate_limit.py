import asyncio

import pytest

from gmail_relay.rate_limit import InMemoryRateLimitStore, RateLimitSweeper, SlidingWindowRateLimiter


class FakeClock:
    def __init__(self, now=1_000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.mark.asyncio
async def test_quota_then_deny(clock):
    limiter = SlidingWindowRateLimiter(quota=5, window=60, clock=clock)

    results = []
    for _ in range(6):
        results.append(await limiter.is_allowed("ip:1.2.3.4"))
        clock.advance(1)

    assert results == [True] * 5 + [False]


@pytest.mark.asyncio
async def test_denied_requests_are_not_recorded(clock):
    limiter = SlidingWindowRateLimiter(quota=1, window=10, clock=clock)

    assert await limiter.is_allowed("k")
    for _ in range(5):
        assert not await limiter.is_allowed("k")

    clock.advance(10)
    assert await limiter.is_allowed("k")


@pytest.mark.asyncio
async def test_window_slides(clock):
    limiter = SlidingWindowRateLimiter(quota=2, window=60, clock=clock)

    assert await limiter.is_allowed("k")
    clock.advance(30)
    assert await limiter.is_allowed("k")
    assert not await limiter.is_allowed("k")

    # first entry leaves the window, second one is still live
    clock.advance(30)
    assert await limiter.is_allowed("k")
    assert not await limiter.is_allowed("k")


@pytest.mark.asyncio
async def test_identities_are_independent(clock):
    limiter = SlidingWindowRateLimiter(quota=1, window=60, clock=clock)

    assert await limiter.is_allowed("ip:a")
    assert await limiter.is_allowed("ip:b")
    assert not await limiter.is_allowed("ip:a")


@pytest.mark.asyncio
async def test_remaining_does_not_consume(clock):
    limiter = SlidingWindowRateLimiter(quota=3, window=60, clock=clock)

    assert await limiter.remaining("k") == 3
    await limiter.is_allowed("k")
    assert await limiter.remaining("k") == 2
    assert await limiter.remaining("k") == 2

    await limiter.is_allowed("k")
    await limiter.is_allowed("k")
    await limiter.is_allowed("k")
    assert await limiter.remaining("k") == 0


@pytest.mark.asyncio
async def test_reset_seconds_rounds_up(clock):
    limiter = SlidingWindowRateLimiter(quota=2, window=60, clock=clock)

    assert await limiter.reset_seconds("k") == 0

    await limiter.is_allowed("k")
    clock.advance(10.5)
    await limiter.is_allowed("k")

    assert await limiter.reset_seconds("k") == 50
    assert await limiter.reset_at("k") == int(clock.now) + 50


@pytest.mark.asyncio
async def test_concurrent_checks_never_exceed_quota():
    limiter = SlidingWindowRateLimiter(quota=10, window=60)

    results = await asyncio.gather(*(limiter.is_allowed("ip:burst") for _ in range(50)))

    assert sum(results) == 10


@pytest.mark.asyncio
async def test_cleanup_drops_empty_identities(clock):
    store = InMemoryRateLimitStore()
    limiter = SlidingWindowRateLimiter(quota=5, window=60, store=store, clock=clock)

    await limiter.is_allowed("old")
    clock.advance(59)
    await limiter.is_allowed("recent")
    clock.advance(2)

    assert await limiter.cleanup() == 1
    assert len(store) == 1
    assert await limiter.remaining("recent") == 4


@pytest.mark.asyncio
async def test_sweeper_sweeps_every_limiter(clock):
    first = SlidingWindowRateLimiter(quota=1, window=5, clock=clock)
    second = SlidingWindowRateLimiter(quota=1, window=5, clock=clock)
    await first.is_allowed("a")
    await second.is_allowed("b")
    clock.advance(6)

    sweeper = RateLimitSweeper([first, second], interval=60)

    assert await sweeper.sweep_once() == 2


@pytest.mark.asyncio
async def test_sweeper_runs_in_background(clock):
    store = InMemoryRateLimitStore()
    limiter = SlidingWindowRateLimiter(quota=1, window=5, store=store, clock=clock)
    await limiter.is_allowed("a")
    clock.advance(6)

    sweeper = RateLimitSweeper([limiter], interval=0.01)
    sweeper.start()
    assert sweeper.running
    try:
        for _ in range(100):
            if len(store) == 0:
                break
            await asyncio.sleep(0.01)
    finally:
        await sweeper.stop()

    assert len(store) == 0
    assert not sweeper.running
