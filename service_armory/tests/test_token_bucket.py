"""
Unit tests for token bucket admission.
"""

import asyncio
import random
from unittest.mock import patch

import pytest

from service_armory.app.ratelimit.token_bucket import Admission, TieredTokenBucket, TokenBucket
from shared.errors import RateLimitError
from shared.test_helpers import FakeClock


def assert_window_ceiling(grants, capacity, period):
    """No window of `period` seconds holds more than `capacity` grants."""
    grants = sorted(grants)
    for i in range(capacity, len(grants)):
        assert grants[i] - grants[i - capacity] >= period - 1e-9, (i, grants[i - capacity], grants[i])


class TestTokenBucket:
    """Test cases for TokenBucket."""

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def bucket(self, clock):
        """Two requests per second, punished for a minute on drain."""
        return TokenBucket(2, 1.0, penalty=60.0, name="test", clock=clock)

    def test_starts_full(self, bucket):
        assert bucket.tokens == 2

    def test_try_acquire_until_empty(self, bucket):
        assert bucket.try_acquire() == Admission.granted()
        assert bucket.try_acquire().allowed is True

        denied = bucket.try_acquire()
        assert denied.allowed is False
        assert denied.retry_after == pytest.approx(1.0)

    def test_tokens_return_one_period_after_grant(self, bucket, clock):
        bucket.try_acquire()
        clock.advance(0.5)
        bucket.try_acquire()

        clock.advance(0.5)
        assert bucket.try_acquire().allowed is True

        denied = bucket.try_acquire()
        assert denied.allowed is False
        assert denied.retry_after == pytest.approx(0.5)

    def test_refill_never_exceeds_capacity(self, bucket, clock):
        clock.advance(3600)
        assert bucket.tokens == 2

    def test_drain_empties_and_delays_refill(self, bucket, clock):
        bucket.drain()
        assert bucket.tokens == 0

        clock.advance(59)
        assert bucket.tokens == 0
        assert bucket.try_acquire().allowed is False

        clock.advance(1.5)
        assert bucket.try_acquire().allowed is True

    def test_drain_retry_after_covers_penalty(self, bucket):
        bucket.drain()
        admission = bucket.try_acquire()
        assert admission.retry_after == pytest.approx(60)

    def test_rejects_invalid_configuration(self):
        with pytest.raises(ValueError):
            TokenBucket(0, 1.0)
        with pytest.raises(ValueError):
            TokenBucket(1, 0)

    @pytest.mark.asyncio
    async def test_wait_returns_immediately_with_tokens(self, bucket):
        await bucket.wait(timeout=0)
        assert bucket.tokens == 1

    @pytest.mark.asyncio
    async def test_wait_denied_when_delay_exceeds_timeout(self, bucket):
        bucket.drain()

        with pytest.raises(RateLimitError) as exc_info:
            await bucket.wait(timeout=10)

        assert exc_info.value.status_code == 503
        assert exc_info.value.retry_after == 60
        assert exc_info.value.headers() == {"Retry-After": "60"}

    @pytest.mark.asyncio
    async def test_denied_wait_does_not_reserve(self, bucket, clock):
        bucket.try_acquire()
        bucket.try_acquire()

        with pytest.raises(RateLimitError):
            await bucket.wait(timeout=0.1)

        clock.advance(1.0)
        assert bucket.tokens == 2

    @pytest.mark.asyncio
    async def test_wait_sleeps_until_token_matures(self):
        bucket = TokenBucket(1, 0.05, name="fast")
        await bucket.wait()

        loop = asyncio.get_running_loop()
        started = loop.time()
        await bucket.wait(timeout=1)
        assert loop.time() - started >= 0.04

    @pytest.mark.asyncio
    async def test_cancelled_waiter_returns_reservation(self, clock):
        bucket = TokenBucket(1, 10.0, name="slow", clock=clock)
        bucket.try_acquire()

        waiter = asyncio.create_task(bucket.wait())
        await asyncio.sleep(0)
        with pytest.raises(asyncio.CancelledError):
            waiter.cancel()
            await waiter

        clock.advance(10)
        assert bucket.try_acquire().allowed is True


class TestTieredTokenBucket:
    """Test cases for TieredTokenBucket."""

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def hourly(self, clock):
        return TokenBucket(3, 3600.0, penalty=3600.0, name="per_hour", clock=clock)

    @pytest.fixture
    def per_second(self, clock):
        return TokenBucket(2, 1.0, penalty=60.0, name="per_second", clock=clock)

    @pytest.fixture
    def tiers(self, hourly, per_second):
        return TieredTokenBucket(hourly, per_second)

    def test_requires_a_bucket(self):
        with pytest.raises(ValueError):
            TieredTokenBucket()

    def test_admits_only_when_every_tier_admits(self, tiers, hourly, per_second):
        assert tiers.try_acquire().allowed is True
        assert tiers.try_acquire().allowed is True

        denied = tiers.try_acquire()
        assert denied.allowed is False
        # Nothing was consumed from the hourly tier by the refused call.
        assert hourly.tokens == pytest.approx(1, abs=1e-6)
        assert per_second.tokens == 0

    def test_hourly_ceiling_blocks_even_with_per_second_tokens(self, tiers, clock):
        for _ in range(3):
            assert tiers.try_acquire().allowed is True
            clock.advance(1)

        denied = tiers.try_acquire()
        assert denied.allowed is False
        assert denied.retry_after > 1000

    def test_drain_pushes_each_tier_by_its_penalty(self, tiers, hourly, per_second, clock):
        tiers.drain()

        clock.advance(61)
        assert per_second.tokens > 0
        assert hourly.tokens == 0

        # Past the hourly penalty.
        clock.advance(3540)
        assert tiers.try_acquire().allowed is True

    @pytest.mark.asyncio
    async def test_wait_consumes_from_every_tier(self, tiers, hourly, per_second):
        await tiers.wait(timeout=1)
        assert hourly.tokens == pytest.approx(2, abs=1e-6)
        assert per_second.tokens == 1

    @pytest.mark.asyncio
    async def test_denied_tier_refunds_earlier_tiers(self, tiers, hourly, per_second):
        per_second.drain()

        with pytest.raises(RateLimitError):
            await tiers.wait(timeout=1)

        assert hourly.tokens == pytest.approx(3, abs=1e-6)


class TestRollingWindowCeiling:
    """Granted admissions never exceed capacity within any window of one period."""

    @pytest.mark.parametrize("seed", range(5))
    def test_try_acquire_under_random_timings(self, seed):
        rng = random.Random(seed)
        clock = FakeClock()
        bucket = TokenBucket(10, 10.0, penalty=5.0, clock=clock)

        grants = []
        for _ in range(2000):
            clock.advance(rng.choice([0.0, 0.001, 0.01, 0.1, 0.5, 2.0]))
            if rng.random() < 0.005:
                bucket.drain()
            if bucket.try_acquire().allowed:
                grants.append(clock())

        assert len(grants) > 10
        assert_window_ceiling(grants, 10, 10.0)

    def test_steady_polling_within_first_period(self):
        clock = FakeClock()
        bucket = TokenBucket(10, 10.0, clock=clock)

        granted = 0
        for _ in range(999):
            if bucket.try_acquire().allowed:
                granted += 1
            clock.advance(0.01)

        assert granted == 10

    @pytest.mark.asyncio
    @pytest.mark.parametrize("seed", range(3))
    async def test_wait_under_random_timings(self, seed):
        rng = random.Random(seed)
        clock = FakeClock()
        bucket = TokenBucket(4, 1.0, clock=clock)

        grants = []
        with patch("service_armory.app.ratelimit.token_bucket.asyncio.sleep", side_effect=clock.advance):
            for _ in range(300):
                clock.advance(rng.choice([0.0, 0.05, 0.2, 0.7]))
                await bucket.wait()
                grants.append(clock())

        assert_window_ceiling(grants, 4, 1.0)

    @pytest.mark.parametrize("seed", range(5))
    def test_tiered_try_acquire_under_random_timings(self, seed):
        rng = random.Random(seed)
        clock = FakeClock()
        long_window = TokenBucket(20, 60.0, penalty=60.0, clock=clock)
        short_window = TokenBucket(3, 1.0, penalty=2.0, clock=clock)
        tiers = TieredTokenBucket(long_window, short_window)

        grants = []
        for _ in range(3000):
            clock.advance(rng.choice([0.0, 0.01, 0.1, 0.4, 3.0]))
            if rng.random() < 0.002:
                tiers.drain()
            if tiers.try_acquire().allowed:
                grants.append(clock())

        assert len(grants) > 20
        assert_window_ceiling(grants, 20, 60.0)
        assert_window_ceiling(grants, 3, 1.0)

    @pytest.mark.asyncio
    async def test_tiered_wait_under_random_timings(self):
        rng = random.Random(7)
        clock = FakeClock()
        tiers = TieredTokenBucket(TokenBucket(6, 10.0, clock=clock), TokenBucket(2, 1.0, clock=clock))

        grants = []
        with patch("service_armory.app.ratelimit.token_bucket.asyncio.sleep", side_effect=clock.advance):
            for _ in range(200):
                clock.advance(rng.choice([0.0, 0.1, 0.5, 1.5]))
                await tiers.wait()
                grants.append(clock())

        assert_window_ceiling(grants, 6, 10.0)
        assert_window_ceiling(grants, 2, 1.0)
