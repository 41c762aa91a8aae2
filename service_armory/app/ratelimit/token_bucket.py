"""
Token bucket admission control for upstream calls.

A bucket holds up to ``capacity`` tokens. Each spent token comes back
``period`` seconds after the moment it was granted, so tokens replenish
continuously as old grants age out and no window of ``period`` seconds ever
sees more than ``capacity`` grants. Callers either try to take a token
without blocking, or wait cooperatively until one matures. Waiting is bounded
by the caller's timeout: when the wait would outlast it the call fails at once
instead of sleeping.
"""

import asyncio
import math
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, List, Optional

from shared.errors import RateLimitError
from shared.logging import get_logger


@dataclass(frozen=True)
class Admission:
    """Outcome of a non-blocking admission check."""

    allowed: bool
    retry_after: float = 0.0

    @classmethod
    def granted(cls) -> "Admission":
        return cls(allowed=True)

    @classmethod
    def denied(cls, retry_after: float) -> "Admission":
        return cls(allowed=False, retry_after=max(0.0, retry_after))


class TokenBucket:
    """Single token bucket with suspension and punitive drain."""

    def __init__(
        self,
        capacity: int,
        period: float,
        *,
        penalty: Optional[float] = None,
        name: str = "bucket",
        clock: Callable[[], float] = time.monotonic,
    ):
        if capacity <= 0 or period <= 0:
            raise ValueError("capacity and period must be positive")

        self.capacity = capacity
        self.period = period
        self.penalty = period if penalty is None else penalty
        self.name = name
        self.logger = get_logger(f"armory.ratelimit.{name}")

        self._clock = clock
        # Grant times in ascending order; reservations may lie in the future.
        self._grants: Deque[float] = deque()
        self._blocked_until = float("-inf")

    def _prune(self, now: float) -> None:
        """Forget grants that have left the window ending at ``now``."""
        horizon = now - self.period
        while self._grants and self._grants[0] <= horizon:
            self._grants.popleft()

    def _next_grant_at(self, now: float) -> float:
        """Earliest moment the next token can be granted, behind any reservation."""
        at = max(now, self._blocked_until)
        if self._grants:
            at = max(at, self._grants[-1])
        if len(self._grants) >= self.capacity:
            at = max(at, self._grants[-self.capacity] + self.period)
        return at

    def _grant(self, at: float) -> float:
        self._grants.append(at)
        return at

    def _delay(self, now: float) -> float:
        self._prune(now)
        return self._next_grant_at(now) - now

    @property
    def tokens(self) -> int:
        """Tokens currently available, outstanding reservations excluded."""
        now = self._clock()
        self._prune(now)
        if self._blocked_until > now:
            return 0
        return max(0, self.capacity - len(self._grants))

    def try_acquire(self) -> Admission:
        """Take a token if one is available right now."""
        now = self._clock()
        delay = self._delay(now)
        if delay > 0:
            return Admission.denied(delay)

        self._grant(now)
        return Admission.granted()

    async def wait(self, timeout: Optional[float] = None) -> float:
        """Suspend until a token is available, then consume it.

        Returns the clock time the token was granted at. Raises RateLimitError
        without waiting when the token would mature after ``timeout`` seconds.
        A cancelled waiter returns its reservation.
        """
        now = self._clock()
        delay = self._delay(now)

        if timeout is not None and delay > timeout:
            raise self._deadline_exceeded(delay, timeout)

        # Reserve before sleeping so concurrent waiters queue behind us.
        granted_at = self._grant(now + delay)
        if delay <= 0:
            return granted_at

        try:
            await asyncio.sleep(delay)
        except asyncio.CancelledError:
            self.release(granted_at)
            raise
        return granted_at

    def _deadline_exceeded(self, delay: float, timeout: float) -> RateLimitError:
        self.logger.warning(
            "Token wait would exceed deadline",
            bucket=self.name,
            delay=round(delay, 3),
            timeout=timeout,
        )
        return RateLimitError(
            f"rate limit for '{self.name}' would exceed the request deadline",
            retry_after=math.ceil(delay),
        )

    def release(self, granted_at: Optional[float] = None) -> None:
        """Return a reserved token; the most recent one when no time is given."""
        if granted_at is None:
            if self._grants:
                self._grants.pop()
        elif granted_at in self._grants:
            self._grants.remove(granted_at)

    def drain(self) -> None:
        """Empty the bucket and hold every token back for ``penalty`` seconds."""
        now = self._clock()
        self._blocked_until = max(self._blocked_until, now + self.penalty)
        self.logger.info("Drained token bucket", bucket=self.name, penalty_seconds=self.penalty)


class TieredTokenBucket:
    """Several buckets that must all admit, e.g. per-second and per-hour.

    A call is granted on every tier at the same moment, the earliest one all
    of them allow, so no tier holds a token while another is still pending.
    """

    def __init__(self, *buckets: TokenBucket):
        if not buckets:
            raise ValueError("at least one bucket is required")
        self.buckets: List[TokenBucket] = list(buckets)

    def try_acquire(self) -> Admission:
        """Admit only when every tier has a token; consume from all or none."""
        checks = []
        for bucket in self.buckets:
            now = bucket._clock()
            checks.append((bucket, now, bucket._delay(now)))

        worst = max(delay for _, _, delay in checks)
        if worst > 0:
            return Admission.denied(worst)

        for bucket, now, _ in checks:
            bucket._grant(now)
        return Admission.granted()

    async def wait(self, timeout: Optional[float] = None) -> None:
        """Reserve on every tier at once and sleep until the reservation matures."""
        checks = []
        for bucket in self.buckets:
            now = bucket._clock()
            checks.append((bucket, now, bucket._delay(now)))

        slowest, _, delay = max(checks, key=lambda check: check[2])
        if timeout is not None and delay > timeout:
            raise slowest._deadline_exceeded(delay, timeout)

        reserved = [(bucket, bucket._grant(now + max(0.0, delay))) for bucket, now, _ in checks]
        if delay <= 0:
            return

        try:
            await asyncio.sleep(delay)
        except asyncio.CancelledError:
            for bucket, granted_at in reserved:
                bucket.release(granted_at)
            raise

    def drain(self) -> None:
        for bucket in self.buckets:
            bucket.drain()
