"""
Hourly points budget for the Warcraft Logs GraphQL API.

The upstream reports what each query cost; the budget only records those
figures and refuses new queries once the hour's allowance is spent. A task
owned by the budget resets the spend at the end of every window.
"""

import asyncio
import math
import threading
import time
from typing import Callable, Optional

from shared.errors import RateLimitError
from shared.logging import get_logger

from ..domain.models import RateLimitData
from .token_bucket import Admission


DEFAULT_WINDOW_SECONDS = 3600


class PointBudget:
    """Points budget with post-hoc spend and a scheduled hard reset."""

    def __init__(
        self,
        limit_per_hour: int,
        points_spent: float = 0.0,
        reset_in: float = DEFAULT_WINDOW_SECONDS,
        *,
        window: float = DEFAULT_WINDOW_SECONDS,
        name: str = "points",
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.window = window
        self.logger = get_logger(f"armory.ratelimit.{name}")

        self._clock = clock
        self._lock = threading.Lock()
        self._limit_per_hour = int(limit_per_hour)
        self._points_spent = float(points_spent)
        self._reset_at = clock() + reset_in
        self._task: Optional[asyncio.Task] = None

    @classmethod
    def from_rate_limit_data(cls, data: RateLimitData, **kwargs) -> "PointBudget":
        return cls(
            data.limit_per_hour,
            data.points_spent_this_hour,
            data.points_reset_in,
            **kwargs,
        )

    @property
    def limit_per_hour(self) -> int:
        with self._lock:
            return self._limit_per_hour

    @property
    def points_spent(self) -> float:
        with self._lock:
            return self._points_spent

    @property
    def reset_in_seconds(self) -> int:
        """Whole seconds until the next reset."""
        with self._lock:
            return self._reset_in_locked()

    def _reset_in_locked(self) -> int:
        return max(0, math.ceil(self._reset_at - self._clock()))

    def try_admit(self) -> Admission:
        """Admit while the rounded-up spend is below the hourly limit."""
        with self._lock:
            if math.ceil(self._points_spent) < self._limit_per_hour:
                return Admission.granted()
            return Admission.denied(self._reset_in_locked())

    def check(self) -> None:
        """Raise RateLimitError when there are no points left this hour."""
        admission = self.try_admit()
        if admission.allowed:
            return

        retry_after = int(admission.retry_after)
        self.logger.warning("No points left to spend", retry_after=retry_after)
        raise RateLimitError(
            f"the service is currently unavailable, try again in '{retry_after}' seconds",
            retry_after=retry_after,
            details={"budget": self.name},
        )

    def record(self, data: RateLimitData) -> None:
        """Adopt the limit and spend reported by the upstream."""
        with self._lock:
            self._limit_per_hour = int(data.limit_per_hour)
            self._points_spent = float(data.points_spent_this_hour)
            limit, spent = self._limit_per_hour, self._points_spent

        self.logger.info("Points budget updated", limit=limit, spent=spent)

    def spend_all(self) -> None:
        """Punitive drain: mark the whole hour as spent."""
        with self._lock:
            self._points_spent = float(self._limit_per_hour)
        self.logger.warning("Spent all remaining points")

    def tick(self) -> None:
        """Reset the spend and restore a full window."""
        with self._lock:
            self._points_spent = 0.0
            self._reset_at = self._clock() + self.window
        self.logger.debug("Points budget ticked")

    def start(self) -> None:
        """Start the reset task on the running event loop."""
        if self._task is not None and not self._task.done():
            return
        self._task = asyncio.get_running_loop().create_task(self._run_reset_timer())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def _run_reset_timer(self) -> None:
        while True:
            with self._lock:
                delay = max(0.0, self._reset_at - self._clock())
            await asyncio.sleep(delay)
            self.tick()
