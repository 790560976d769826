# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Account-wide rate limiter shared by all bucket loops.

Two things can close the global gate:
- the configured budget of ``limit`` requests per ``window`` is used up
- the server answered with a global 429, blocking everything until it expires

Waiting loops share one future released by a single timer, so every bucket
parked on the global limit wakes at the same instant instead of polling.
"""

from __future__ import annotations

import asyncio
import logging
import time

logger = logging.getLogger(__name__)


class GlobalRateLimiter:
    """
    Account-wide budget with a shared reset timer.

    Only the event loop thread touches this object, and no method awaits
    between checking and updating the counters, so ``try_acquire`` is atomic
    with respect to every bucket loop.
    """

    def __init__(self, limit: int | None = None, window: float = 1.0):
        """
        Initialize the limiter.

        Args:
            limit: Requests per window, or None to only honor server throttles
            window: Window length in seconds
        """
        self._limit = limit
        self._window = window
        self._remaining = limit or 0
        self._reset_at = 0.0
        self._blocked_until = 0.0

        # Shared wakeup for all waiting loops
        self._waiter: asyncio.Future[None] | None = None
        self._waiter_at = float("inf")
        self._timer: asyncio.TimerHandle | None = None

    @property
    def limit(self) -> int | None:
        return self._limit

    @property
    def remaining(self) -> int | None:
        """Requests left in the current window, or None if unbounded."""
        if self._limit is None:
            return None
        if time.monotonic() >= self._reset_at:
            return self._limit
        return self._remaining

    @property
    def reset_at(self) -> float:
        """Monotonic time at which the gate next opens."""
        return max(self._reset_at, self._blocked_until)

    def is_blocked(self) -> bool:
        """True while a server-signalled global throttle is active."""
        return time.monotonic() < self._blocked_until

    def try_acquire(self, exempt: bool = False) -> bool:
        """
        Take one unit of the global budget without waiting.

        Args:
            exempt: Skip the configured budget (interaction routes). A server
                global throttle still applies.

        Returns:
            True if the caller may send now
        """
        now = time.monotonic()
        if now < self._blocked_until:
            return False
        if exempt or self._limit is None:
            return True
        if now >= self._reset_at:
            self._remaining = self._limit
            self._reset_at = now + self._window
        if self._remaining > 0:
            self._remaining -= 1
            return True
        return False

    def available_at(self, exempt: bool = False) -> float:
        """Monotonic time at which ``try_acquire`` can next succeed."""
        now = time.monotonic()
        wake_at = now
        if now < self._blocked_until:
            wake_at = self._blocked_until
        if (
            not exempt
            and self._limit is not None
            and self._remaining <= 0
            and now < self._reset_at
        ):
            wake_at = max(wake_at, self._reset_at)
        return wake_at

    async def wait_until_available(self, exempt: bool = False) -> None:
        """Suspend until the global gate may have reopened."""
        wake_at = self.available_at(exempt)
        if wake_at <= time.monotonic():
            return
        # Shield so one cancelled waiter does not cancel the shared future
        await asyncio.shield(self._shared_waiter(wake_at))

    def block_for(self, retry_after: float) -> None:
        """Close the gate for every bucket after a global 429."""
        until = time.monotonic() + max(0.0, retry_after)
        if until > self._blocked_until:
            self._blocked_until = until
            logger.warning(
                f"Encountered global rate limit, blocking all buckets for "
                f"{retry_after:.3f}s"
            )

    def _shared_waiter(self, wake_at: float) -> asyncio.Future[None]:
        loop = asyncio.get_running_loop()
        if self._waiter is None or self._waiter.done():
            self._waiter = loop.create_future()
            self._waiter_at = float("inf")
        if wake_at < self._waiter_at:
            if self._timer is not None:
                self._timer.cancel()
            self._waiter_at = wake_at
            delay = max(0.0, wake_at - time.monotonic())
            self._timer = loop.call_later(delay, self._release)
            logger.debug(f"Global limiter wakeup scheduled in {delay:.3f}s")
        return self._waiter

    def _release(self) -> None:
        self._timer = None
        self._waiter_at = float("inf")
        waiter, self._waiter = self._waiter, None
        if waiter is not None and not waiter.done():
            waiter.set_result(None)

    def close(self) -> None:
        """Cancel the shared timer and wake any remaining waiters."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self._waiter is not None and not self._waiter.done():
            self._waiter.cancel()
        self._waiter = None
        self._waiter_at = float("inf")


__all__ = ["GlobalRateLimiter"]
