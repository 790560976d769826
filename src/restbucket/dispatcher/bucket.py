# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Rate-limit bucket and its sequential scheduling loop.

Every bucket owns one asyncio task that sends the requests of its queue one
at a time, in submission order. The loop is the only code that writes the
bucket counters; other loops hand it header updates through ``post_update``.

Loop iteration:
    1. Apply a pending header update, if one was posted
    2. Drop cancelled heads, fail expired heads
    3. Migrate the head if its route now resolves to another bucket
    4. Wait for the bucket window and the head's retry delay
    5. Evaluate the head's check, then pass the global gate
    6. Consume one slot, send, apply the response headers
    7. Resolve the request or put it back at the front of the queue
"""

from __future__ import annotations

import asyncio
import heapq
import logging
import time
from collections import deque
from collections.abc import Iterable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from ..context import callback_scope, with_reason
from ..exceptions import (
    RequestRejectedError,
    ServerUnavailableError,
    TransportError,
    TransportFailureError,
)
from ..observability.constants import RATE_LIMIT_HITS_TOTAL, RETRIES_TOTAL
from ..providers.base import RateLimitInfo
from ..types.request import QueuedRequest
from ..types.response import TransportResponse
from .policy import ResponseClass, classify

if TYPE_CHECKING:
    from .dispatcher import Dispatcher

logger = logging.getLogger(__name__)

UNINIT_PREFIX = "uninit+"

# Retry delay assumed for a 429 that carries neither body nor headers
DEFAULT_RETRY_AFTER = 1.0


@dataclass(frozen=True)
class BucketState:
    """Point-in-time snapshot of a bucket, as returned by ``get_bucket_state``."""

    bucket_id: str
    limit: int
    remaining: int
    reset_at: float
    reset_after: float
    queued: int
    is_uninit: bool
    in_flight: bool


class Bucket:
    """
    One rate-limit bucket: counters, a FIFO queue and the loop draining it.

    Before the server reveals the bucket hash of a route the bucket is
    "uninit" and keyed by the route identity; its limit is unknown, so it
    sends one request at a time until a response teaches it more.
    """

    IDLE_TIMEOUT: float = 5.0
    """Seconds an empty loop waits for new work before exiting."""

    def __init__(self, bucket_id: str, dispatcher: Dispatcher):
        self.bucket_id = bucket_id
        self.is_uninit = bucket_id.startswith(UNINIT_PREFIX)

        self.limit = 0
        self.remaining = 0
        self.reset_at = 0.0
        self.reset_after = 0.0
        self.queue: deque[QueuedRequest] = deque()

        self._dispatcher = dispatcher
        self._wakeup = asyncio.Event()
        self._pending: tuple[RateLimitInfo, float] | None = None
        self._task: asyncio.Task[None] | None = None
        self._in_flight: QueuedRequest | None = None
        self._retired = False

    # === State ===

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def in_flight(self) -> QueuedRequest | None:
        return self._in_flight

    @property
    def is_retired(self) -> bool:
        return self._retired

    def is_idle(self, now: float) -> bool:
        """True if nothing is queued or in flight and the window has reset."""
        return (
            not self.queue
            and self._in_flight is None
            and self._pending is None
            and now >= self.reset_at
        )

    def snapshot(self) -> BucketState:
        now = time.monotonic()
        remaining = self.remaining
        if remaining <= 0 and now >= self.reset_at:
            remaining = self.limit if self.limit > 0 else 1
        return BucketState(
            bucket_id=self.bucket_id,
            limit=self.limit,
            remaining=remaining,
            reset_at=self.reset_at,
            reset_after=max(0.0, self.reset_at - now),
            queued=len(self.queue),
            is_uninit=self.is_uninit,
            in_flight=self._in_flight is not None,
        )

    # === Queue management (called by the dispatcher) ===

    def enqueue(self, entry: QueuedRequest) -> None:
        entry.bucket_id = self.bucket_id
        self.queue.append(entry)
        self._wake()

    def merge(self, entries: Iterable[QueuedRequest]) -> None:
        """Merge migrated entries into the queue, keeping submission order."""
        incoming = sorted(entries, key=lambda e: e.sequence)
        for entry in incoming:
            entry.bucket_id = self.bucket_id
        self.queue = deque(
            heapq.merge(self.queue, incoming, key=lambda e: e.sequence)
        )
        self._wake()

    def discard(self, entry: QueuedRequest) -> bool:
        """Remove a queued entry. Returns False if it is not in this queue."""
        try:
            self.queue.remove(entry)
        except ValueError:
            return False
        self._wakeup.set()
        return True

    def post_update(self, info: RateLimitInfo, observed_at: float) -> None:
        """
        Hand rate-limit info learned by another loop to this bucket.

        A bucket without a running loop has no owner, so the update is applied
        right away; otherwise the owning loop applies it on its next iteration.
        """
        if self.is_running:
            self._pending = (info, observed_at)
            self._wakeup.set()
        else:
            self._apply(info, observed_at)

    def retire(self) -> None:
        """Mark the bucket as dropped from the table; its loop exits when idle."""
        self._retired = True
        self._wakeup.set()

    def _wake(self) -> None:
        self._wakeup.set()
        if not self.is_running and not self._retired:
            self._task = self._dispatcher._start_bucket_loop(self)

    # === Counters (owning loop only) ===

    def _apply(self, info: RateLimitInfo, observed_at: float) -> None:
        remaining, reset_after = info.remaining, info.reset_after
        if remaining is None or reset_after is None:
            return
        if info.limit is not None:
            self.limit = info.limit
        self.remaining = remaining
        self.reset_after = reset_after
        self.reset_at = observed_at + reset_after

        threshold = self._dispatcher.config.long_rate_limit_warning
        if self.remaining == 0 and reset_after > threshold:
            logger.warning(
                f"Encountered long rate limit on bucket {self.bucket_id}: "
                f"resets in {reset_after:.0f}s"
            )

    def _apply_pending(self) -> None:
        if self._pending is not None:
            info, observed_at = self._pending
            self._pending = None
            self._apply(info, observed_at)

    def _time_until_ready(self, entry: QueuedRequest, now: float) -> float:
        wait = 0.0
        if self.remaining <= 0 and now < self.reset_at:
            wait = self.reset_at - now
        if entry.not_before > now:
            wait = max(wait, entry.not_before - now)
        return wait

    def _consume(self, now: float) -> None:
        if self.remaining <= 0 and now >= self.reset_at:
            self.remaining = self.limit if self.limit > 0 else 1
        self.remaining = max(0, self.remaining - 1)

    # === Loop ===

    async def _sleep(self, delay: float) -> None:
        """Sleep for ``delay`` unless new work or an update wakes the loop."""
        self._wakeup.clear()
        try:
            await asyncio.wait_for(self._wakeup.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass

    async def run(self) -> None:
        """Drain the queue until it stays empty or the bucket is retired."""
        dispatcher = self._dispatcher
        # Loop tasks inherit the submitter's context; no ambient reason here
        with with_reason(None), callback_scope(True):
            try:
                while True:
                    self._apply_pending()

                    if not self.queue:
                        if self._retired:
                            break
                        self._wakeup.clear()
                        try:
                            await asyncio.wait_for(
                                self._wakeup.wait(), timeout=self.IDLE_TIMEOUT
                            )
                        except asyncio.TimeoutError:
                            if not self.queue:
                                break
                        continue

                    entry = self.queue[0]
                    now = time.monotonic()

                    if entry.is_cancelled:
                        self.queue.popleft()
                        entry.handle._cancelled()
                        dispatcher._finish_entry(entry)
                        continue

                    if entry.is_expired(now):
                        self.queue.popleft()
                        dispatcher._time_out(entry)
                        continue

                    target_id = dispatcher._bucket_id_for(entry.route)
                    if target_id != self.bucket_id:
                        dispatcher.migrate(self, target_id)
                        continue

                    wait = self._time_until_ready(entry, now)
                    if entry.deadline is not None:
                        wait = min(wait, entry.deadline - now)
                    if wait > 0:
                        await self._sleep(wait)
                        continue

                    # A rejected head must not spend a unit of the global budget
                    try:
                        passes = entry.handle._passes_check()
                    except Exception as e:
                        self.queue.popleft()
                        dispatcher._fail(entry, e, reason="check")
                        continue
                    if entry.finished or entry.is_cancelled:
                        # The check cancelled its own request
                        continue
                    if not passes:
                        self.queue.popleft()
                        logger.debug(f"Check rejected {entry.handle!r}, cancelling")
                        entry.handle._cancelled()
                        dispatcher._finish_entry(entry)
                        continue

                    exempt = entry.route.route.interaction
                    limiter = dispatcher.global_limiter
                    if not limiter.try_acquire(exempt):
                        timeout = (
                            None
                            if entry.deadline is None
                            else max(0.0, entry.deadline - now)
                        )
                        try:
                            await asyncio.wait_for(
                                limiter.wait_until_available(exempt), timeout
                            )
                        except asyncio.TimeoutError:
                            pass
                        continue

                    self.queue.popleft()
                    self._consume(now)
                    self._in_flight = entry
                    try:
                        await self._send(entry)
                    except asyncio.CancelledError:
                        raise
                    except Exception as e:
                        logger.exception(
                            f"Unexpected error while processing {entry.handle!r}: {e}"
                        )
                        dispatcher._fail(entry, e, reason="internal")
                    finally:
                        self._in_flight = None
            finally:
                if self._task is asyncio.current_task():
                    self._task = None
                logger.debug(f"Bucket loop {self.bucket_id} exited")

    # === Sending ===

    async def _send(self, entry: QueuedRequest) -> None:
        dispatcher = self._dispatcher
        handle = entry.handle
        entry.attempts += 1
        handle._mark_in_flight()
        logger.debug(
            f"Sending {entry.route} on bucket {self.bucket_id} "
            f"(attempt {entry.attempts})"
        )

        try:
            response = await dispatcher.transport.send(
                entry.route.method.value,
                dispatcher.build_url(entry.route),
                entry.headers,
                entry.body,
                entry.deadline,
            )
        except (TransportError, OSError, asyncio.TimeoutError) as e:
            self._retry_or_fail(
                entry, ResponseClass.TRANSPORT_ERROR, None, e, time.monotonic()
            )
            return

        now = time.monotonic()
        info = dispatcher.provider.parse_rate_limit_response(
            response.headers, response.body, response.status
        )
        self._observe(entry, info, now)

        kind = classify(response.status, info)
        if kind is ResponseClass.SUCCESS:
            try:
                value = handle._build_result(response)
            except Exception as e:
                dispatcher._fail(entry, e, reason="handler")
            else:
                dispatcher._succeed(entry, value)
        elif kind.is_throttle:
            if kind is ResponseClass.GLOBAL_RATE_LIMITED:
                self._on_global_rate_limited(entry, info)
            else:
                self._on_rate_limited(entry, info, now)
        elif kind.is_bounded_retry:
            self._retry_or_fail(entry, kind, response, None, now)
        else:
            dispatcher._fail(
                entry,
                RequestRejectedError(
                    response.status, response.body, entry.route, entry.attempts
                ),
                reason="rejected",
            )

    def _observe(self, entry: QueuedRequest, info: RateLimitInfo, now: float) -> None:
        """Record the hash and counters carried by a response."""
        dispatcher = self._dispatcher
        if info.bucket:
            owner_id = dispatcher._record_hash(entry.route, info.bucket)
            if owner_id != self.bucket_id:
                # The counters describe another bucket; its loop applies them
                if info.has_bucket_state:
                    dispatcher._post_update(owner_id, info, now)
                return
        self._apply(info, now)

    def _requeue(self, entry: QueuedRequest) -> None:
        entry.handle._mark_retrying()
        entry.bucket_id = self.bucket_id
        self.queue.appendleft(entry)

    def _on_rate_limited(
        self, entry: QueuedRequest, info: RateLimitInfo, now: float
    ) -> None:
        dispatcher = self._dispatcher
        retry_after = info.retry_after
        if retry_after is None:
            retry_after = info.reset_after
        if retry_after is None:
            retry_after = DEFAULT_RETRY_AFTER

        self.remaining = 0
        self.reset_at = max(self.reset_at, now + retry_after)
        entry.not_before = now + retry_after

        route_key = entry.route.route.base_key
        message = (
            f"Encountered 429 on route {route_key} with bucket {self.bucket_id} "
            f"Retry-After: {retry_after * 1000:.0f} ms Scope: {info.scope or 'unknown'}"
        )
        if dispatcher._mark_rate_limited(route_key):
            logger.debug(message)
        else:
            logger.warning(message)
        if retry_after > dispatcher.config.long_rate_limit_warning:
            logger.warning(
                f"Encountered long rate limit on route {route_key}: "
                f"retry after {retry_after:.0f}s"
            )

        dispatcher._record(RATE_LIMIT_HITS_TOTAL, {"scope": "bucket"})
        dispatcher._record(RETRIES_TOTAL, {"reason": "rate_limited"})
        self._requeue(entry)

    def _on_global_rate_limited(
        self, entry: QueuedRequest, info: RateLimitInfo
    ) -> None:
        dispatcher = self._dispatcher
        retry_after = info.retry_after
        if retry_after is None:
            retry_after = DEFAULT_RETRY_AFTER
        dispatcher.global_limiter.block_for(retry_after)
        dispatcher._record(RATE_LIMIT_HITS_TOTAL, {"scope": "global"})
        dispatcher._record(RETRIES_TOTAL, {"reason": "global_rate_limited"})
        self._requeue(entry)

    def _retry_or_fail(
        self,
        entry: QueuedRequest,
        kind: ResponseClass,
        response: TransportResponse | None,
        error: BaseException | None,
        now: float,
    ) -> None:
        dispatcher = self._dispatcher
        policy = dispatcher.retry_policy
        if policy.can_retry(entry.retries):
            delay = policy.delay(entry.retries)
            entry.retries += 1
            entry.not_before = now + delay
            cause = f"HTTP {response.status}" if response is not None else repr(error)
            logger.warning(
                f"Request {entry.route} failed with {cause}, retrying in "
                f"{delay:.3f}s (retry {entry.retries}/{policy.max_retries})"
            )
            dispatcher._record(RETRIES_TOTAL, {"reason": kind.value})
            self._requeue(entry)
            return

        failure: Exception
        if response is not None:
            failure = ServerUnavailableError(
                response.status, response.body, entry.route, entry.attempts
            )
        else:
            failure = TransportFailureError(
                error or TransportError("no response"), entry.route, entry.attempts
            )
        dispatcher._fail(entry, failure, reason=kind.value)

    def __repr__(self) -> str:
        return (
            f"<Bucket {self.bucket_id} remaining={self.remaining}/{self.limit} "
            f"queued={len(self.queue)}>"
        )


__all__ = ["DEFAULT_RETRY_AFTER", "UNINIT_PREFIX", "Bucket", "BucketState"]
