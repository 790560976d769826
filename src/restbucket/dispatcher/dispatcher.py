# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Request dispatcher.

The dispatcher owns the bucket table and routes every submitted request to
the bucket its route resolves to:

    route base key ──_hashes──> server hash
    "hash:major"   ──_buckets─> Bucket          (after the hash is known)
    "uninit+METHOD template:major" ──> Bucket   (before)
    retired id     ──_aliases─> bucket id

All table mutation runs on the event loop thread in code that does not
await, so the loop itself serializes it. Submissions from other threads are
marshalled onto the loop with ``call_soon_threadsafe``.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import time
from collections import deque
from collections.abc import Mapping
from typing import Any
from urllib.parse import quote

from typing_extensions import Self

from ..actions.rest import ResponseHandler, RestRequest
from ..context import CallContext, callback_scope
from ..exceptions import (
    DispatcherStoppedError,
    QueueOverflowError,
    RequestTimeoutError,
)
from ..observability.collector import MetricsCollector, get_metrics_collector
from ..observability.constants import (
    ACTIVE_BUCKETS,
    BUCKET_MIGRATIONS_TOTAL,
    CALLBACK_ERRORS_TOTAL,
    QUEUE_DEPTH,
    QUEUE_OVERFLOWS_TOTAL,
    RATE_LIMIT_HITS_TOTAL,
    REQUEST_LATENCY_SECONDS,
    REQUESTS_CANCELLED_TOTAL,
    REQUESTS_COMPLETED_TOTAL,
    REQUESTS_FAILED_TOTAL,
    REQUESTS_SUBMITTED_TOTAL,
    RETRIES_TOTAL,
)
from ..observability.protocols import MetricsCollectorProtocol
from ..protocols.transport import TransportProtocol
from ..providers.base import ProviderInterface, RateLimitInfo
from ..providers.headers import HeaderRateLimitProvider
from ..types.request import QueuedRequest, RequestState
from ..types.route import CompiledRoute, Route
from .bucket import UNINIT_PREFIX, Bucket, BucketState
from .config import DispatcherConfig
from .global_limiter import GlobalRateLimiter
from .policy import RetryPolicy

logger = logging.getLogger(__name__)

# Counter metric -> key in the always-on stats dict
_STAT_KEYS = {
    REQUESTS_SUBMITTED_TOTAL: "submitted",
    REQUESTS_COMPLETED_TOTAL: "completed",
    REQUESTS_FAILED_TOTAL: "failed",
    REQUESTS_CANCELLED_TOTAL: "cancelled",
    QUEUE_OVERFLOWS_TOTAL: "queue_overflows",
    CALLBACK_ERRORS_TOTAL: "callback_errors",
    RATE_LIMIT_HITS_TOTAL: "rate_limit_hits",
    RETRIES_TOTAL: "retries",
    BUCKET_MIGRATIONS_TOTAL: "migrations",
}


class Dispatcher:
    """
    Rate-limited dispatcher for REST requests.

    Example:
        >>> async with Dispatcher(HttpxTransport(), DispatcherConfig(base_url=API)) as d:
        ...     with with_reason("cleanup"):
        ...         await d.new_request(DELETE_MESSAGE.compile(channel_id, message_id))
    """

    def __init__(
        self,
        transport: TransportProtocol,
        config: DispatcherConfig | None = None,
        provider: ProviderInterface | None = None,
        metrics_collector: MetricsCollectorProtocol | None = None,
    ):
        """
        Initialize the dispatcher.

        Args:
            transport: Performs the HTTP calls
            config: Dispatcher configuration (defaults apply if None)
            provider: Parses rate-limit headers (defaults to HeaderRateLimitProvider)
            metrics_collector: Metrics backend; enables metrics when given
        """
        self.transport = transport
        self.config = config or DispatcherConfig()
        self.provider = provider or HeaderRateLimitProvider()
        self.retry_policy = RetryPolicy.from_config(self.config)
        self.global_limiter = GlobalRateLimiter(
            self.config.global_limit, self.config.global_window
        )

        self._setup_tables()
        self._setup_execution_control()
        self._setup_metrics(metrics_collector)

        logger.info(
            f"Initialized {self.__class__.__name__} with provider={self.provider.name} "
            f"global_limit={self.config.global_limit}"
        )

    def _setup_tables(self) -> None:
        """Setup the bucket table."""
        self._hashes: dict[str, str] = {}
        self._buckets: dict[str, Bucket] = {}
        self._aliases: dict[str, str] = {}
        self._rate_limited_routes: set[str] = set()
        self._sequence = itertools.count()

    def _setup_execution_control(self) -> None:
        """Setup lifecycle flags and task tracking."""
        self._running = False
        self._accepting = False
        self._loop: asyncio.AbstractEventLoop | None = None
        self._cleanup_task: asyncio.Task[None] | None = None
        self._active_tasks: set[asyncio.Task[Any]] = set()
        self._shutdown_lock = asyncio.Lock()
        self._pending = 0
        self._drained: asyncio.Event | None = None

    def _setup_metrics(self, metrics_collector: MetricsCollectorProtocol | None) -> None:
        """Setup metrics collection if enabled."""
        self.stats: dict[str, int] = dict.fromkeys(_STAT_KEYS.values(), 0)
        self.metrics_collector: MetricsCollectorProtocol | None
        if metrics_collector is not None:
            self.metrics_collector = metrics_collector
        elif self.config.metrics_enabled:
            self.metrics_collector = self._create_metrics_collector()
        else:
            self.metrics_collector = None

    def _create_metrics_collector(self) -> MetricsCollector:
        """
        Return the process-wide MetricsCollector.

        Starts the Prometheus HTTP server if configured and not yet running.
        """
        collector = get_metrics_collector(
            enable_prometheus=self.config.prometheus_enabled
        )
        if (
            self.config.prometheus_enabled
            and self.config.start_prometheus_server
            and not collector.server_running
        ):
            collector.start_http_server(
                self.config.prometheus_host, self.config.prometheus_port
            )
        return collector

    # === Lifecycle ===

    @property
    def loop(self) -> asyncio.AbstractEventLoop | None:
        """The event loop the dispatcher runs on, None while stopped."""
        return self._loop if self._running else None

    async def start(self) -> None:
        """Start accepting requests on the running event loop."""
        if self._running:
            return

        self._running = True
        self._accepting = True
        self._loop = asyncio.get_running_loop()
        self._drained = asyncio.Event()
        if self._pending == 0:
            self._drained.set()
        self._cleanup_task = asyncio.create_task(self._cleanup_loop())

        logger.info(f"{self.__class__.__name__} started")

    async def stop(self, shutdown: bool = False) -> None:
        """
        Stop the dispatcher.

        New submissions are refused immediately. By default queued requests
        still run and ``stop`` waits until every queue has drained.

        Args:
            shutdown: Cancel every queued request instead of draining. Calls
                already in flight still complete.
        """
        async with self._shutdown_lock:
            if not self._running:
                return

            self._accepting = False
            if shutdown:
                cancelled = self._cancel_queued(include_priority=True)
                logger.info(f"Shutdown cancelled {cancelled} queued request(s)")

            if self._drained is not None and self._pending > 0:
                logger.info(f"Waiting for {self._pending} request(s) to drain")
                await self._drained.wait()

            self._running = False

            if self._cleanup_task:
                self._cleanup_task.cancel()
                try:
                    await self._cleanup_task
                except asyncio.CancelledError:
                    pass
                self._cleanup_task = None

            # Bucket loops and async callbacks
            if self._active_tasks:
                for task in list(self._active_tasks):
                    if not task.done():
                        task.cancel()

                await asyncio.gather(*self._active_tasks, return_exceptions=True)

            self._active_tasks.clear()
            for bucket in self._buckets.values():
                bucket.retire()
            self._buckets.clear()
            self._aliases.clear()
            self.global_limiter.close()
            self._set_gauge(ACTIVE_BUCKETS, 0)

            logger.info(f"{self.__class__.__name__} stopped successfully")

    def is_running(self) -> bool:
        """Check if the dispatcher is running."""
        return bool(self._running)

    async def __aenter__(self) -> Self:
        """
        Async context manager entry.

        Example:
            async with Dispatcher(transport) as dispatcher:
                await dispatcher.new_request(route.compile("123"))
        """
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        """Stop the dispatcher, draining queued requests."""
        await self.stop()

    # === Requests ===

    def new_request(
        self,
        route: Route | CompiledRoute,
        body: Any = None,
        *,
        headers: Mapping[str, str] | None = None,
        handler: ResponseHandler | None = None,
    ) -> RestRequest[Any]:
        """
        Build a request handle. Nothing is sent until it is submitted or awaited.

        Args:
            route: A compiled route, or a route without parameters
            body: JSON-serializable body, bytes or str
            headers: Extra request headers
            handler: Turns the response into the request's result
        """
        compiled = route.compile() if isinstance(route, Route) else route
        return RestRequest(self, compiled, body, headers, handler)

    async def request(
        self,
        route: Route | CompiledRoute,
        body: Any = None,
        *,
        headers: Mapping[str, str] | None = None,
        handler: ResponseHandler | None = None,
    ) -> Any:
        """Submit a request and wait for its result."""
        return await self.new_request(
            route, body, headers=headers, handler=handler
        ).await_result()

    def build_url(self, route: CompiledRoute) -> str:
        return f"{self.config.base_url.rstrip('/')}/{route.url_path}"

    def _build_headers(
        self, headers: Mapping[str, str], context: CallContext
    ) -> dict[str, str]:
        built = dict(headers)
        if context.reason and self.config.reason_header not in built:
            built[self.config.reason_header] = quote(context.reason, safe="")
        return built

    def _on_loop_thread(self) -> bool:
        try:
            return asyncio.get_running_loop() is self._loop
        except RuntimeError:
            return False

    def _submit(self, request: RestRequest[Any]) -> None:
        """Accept a submitted request, marshalling it onto the loop if needed."""
        loop = self._loop
        if self._running and loop is not None and not self._on_loop_thread():
            try:
                loop.call_soon_threadsafe(self._enqueue, request)
            except RuntimeError:
                request._fail(DispatcherStoppedError("Dispatcher event loop is closed"))
            return
        self._enqueue(request)

    def _enqueue(self, request: RestRequest[Any]) -> None:
        # Cancelled while crossing threads
        if request.state is not RequestState.CREATED:
            return
        if not self._accepting:
            request._fail(DispatcherStoppedError("Dispatcher is not accepting requests"))
            return

        now = time.monotonic()
        context = request.context or CallContext()
        bucket_id = self._bucket_id_for(request.route)
        bucket = self._buckets.get(bucket_id)

        max_size = self.config.max_queue_size
        if max_size is not None and bucket is not None and len(bucket.queue) >= max_size:
            logger.warning(f"Queue for bucket {bucket_id} is full, rejecting {request!r}")
            self._record(QUEUE_OVERFLOWS_TOTAL)
            request._fail(
                QueueOverflowError(
                    f"Queue for bucket {bucket_id} is full ({max_size} requests)",
                    queue_key=bucket_id,
                )
            )
            return

        entry = QueuedRequest(
            sequence=next(self._sequence),
            route=request.route,
            body=request.body,
            headers=self._build_headers(request.headers, context),
            context=context,
            handle=request,
            submitted_at=now,
            deadline=request._resolve_deadline(now, self.config.request_timeout),
        )
        if bucket is None:
            bucket = self._get_or_create_bucket(bucket_id)

        request._mark_queued(entry)
        self._pending += 1
        if self._drained is not None:
            self._drained.clear()
        self._record(REQUESTS_SUBMITTED_TOTAL, {"method": entry.route.method.value})
        self._set_gauge(QUEUE_DEPTH, self._pending)

        bucket.enqueue(entry)
        if entry.deadline is not None and self._loop is not None:
            entry.timer = self._loop.call_later(
                max(0.0, entry.deadline - now), self._on_deadline, entry
            )
        logger.debug(f"Queued {request!r} on bucket {bucket_id}")

    # === Bucket table ===

    def _bucket_id_for(self, route: CompiledRoute) -> str:
        """Resolve the bucket id a route currently maps to."""
        key = route.route.base_key
        hash_ = self._hashes.get(key)
        if hash_ is None:
            return f"{UNINIT_PREFIX}{key}:{route.major}"
        return f"{hash_}:{route.major}"

    def _record_hash(self, route: CompiledRoute, hash_: str) -> str:
        """Remember the server hash of a route; returns the owning bucket id."""
        key = route.route.base_key
        previous = self._hashes.get(key)
        if previous != hash_:
            if previous is None:
                logger.debug(f"Caching bucket hash {key} -> {hash_}")
            else:
                logger.debug(f"Updating bucket hash {key} -> {hash_} (was {previous})")
            self._hashes[key] = hash_
        return f"{hash_}:{route.major}"

    def _get_or_create_bucket(self, bucket_id: str) -> Bucket:
        bucket = self._buckets.get(bucket_id)
        if bucket is None:
            bucket = Bucket(bucket_id, self)
            self._buckets[bucket_id] = bucket
            self._aliases.pop(bucket_id, None)
            self._set_gauge(ACTIVE_BUCKETS, len(self._buckets))
            logger.debug(f"Created bucket {bucket_id}")
        return bucket

    def _post_update(self, bucket_id: str, info: RateLimitInfo, observed_at: float) -> None:
        self._get_or_create_bucket(bucket_id).post_update(info, observed_at)

    def _start_bucket_loop(self, bucket: Bucket) -> asyncio.Task[None]:
        if self._loop is None:
            raise DispatcherStoppedError("Dispatcher is not running")
        task = self._loop.create_task(
            bucket.run(), name=f"restbucket-bucket-{bucket.bucket_id}"
        )
        self._track_task(task)
        return task

    def migrate(self, source: Bucket, target_id: str) -> int:
        """
        Move the requests of ``source`` that now resolve to ``target_id``.

        Moved requests are merged into the target by submission sequence. An
        uninit source left empty is retired and aliased to the target.

        Returns:
            Number of requests moved
        """
        moving = [e for e in source.queue if self._bucket_id_for(e.route) == target_id]
        if not moving:
            return 0

        moved = {id(e) for e in moving}
        source.queue = deque(e for e in source.queue if id(e) not in moved)
        target = self._get_or_create_bucket(target_id)
        target.merge(moving)

        self._record(BUCKET_MIGRATIONS_TOTAL)
        logger.debug(
            f"Migrated {len(moving)} request(s) from {source.bucket_id} to {target_id}"
        )
        if source.is_uninit and not source.queue and source.in_flight is None:
            self._retire(source, alias=target_id)
        return len(moving)

    def _retire(self, bucket: Bucket, alias: str | None = None) -> None:
        if self._buckets.get(bucket.bucket_id) is bucket:
            del self._buckets[bucket.bucket_id]
        if alias is not None:
            self._aliases[bucket.bucket_id] = alias
        bucket.retire()
        self._set_gauge(ACTIVE_BUCKETS, len(self._buckets))
        logger.debug(
            f"Retired bucket {bucket.bucket_id}"
            + (f" (alias of {alias})" if alias else "")
        )

    def _resolve_alias(self, bucket_id: str) -> str:
        seen: set[str] = set()
        while bucket_id in self._aliases and bucket_id not in seen:
            seen.add(bucket_id)
            bucket_id = self._aliases[bucket_id]
        return bucket_id

    def _mark_rate_limited(self, route_key: str) -> bool:
        """Return True the first time a route is throttled."""
        if route_key in self._rate_limited_routes:
            return False
        self._rate_limited_routes.add(route_key)
        return True

    def get_bucket_state(self, bucket_id: str) -> BucketState | None:
        """Snapshot of a bucket, following aliases of retired buckets."""
        bucket = self._buckets.get(self._resolve_alias(bucket_id))
        return bucket.snapshot() if bucket is not None else None

    def bucket_id_for(self, route: Route | CompiledRoute) -> str:
        """The bucket id a route is currently scheduled on."""
        compiled = route.compile() if isinstance(route, Route) else route
        return self._bucket_id_for(compiled)

    # === Resolution ===

    def _succeed(self, entry: QueuedRequest, value: Any) -> None:
        entry.handle._succeed(value)
        self._record(REQUESTS_COMPLETED_TOTAL, {"method": entry.route.method.value})
        self._finish_entry(entry)

    def _fail(self, entry: QueuedRequest, error: BaseException, reason: str) -> None:
        logger.debug(f"Request {entry.route} failed ({reason}): {error!r}")
        entry.handle._fail(error)
        self._record(
            REQUESTS_FAILED_TOTAL,
            {"method": entry.route.method.value, "reason": reason},
        )
        self._finish_entry(entry)

    def _time_out(self, entry: QueuedRequest) -> None:
        deadline = entry.deadline if entry.deadline is not None else time.monotonic()
        self._fail(
            entry,
            RequestTimeoutError(deadline, entry.route, entry.attempts),
            reason="timeout",
        )

    def _on_deadline(self, entry: QueuedRequest) -> None:
        """Fail an entry still waiting in a queue once its deadline passes."""
        entry.timer = None
        if entry.finished:
            return
        bucket = self._buckets.get(entry.bucket_id)
        # Not queued means in flight; the transport enforces the deadline there
        if bucket is None or not bucket.discard(entry):
            return
        with callback_scope(True):
            self._time_out(entry)

    def _finish_entry(self, entry: QueuedRequest) -> None:
        """Account for an entry leaving the dispatcher. Runs once per entry."""
        if entry.finished:
            return
        entry.finished = True
        if entry.timer is not None:
            entry.timer.cancel()
            entry.timer = None
        if entry.handle.state is RequestState.CANCELLED:
            self._record(REQUESTS_CANCELLED_TOTAL)
        elif self.metrics_collector is not None:
            self.metrics_collector.observe_histogram(
                REQUEST_LATENCY_SECONDS,
                time.monotonic() - entry.submitted_at,
                {"method": entry.route.method.value},
            )

        self._pending -= 1
        self._set_gauge(QUEUE_DEPTH, self._pending)
        if self._pending == 0 and self._drained is not None:
            self._drained.set()

    def _discard(self, entry: QueuedRequest) -> bool:
        """
        Take an entry out of its queue and resolve it as cancelled.

        Returns:
            False if the entry is not waiting in a queue
        """
        bucket = self._buckets.get(entry.bucket_id)
        if bucket is None or not bucket.discard(entry):
            return False
        entry.handle._cancelled()
        self._finish_entry(entry)
        return True

    # === Cancellation and cleanup ===

    def cancel_requests(self) -> int:
        """
        Cancel every queued request not marked as priority.

        Returns:
            Number of requests cancelled
        """
        count = self._cancel_queued(include_priority=False)
        if count:
            logger.debug(f"Cancelled {count} queued request(s)")
        return count

    def _cancel_queued(self, include_priority: bool) -> int:
        count = 0
        with callback_scope(True):
            for bucket in list(self._buckets.values()):
                for entry in list(bucket.queue):
                    handle = entry.handle
                    if handle.is_priority and not include_priority:
                        continue
                    if handle.cancel():
                        count += 1
        return count

    async def _cleanup_loop(self) -> None:
        """Periodically purge dead entries and idle buckets."""
        while self._running:
            try:
                await asyncio.sleep(self.config.cleanup_interval)
                self.cleanup()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.exception(f"Error during bucket cleanup: {e}")

    def cleanup(self) -> int:
        """
        Drop cancelled entries, fail expired ones and remove idle buckets.

        Returns:
            Number of buckets removed
        """
        now = time.monotonic()
        removed = 0
        with callback_scope(True):
            for bucket in list(self._buckets.values()):
                for entry in list(bucket.queue):
                    if entry.is_cancelled:
                        self._discard(entry)
                    elif entry.is_expired(now) and bucket.discard(entry):
                        self._time_out(entry)
                if bucket.is_idle(now):
                    self._retire(bucket)
                    removed += 1

        self._aliases = {
            retired: target
            for retired, target in self._aliases.items()
            if self._resolve_alias(target) in self._buckets
        }
        if removed:
            logger.debug(f"Cleanup removed {removed} idle bucket(s)")
        return removed

    # === Metrics ===

    def _record(
        self, name: str, labels: dict[str, str] | None = None, value: int = 1
    ) -> None:
        key = _STAT_KEYS.get(name)
        if key is not None:
            self.stats[key] += value
        if self.metrics_collector is not None:
            self.metrics_collector.inc_counter(name, value, labels)

    def _set_gauge(self, name: str, value: float) -> None:
        if self.metrics_collector is not None:
            self.metrics_collector.set_gauge(name, value)

    def _record_callback_error(self) -> None:
        self._record(CALLBACK_ERRORS_TOTAL)

    def _track_task(self, task: asyncio.Task[Any]) -> None:
        self._active_tasks.add(task)
        task.add_done_callback(self._active_tasks.discard)

    def get_metrics(self) -> dict[str, Any]:
        """Get dispatcher metrics."""
        metrics: dict[str, Any] = {
            "running": self._running,
            "pending": self._pending,
            "buckets": len(self._buckets),
            "aliases": len(self._aliases),
            "known_hashes": len(self._hashes),
            "global_remaining": self.global_limiter.remaining,
            "global_blocked": self.global_limiter.is_blocked(),
            **self.stats,
        }
        if self.metrics_collector is not None:
            metrics["collector"] = self.metrics_collector.get_metrics()
        return metrics


__all__ = ["Dispatcher"]
