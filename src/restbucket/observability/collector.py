# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
In-process dispatcher metrics with optional Prometheus export.

Every metric name owns one series that maps label sets to values. Names
listed in ``METRICS`` take their type, help text and label names from
there; any other name is accepted and typed by the first call that uses it.
When prometheus_client is installed, each update is also applied to a
matching Prometheus metric registered on first use.

Usage:
    >>> from restbucket.observability.collector import get_metrics_collector
    >>> collector = get_metrics_collector(enable_prometheus=False)
    >>> collector.inc_counter('restbucket_retries_total',
    ...                       labels={'reason': 'server_error'})
    >>> collector.get_flat_metrics()
    {'restbucket_retries_total{reason=server_error}': 1}

Updates may come from any thread; series access is serialized by one lock.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from typing import Any, ClassVar, NamedTuple

from .constants import (
    ACTIVE_BUCKETS,
    BUCKET_MIGRATIONS_TOTAL,
    CALLBACK_ERRORS_TOTAL,
    LATENCY_BUCKETS,
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

logger = logging.getLogger(__name__)

try:
    import prometheus_client

    PROMETHEUS_AVAILABLE = True
except ImportError:
    prometheus_client = None  # type: ignore[assignment]
    PROMETHEUS_AVAILABLE = False

COUNTER = "counter"
GAUGE = "gauge"
HISTOGRAM = "histogram"

LabelSet = tuple[tuple[str, str], ...]


class MetricSpec(NamedTuple):
    """Type, help text and label names of one metric."""

    kind: str
    help: str
    labels: tuple[str, ...] = ()


METRICS: dict[str, MetricSpec] = {
    REQUESTS_SUBMITTED_TOTAL: MetricSpec(
        COUNTER, "Requests accepted by the dispatcher", ("method",)
    ),
    REQUESTS_COMPLETED_TOTAL: MetricSpec(
        COUNTER, "Requests resolved successfully", ("method",)
    ),
    REQUESTS_FAILED_TOTAL: MetricSpec(
        COUNTER, "Requests resolved with a failure", ("method", "reason")
    ),
    REQUESTS_CANCELLED_TOTAL: MetricSpec(COUNTER, "Requests cancelled before sending"),
    QUEUE_OVERFLOWS_TOTAL: MetricSpec(COUNTER, "Submissions refused by a full bucket"),
    CALLBACK_ERRORS_TOTAL: MetricSpec(COUNTER, "Exceptions raised by user callbacks"),
    RATE_LIMIT_HITS_TOTAL: MetricSpec(COUNTER, "429 responses received", ("scope",)),
    RETRIES_TOTAL: MetricSpec(COUNTER, "Requests sent again", ("reason",)),
    BUCKET_MIGRATIONS_TOTAL: MetricSpec(COUNTER, "Queues moved to a discovered bucket"),
    ACTIVE_BUCKETS: MetricSpec(GAUGE, "Buckets currently tracked"),
    QUEUE_DEPTH: MetricSpec(GAUGE, "Requests waiting in bucket queues"),
    REQUEST_LATENCY_SECONDS: MetricSpec(
        HISTOGRAM, "Seconds from submission to resolution", ("method",)
    ),
}


def _label_set(labels: dict[str, str] | None) -> LabelSet:
    return tuple(sorted(labels.items())) if labels else ()


def _render(label_set: LabelSet) -> str:
    return ",".join(f"{k}={v}" for k, v in label_set)


def _summarize(observations: deque[float]) -> dict[str, float]:
    total = sum(observations)
    return {
        "count": len(observations),
        "sum": total,
        "avg": total / len(observations),
        "min": min(observations),
        "max": max(observations),
    }


class _Series:
    """Values of one metric keyed by label set."""

    def __init__(
        self, name: str, spec: MetricSpec, max_label_sets: int, window: int
    ) -> None:
        self.name = name
        self.spec = spec
        self.values: dict[LabelSet, Any] = {}
        self._max_label_sets = max_label_sets
        self._window = window

    def admit(self, label_set: LabelSet) -> bool:
        """Make room for ``label_set``, unless the series is full."""
        if label_set in self.values:
            return True
        if len(self.values) >= self._max_label_sets:
            logger.warning(
                f"Label limit ({self._max_label_sets}) reached for {self.name}, "
                f"dropping {{{_render(label_set)}}}"
            )
            return False
        if self.spec.kind == HISTOGRAM:
            self.values[label_set] = deque(maxlen=self._window)
        else:
            self.values[label_set] = 0
        return True


class MetricsCollector:
    """
    Collector for dispatcher counters, gauges and latency histograms.

    Each metric keeps at most MAX_LABEL_SETS label combinations; new ones
    past that are dropped with a warning. Histograms keep the most recent
    HISTOGRAM_WINDOW observations per label set for snapshots, while the
    Prometheus histogram (if any) sees every observation.

    Example:
        >>> collector = MetricsCollector(enable_prometheus=False)
        >>> collector.set_gauge('restbucket_queue_depth', 3)
        >>> collector.get_flat_metrics()
        {'restbucket_queue_depth': 3}
    """

    MAX_LABEL_SETS: ClassVar[int] = 1000
    HISTOGRAM_WINDOW: ClassVar[int] = 10000

    def __init__(self, enable_prometheus: bool = True, registry: Any = None) -> None:
        """
        Args:
            enable_prometheus: Export to Prometheus when prometheus_client is installed
            registry: CollectorRegistry to export into; the default registry if None
        """
        self._export = enable_prometheus and PROMETHEUS_AVAILABLE
        self._registry = registry
        self._series: dict[str, _Series] = {}
        # Survives reset(): a registry refuses the same name twice
        self._exporters: dict[str, Any] = {}
        self._lock = threading.RLock()
        self._server_running = False

    def _exporter(self, name: str, spec: MetricSpec) -> Any:
        if not self._export:
            return None
        if name not in self._exporters:
            factory = {
                COUNTER: prometheus_client.Counter,
                GAUGE: prometheus_client.Gauge,
                HISTOGRAM: prometheus_client.Histogram,
            }[spec.kind]
            kwargs: dict[str, Any] = {
                "registry": self._registry
                if self._registry is not None
                else prometheus_client.REGISTRY
            }
            if spec.kind == HISTOGRAM:
                kwargs["buckets"] = LATENCY_BUCKETS
            try:
                self._exporters[name] = factory(name, spec.help, spec.labels, **kwargs)
            except ValueError as e:
                logger.warning(f"Not exporting {name} to Prometheus: {e}")
                self._exporters[name] = None
        return self._exporters[name]

    def _update(
        self,
        kind: str,
        name: str,
        labels: dict[str, str] | None,
        operation: str,
        value: float,
    ) -> None:
        label_set = _label_set(labels)
        with self._lock:
            series = self._series.get(name)
            if series is None:
                spec = METRICS.get(name)
                if spec is None or spec.kind != kind:
                    spec = MetricSpec(kind, f"{kind} {name}")
                series = _Series(name, spec, self.MAX_LABEL_SETS, self.HISTOGRAM_WINDOW)
                self._series[name] = series
            elif series.spec.kind != kind:
                logger.warning(f"{name} is a {series.spec.kind}, ignoring {operation}")
                return
            if not series.admit(label_set):
                return
            if operation == "observe":
                series.values[label_set].append(value)
            elif operation == "set":
                series.values[label_set] = value
            else:
                series.values[label_set] += value
            exporter = self._exporter(name, series.spec)

        if exporter is None:
            return
        try:
            target = exporter.labels(**labels) if labels else exporter
            getattr(target, operation)(value)
        except (ValueError, TypeError) as e:
            logger.debug(f"Prometheus {operation} failed for {name}: {e}")

    def inc_counter(
        self,
        name: str,
        value: int = 1,
        labels: dict[str, str] | None = None,
    ) -> None:
        """
        Add ``value`` to a counter.

        Raises:
            ValueError: If value is negative
        """
        if value < 0:
            raise ValueError(f"Counter {name} cannot decrease (got {value})")
        self._update(COUNTER, name, labels, "inc", value)

    def set_gauge(
        self,
        name: str,
        value: float,
        labels: dict[str, str] | None = None,
    ) -> None:
        self._update(GAUGE, name, labels, "set", value)

    def observe_histogram(
        self,
        name: str,
        value: float,
        labels: dict[str, str] | None = None,
    ) -> None:
        self._update(HISTOGRAM, name, labels, "observe", value)

    def get_metrics(self) -> dict[str, Any]:
        """
        Snapshot every metric as plain dicts.

        Values are keyed by metric name, then by rendered label set
        (``"method=GET"``, or ``""`` without labels). Histograms are reported
        as count, sum, avg, min and max over the retained window.
        """
        snapshot: dict[str, dict[str, Any]] = {
            "counters": {},
            "gauges": {},
            "histograms": {},
        }
        with self._lock:
            for name, series in self._series.items():
                if series.spec.kind == HISTOGRAM:
                    snapshot["histograms"][name] = {
                        _render(label_set): _summarize(observations)
                        for label_set, observations in series.values.items()
                        if observations
                    }
                else:
                    snapshot[f"{series.spec.kind}s"][name] = {
                        _render(label_set): value
                        for label_set, value in series.values.items()
                    }
        return snapshot

    def get_flat_metrics(self) -> dict[str, Any]:
        """Counters and gauges keyed as ``name`` or ``name{label=value,...}``."""
        with self._lock:
            return {
                f"{name}{{{_render(label_set)}}}" if label_set else name: value
                for name, series in self._series.items()
                if series.spec.kind != HISTOGRAM
                for label_set, value in series.values.items()
            }

    def reset(self) -> None:
        """Forget every recorded value. Prometheus metrics are left as they are."""
        with self._lock:
            self._series.clear()

    def start_http_server(self, host: str = "127.0.0.1", port: int = 9090) -> bool:
        """
        Serve the Prometheus registry over HTTP for scraping.

        Returns:
            True if the server is running after the call
        """
        if not PROMETHEUS_AVAILABLE:
            logger.warning("prometheus_client is not installed, no metrics server")
            return False
        if self._server_running:
            return True
        registry = self._registry if self._registry is not None else prometheus_client.REGISTRY
        try:
            prometheus_client.start_http_server(port, addr=host, registry=registry)
        except OSError as e:
            logger.error(f"Could not start metrics server on {host}:{port}: {e}")
            return False
        self._server_running = True
        logger.info(f"Serving Prometheus metrics on {host}:{port}")
        return True

    @property
    def prometheus_enabled(self) -> bool:
        return self._export

    @property
    def server_running(self) -> bool:
        return self._server_running


_shared_collector: MetricsCollector | None = None
_shared_lock = threading.Lock()


def get_metrics_collector(enable_prometheus: bool = True) -> MetricsCollector:
    """
    Return the process-wide collector, creating it on first use.

    ``enable_prometheus`` only applies to the call that creates it.
    """
    global _shared_collector
    with _shared_lock:
        if _shared_collector is None:
            _shared_collector = MetricsCollector(enable_prometheus=enable_prometheus)
        return _shared_collector


def reset_metrics_collector() -> None:
    """Drop the process-wide collector so the next call builds a new one."""
    global _shared_collector
    with _shared_lock:
        _shared_collector = None


__all__ = [
    "METRICS",
    "PROMETHEUS_AVAILABLE",
    "MetricSpec",
    "MetricsCollector",
    "get_metrics_collector",
    "reset_metrics_collector",
]
