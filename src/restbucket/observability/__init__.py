# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Dispatcher metrics.

The dispatcher always keeps simple counts in ``Dispatcher.stats``. With
``metrics_enabled`` (or an explicit ``metrics_collector``) it also reports
labelled counters, gauges and a latency histogram through
MetricsCollectorProtocol. MetricsCollector is the bundled implementation and
exports to Prometheus when prometheus_client is installed.
"""

from .collector import (
    METRICS,
    PROMETHEUS_AVAILABLE,
    MetricsCollector,
    MetricSpec,
    get_metrics_collector,
    reset_metrics_collector,
)
from .constants import (
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
from .protocols import MetricsCollectorProtocol

__all__ = [
    "ACTIVE_BUCKETS",
    "BUCKET_MIGRATIONS_TOTAL",
    "CALLBACK_ERRORS_TOTAL",
    "METRICS",
    "PROMETHEUS_AVAILABLE",
    "QUEUE_DEPTH",
    "QUEUE_OVERFLOWS_TOTAL",
    "RATE_LIMIT_HITS_TOTAL",
    "REQUESTS_CANCELLED_TOTAL",
    "REQUESTS_COMPLETED_TOTAL",
    "REQUESTS_FAILED_TOTAL",
    "REQUESTS_SUBMITTED_TOTAL",
    "REQUEST_LATENCY_SECONDS",
    "RETRIES_TOTAL",
    "MetricSpec",
    "MetricsCollector",
    "MetricsCollectorProtocol",
    "get_metrics_collector",
    "reset_metrics_collector",
]
