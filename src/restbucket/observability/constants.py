# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Names of the metrics the dispatcher reports, all prefixed ``restbucket_``.

Counters end in ``_total`` and durations in ``_seconds``. Labels are limited
to bounded values: ``method`` (HTTP method), ``reason`` (failure or retry
reason) and ``scope`` (``bucket`` or ``global`` for 429s). Bucket hashes and
major parameter values are unbounded and never used as labels.

    >>> from restbucket.observability.constants import QUEUE_DEPTH
    >>> QUEUE_DEPTH
    'restbucket_queue_depth'
"""


# =============================================================================
# Prefix
# =============================================================================

METRIC_PREFIX = "restbucket"


# =============================================================================
# Request Lifecycle Metrics (dispatcher/dispatcher.py)
# =============================================================================

REQUESTS_SUBMITTED_TOTAL = f"{METRIC_PREFIX}_requests_submitted_total"
"""Total requests accepted by the dispatcher."""

REQUESTS_COMPLETED_TOTAL = f"{METRIC_PREFIX}_requests_completed_total"
"""Total requests resolved successfully."""

REQUESTS_FAILED_TOTAL = f"{METRIC_PREFIX}_requests_failed_total"
"""Total requests resolved with a failure (labelled by reason)."""

REQUESTS_CANCELLED_TOTAL = f"{METRIC_PREFIX}_requests_cancelled_total"
"""Total requests cancelled before being sent."""

QUEUE_OVERFLOWS_TOTAL = f"{METRIC_PREFIX}_queue_overflows_total"
"""Total submissions rejected because a bucket queue was full."""

CALLBACK_ERRORS_TOTAL = f"{METRIC_PREFIX}_callback_errors_total"
"""Total uncaught exceptions raised by user callbacks."""


# =============================================================================
# Rate Limit Metrics (dispatcher/bucket.py)
# =============================================================================

RATE_LIMIT_HITS_TOTAL = f"{METRIC_PREFIX}_rate_limit_hits_total"
"""Total 429 responses (labelled by scope)."""

RETRIES_TOTAL = f"{METRIC_PREFIX}_retries_total"
"""Total re-sends (labelled by reason)."""

BUCKET_MIGRATIONS_TOTAL = f"{METRIC_PREFIX}_bucket_migrations_total"
"""Total bucket migrations after a server-assigned hash was learned."""


# =============================================================================
# Gauges (dispatcher/dispatcher.py)
# =============================================================================

ACTIVE_BUCKETS = f"{METRIC_PREFIX}_active_buckets"
"""Number of buckets currently tracked."""

QUEUE_DEPTH = f"{METRIC_PREFIX}_queue_depth"
"""Requests waiting across all bucket queues."""


# =============================================================================
# Histograms
# =============================================================================

REQUEST_LATENCY_SECONDS = f"{METRIC_PREFIX}_request_latency_seconds"
"""Time from submission to resolution."""

# Requests can sit behind a bucket reset or a long 429 for minutes
LATENCY_BUCKETS: list[float] = [
    0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0,
]


__all__ = [
    "ACTIVE_BUCKETS",
    "BUCKET_MIGRATIONS_TOTAL",
    "CALLBACK_ERRORS_TOTAL",
    "LATENCY_BUCKETS",
    "METRIC_PREFIX",
    "QUEUE_DEPTH",
    "QUEUE_OVERFLOWS_TOTAL",
    "RATE_LIMIT_HITS_TOTAL",
    "REQUESTS_CANCELLED_TOTAL",
    "REQUESTS_COMPLETED_TOTAL",
    "REQUESTS_FAILED_TOTAL",
    "REQUESTS_SUBMITTED_TOTAL",
    "REQUEST_LATENCY_SECONDS",
    "RETRIES_TOTAL",
]
