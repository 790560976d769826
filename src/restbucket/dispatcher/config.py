# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Dispatcher Configuration

This module provides the configuration class for the request dispatcher,
covering request budgets, retry backoff, the account-wide limit and metrics.
"""

from dataclasses import dataclass


@dataclass
class DispatcherConfig:
    """
    Configuration for the request dispatcher.

    All durations are in seconds.
    """

    # === Request Building ===

    base_url: str = ""
    """Prefix joined with each compiled route path."""

    reason_header: str = "X-Audit-Log-Reason"
    """Outbound header carrying the percent-encoded audit reason."""

    # === Request Processing ===

    request_timeout: float | None = 120.0
    """Wall-clock budget per request across all retries. None disables it."""

    max_queue_size: int | None = None
    """Maximum pending requests per bucket. None means unbounded."""

    # === Retry Policy (5xx and transport failures) ===

    max_retries: int = 3
    """Retries after the first attempt before the request fails."""

    retry_base_delay: float = 0.1
    """Backoff before the first retry."""

    backoff_base: float = 2.0
    """Multiplier applied to the delay for every further retry."""

    max_backoff: float = 5.0
    """Upper bound for a single backoff delay."""

    backoff_jitter: float = 0.1
    """Random jitter added to each delay, as a fraction of the delay."""

    # === Account-wide Limit ===

    global_limit: int | None = 50
    """Requests allowed per global window. None only honors server signals."""

    global_window: float = 1.0
    """Length of the global window."""

    # === Housekeeping ===

    cleanup_interval: float = 30.0
    """Interval between bucket cleanup passes."""

    long_rate_limit_warning: float = 1800.0
    """Rate limits longer than this are logged as warnings."""

    # === Metrics and Monitoring ===

    metrics_enabled: bool = False
    """Enable metrics collection."""

    prometheus_enabled: bool = True
    """Register metrics with prometheus_client when it is installed."""

    start_prometheus_server: bool = False
    """Start the Prometheus HTTP exporter when the dispatcher starts."""

    prometheus_host: str = "127.0.0.1"
    """Prometheus metrics host."""

    prometheus_port: int = 9090
    """Prometheus metrics port."""

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        if self.request_timeout is not None and self.request_timeout <= 0:
            raise ValueError("request_timeout must be positive or None")
        if self.max_queue_size is not None and self.max_queue_size < 1:
            raise ValueError("max_queue_size must be at least 1")
        if self.max_retries < 0:
            raise ValueError("max_retries must be non-negative")
        if self.retry_base_delay < 0:
            raise ValueError("retry_base_delay must be non-negative")
        if self.backoff_base < 1.0:
            raise ValueError("backoff_base must be at least 1.0")
        if self.max_backoff < self.retry_base_delay:
            raise ValueError("max_backoff must be >= retry_base_delay")
        if not 0 <= self.backoff_jitter <= 1.0:
            raise ValueError("backoff_jitter must be between 0 and 1.0")
        if self.global_limit is not None and self.global_limit < 1:
            raise ValueError("global_limit must be at least 1 or None")
        if self.global_window <= 0:
            raise ValueError("global_window must be positive")
        if self.cleanup_interval <= 0:
            raise ValueError("cleanup_interval must be positive")
        if not self.reason_header:
            raise ValueError("reason_header must not be empty")


__all__ = ["DispatcherConfig"]
