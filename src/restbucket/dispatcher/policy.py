# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Response classification and retry policy.

Classification decides what the bucket loop does with a finished attempt:

    2xx                     SUCCESS              resolve with the parsed body
    429                     RATE_LIMITED         requeue at the front, no limit
    429 + global flag       GLOBAL_RATE_LIMITED  pause the global limiter
    5xx                     SERVER_ERROR         bounded exponential backoff
    other 4xx / 1xx / 3xx   REJECTED             fail immediately
    raised TransportError   TRANSPORT_ERROR      bounded exponential backoff
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from enum import Enum
from typing import Any

from ..providers.base import RateLimitInfo

logger = logging.getLogger(__name__)


class ResponseClass(Enum):
    """Outcome of a single attempt."""

    SUCCESS = "success"
    RATE_LIMITED = "rate_limited"
    GLOBAL_RATE_LIMITED = "global_rate_limited"
    SERVER_ERROR = "server_error"
    REJECTED = "rejected"
    TRANSPORT_ERROR = "transport_error"

    @property
    def is_throttle(self) -> bool:
        return self in (ResponseClass.RATE_LIMITED, ResponseClass.GLOBAL_RATE_LIMITED)

    @property
    def is_bounded_retry(self) -> bool:
        return self in (ResponseClass.SERVER_ERROR, ResponseClass.TRANSPORT_ERROR)


def classify(status: int, info: RateLimitInfo | None = None) -> ResponseClass:
    """Classify an HTTP status, using ``info`` to tell global 429s apart."""
    if 200 <= status < 300:
        return ResponseClass.SUCCESS
    if status == 429:
        if info is not None and info.is_global:
            return ResponseClass.GLOBAL_RATE_LIMITED
        return ResponseClass.RATE_LIMITED
    if status >= 500:
        return ResponseClass.SERVER_ERROR
    return ResponseClass.REJECTED


@dataclass(frozen=True)
class RetryPolicy:
    """
    Bounded exponential backoff for server and transport failures.

    ``delay(n)`` is ``min(base_delay * backoff_base ** n, max_backoff)`` plus
    up to ``jitter`` of that value, where ``n`` counts retries already made.
    """

    max_retries: int = 3
    base_delay: float = 0.1
    backoff_base: float = 2.0
    max_backoff: float = 5.0
    jitter: float = 0.1

    @classmethod
    def from_config(cls, config: Any) -> RetryPolicy:
        return cls(
            max_retries=getattr(config, "max_retries", 3),
            base_delay=getattr(config, "retry_base_delay", 0.1),
            backoff_base=getattr(config, "backoff_base", 2.0),
            max_backoff=getattr(config, "max_backoff", 5.0),
            jitter=getattr(config, "backoff_jitter", 0.1),
        )

    def can_retry(self, retries: int) -> bool:
        """Return True if another retry is allowed after ``retries`` retries."""
        return retries < self.max_retries

    def delay(self, retries: int) -> float:
        """
        Calculate the backoff before the next retry.

        Args:
            retries: Number of retries already made (0-based)

        Returns:
            Delay in seconds
        """
        delay = min(self.base_delay * (self.backoff_base**retries), self.max_backoff)
        if self.jitter:
            delay += delay * self.jitter * random.random()  # noqa: S311  # nosec B311
        logger.debug(f"Calculated backoff for retry {retries}: {delay:.3f}s")
        return delay


__all__ = ["ResponseClass", "RetryPolicy", "classify"]
