# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Dispatcher and its scheduling components.

This module provides:
- Dispatcher: Routes requests to rate-limit buckets and owns their loops
- DispatcherConfig: Configuration for dispatcher behavior
- Bucket, BucketState: Per-bucket queue, counters and snapshot
- GlobalRateLimiter: Account-wide budget shared by all buckets
- RetryPolicy, ResponseClass, classify: Response handling policy
"""

from .bucket import Bucket, BucketState
from .config import DispatcherConfig
from .dispatcher import Dispatcher
from .global_limiter import GlobalRateLimiter
from .policy import ResponseClass, RetryPolicy, classify

__all__ = [
    # Buckets
    "Bucket",
    "BucketState",
    # Dispatcher
    "Dispatcher",
    "DispatcherConfig",
    "GlobalRateLimiter",
    # Policy
    "ResponseClass",
    "RetryPolicy",
    "classify",
]
