# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Request handles returned to application code.

Classes:
    AsyncRequest: Abstract deferred, cancellable, composable handle.
    RestRequest: One HTTP call scheduled through a bucket.
    MappedRequest, ChainedRequest, RecoveredRequest, FallbackRequest,
    DelayedRequest: Handles derived from one source request.
    CombinedRequest: Handle over several requests, built by all_of or zip.
"""

from .base import AsyncRequest
from .composed import (
    ChainedRequest,
    CombinedRequest,
    DelayedRequest,
    FallbackRequest,
    MappedRequest,
    RecoveredRequest,
    all_of,
)
from .rest import RestRequest

__all__ = [
    "AsyncRequest",
    "ChainedRequest",
    "CombinedRequest",
    "DelayedRequest",
    "FallbackRequest",
    "MappedRequest",
    "RecoveredRequest",
    "RestRequest",
    "all_of",
]
