# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""Provider abstractions for parsing rate limit metadata."""

from .base import ProviderInterface, RateLimitInfo
from .headers import HeaderRateLimitProvider

__all__ = [
    "HeaderRateLimitProvider",
    "ProviderInterface",
    "RateLimitInfo",
]
