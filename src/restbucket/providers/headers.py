# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Default provider for the ``X-RateLimit-*`` header family.

Header contract (case-insensitive):
    X-RateLimit-Limit        requests per window
    X-RateLimit-Remaining    requests left in the window
    X-RateLimit-Reset-After  seconds until reset (float)
    X-RateLimit-Reset        unix timestamp of the reset (float)
    X-RateLimit-Bucket       opaque bucket hash
    X-RateLimit-Global       "true" on account-wide throttles
    X-RateLimit-Scope        scope of a 429
    Retry-After              seconds to wait after a 429

429 bodies may carry ``retry_after`` (seconds) and ``global`` (bool); the body
value wins over the headers.
"""

import logging
import math
import time
from collections.abc import Mapping
from typing import Any

from .base import ProviderInterface, RateLimitInfo

logger = logging.getLogger(__name__)

LIMIT_HEADER = "x-ratelimit-limit"
REMAINING_HEADER = "x-ratelimit-remaining"
RESET_AFTER_HEADER = "x-ratelimit-reset-after"
RESET_HEADER = "x-ratelimit-reset"
HASH_HEADER = "x-ratelimit-bucket"
GLOBAL_HEADER = "x-ratelimit-global"
SCOPE_HEADER = "x-ratelimit-scope"
RETRY_AFTER_HEADER = "retry-after"


class HeaderRateLimitProvider(ProviderInterface):
    """Parses ``X-RateLimit-*`` headers and 429 bodies."""

    @property
    def name(self) -> str:
        return "generic"

    def parse_rate_limit_response(
        self,
        headers: Mapping[str, str],
        body: Any = None,
        status_code: int | None = None,
    ) -> RateLimitInfo:
        lowered = {str(k).lower(): v for k, v in headers.items()}
        info = RateLimitInfo(is_rate_limited=status_code == 429)

        info.limit = self._parse_int(lowered, LIMIT_HEADER)
        info.remaining = self._parse_int(lowered, REMAINING_HEADER)
        info.reset_after = self._parse_float(lowered, RESET_AFTER_HEADER)
        info.reset_at = self._parse_float(lowered, RESET_HEADER)
        if info.reset_after is None and info.reset_at is not None:
            info.reset_after = max(0.0, info.reset_at - time.time())
        if info.remaining is not None and info.remaining < 0:
            info.remaining = 0

        bucket = lowered.get(HASH_HEADER)
        info.bucket = bucket.strip() if bucket and bucket.strip() else None
        info.scope = lowered.get(SCOPE_HEADER)
        info.is_global = str(lowered.get(GLOBAL_HEADER, "")).lower() == "true"

        if info.is_rate_limited:
            info.retry_after = self._parse_float(lowered, RETRY_AFTER_HEADER)
            if isinstance(body, dict):
                body_retry = body.get("retry_after")
                if (
                    isinstance(body_retry, (int, float))
                    and not isinstance(body_retry, bool)
                    and math.isfinite(body_retry)
                ):
                    info.retry_after = float(body_retry)
                if body.get("global") is True:
                    info.is_global = True
            if info.retry_after is None:
                info.retry_after = info.reset_after
            if info.retry_after is not None and info.retry_after < 0:
                info.retry_after = 0.0

        return info

    def _parse_int(self, headers: Mapping[str, str], name: str) -> int | None:
        value = self._parse_float(headers, name)
        return None if value is None else int(value)

    def _parse_float(self, headers: Mapping[str, str], name: str) -> float | None:
        raw = headers.get(name)
        if raw is None:
            return None
        try:
            value = float(raw)
        except (ValueError, TypeError):
            value = math.nan
        if not math.isfinite(value):
            logger.warning(f"Invalid {name} header: {raw}")
            return None
        return value


__all__ = [
    "GLOBAL_HEADER",
    "HASH_HEADER",
    "LIMIT_HEADER",
    "REMAINING_HEADER",
    "RESET_AFTER_HEADER",
    "RESET_HEADER",
    "RETRY_AFTER_HEADER",
    "SCOPE_HEADER",
    "HeaderRateLimitProvider",
]
