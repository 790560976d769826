# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""Provider interface for API-specific rate limit parsing."""

import time
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any


@dataclass
class RateLimitInfo:
    """Parsed rate limit information from an API response.

    All bucket fields are None when the response did not carry them, which
    means the bucket state is unknown and treated as unconstrained.

    Attributes:
        limit: Requests allowed per window
        remaining: Requests left in the current window
        reset_after: Seconds until the window resets
        reset_at: Unix timestamp of the reset, if the server sent one
        bucket: Opaque server-assigned bucket hash
        retry_after: Seconds to wait before resending a throttled request
        is_global: True if a 429 applies to the whole account
        scope: Server-reported scope of a 429 (e.g. 'user', 'shared', 'global')
        is_rate_limited: True for 429 responses
        timestamp: Local time the response was parsed
    """

    limit: int | None = None
    remaining: int | None = None
    reset_after: float | None = None
    reset_at: float | None = None  # Unix timestamp
    bucket: str | None = None
    retry_after: float | None = None  # Seconds
    is_global: bool = False
    scope: str | None = None
    is_rate_limited: bool = False
    timestamp: float = field(default_factory=time.time)

    @property
    def has_bucket_state(self) -> bool:
        """True if the response described the bucket's counters."""
        return self.remaining is not None and self.reset_after is not None


class ProviderInterface(ABC):
    """
    Abstract interface for API provider integration.

    Providers turn raw response metadata into RateLimitInfo. The dispatcher
    never reads rate-limit headers itself, so a different API with a different
    header vocabulary only needs a different provider.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique provider name (e.g. 'discord', 'generic')."""
        pass

    @abstractmethod
    def parse_rate_limit_response(
        self,
        headers: Mapping[str, str],
        body: Any = None,
        status_code: int | None = None,
    ) -> RateLimitInfo:
        """Parse rate limit information from an HTTP response.

        This is the ONLY place where HTTP headers are parsed for rate limit
        information.

        Args:
            headers: HTTP response headers. Keys are matched case-insensitively.
            body: Decoded response body. 429 responses carry the authoritative
                retry delay and the global flag here.
            status_code: HTTP status code of the response.

        Returns:
            RateLimitInfo with whatever the response disclosed. Fields the
            response did not carry stay None.
        """
        pass


__all__ = ["ProviderInterface", "RateLimitInfo"]
