"""
Shared fixtures for benchmark tests.
"""

from typing import Any, Dict, Optional

import pytest

from restbucket.dispatcher.config import DispatcherConfig
from restbucket.types.response import TransportResponse


class InstantTransport:
    """Transport that answers immediately, so measured time is pure overhead."""

    def __init__(self, headers: Optional[Dict[str, str]] = None):
        self.calls = 0
        self._response = TransportResponse(200, headers or {}, {"ok": True})

    async def send(
        self,
        method: str,
        url: str,
        headers: Dict[str, str],
        body: Any,
        deadline: Optional[float],
    ) -> TransportResponse:
        self.calls += 1
        return self._response


@pytest.fixture
def instant_transport():
    """Transport reporting a bucket with a budget far above the workload."""
    return InstantTransport(
        {
            "X-RateLimit-Bucket": "benchmark",
            "X-RateLimit-Limit": "1000000",
            "X-RateLimit-Remaining": "999999",
            "X-RateLimit-Reset-After": "60",
        }
    )


@pytest.fixture
def benchmark_config():
    """Configuration optimized for benchmarking."""
    return DispatcherConfig(
        base_url="https://benchmark.test",
        global_limit=None,
        request_timeout=None,
    )
