# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Shared fixtures for restbucket tests.

FakeTransport replaces the HTTP layer: responses are scripted per URL path
and every send is recorded with its time and headers.
"""

from __future__ import annotations

import asyncio
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import pytest

from restbucket.actions.base import AsyncRequest
from restbucket.dispatcher.config import DispatcherConfig
from restbucket.types.response import TransportResponse

Outcome = TransportResponse | BaseException


@dataclass
class SentCall:
    """One recorded transport call."""

    method: str
    url: str
    headers: dict[str, str]
    body: Any
    deadline: float | None
    sent_at: float


class FakeTransport:
    """Scripted in-memory transport."""

    def __init__(self, default: TransportResponse | None = None) -> None:
        self.calls: list[SentCall] = []
        self.default = default or TransportResponse(200, {}, {"ok": True})
        self.delay = 0.0
        self.handler: Callable[[SentCall], Outcome | None] | None = None
        self._scripts: dict[str, deque[Outcome]] = {}

    def script(self, path: str, *outcomes: Outcome) -> None:
        """Queue outcomes for URLs ending with ``path``, consumed in order."""
        self._scripts.setdefault(path, deque()).extend(outcomes)

    def calls_to(self, path: str) -> list[SentCall]:
        return [call for call in self.calls if call.url.endswith(path)]

    async def send(
        self,
        method: str,
        url: str,
        headers: dict[str, str],
        body: Any,
        deadline: float | None,
    ) -> TransportResponse:
        call = SentCall(method, url, dict(headers), body, deadline, time.monotonic())
        self.calls.append(call)
        if self.delay:
            await asyncio.sleep(self.delay)

        outcome: Outcome | None = None
        for path, outcomes in self._scripts.items():
            if url.endswith(path) and outcomes:
                outcome = outcomes.popleft()
                break
        if outcome is None and self.handler is not None:
            outcome = self.handler(call)
        if outcome is None:
            outcome = self.default
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


def ratelimit_headers(
    bucket: str | None = "abc123",
    limit: int | None = 5,
    remaining: int | None = 4,
    reset_after: float | None = 1.0,
    **extra: str,
) -> dict[str, str]:
    """Build X-RateLimit-* headers; None leaves a header out."""
    headers: dict[str, str] = {}
    if bucket is not None:
        headers["X-RateLimit-Bucket"] = bucket
    if limit is not None:
        headers["X-RateLimit-Limit"] = str(limit)
    if remaining is not None:
        headers["X-RateLimit-Remaining"] = str(remaining)
    if reset_after is not None:
        headers["X-RateLimit-Reset-After"] = str(reset_after)
    headers.update(extra)
    return headers


@pytest.fixture
def fake_transport() -> FakeTransport:
    """A transport answering 200 {"ok": true} unless scripted otherwise."""
    return FakeTransport()


@pytest.fixture
def make_response() -> Callable[..., TransportResponse]:
    """Factory for scripted responses with rate-limit headers."""

    def _make(
        status: int = 200,
        body: Any = None,
        headers: dict[str, str] | None = None,
        **limits: Any,
    ) -> TransportResponse:
        merged = ratelimit_headers(**limits) if limits else {}
        merged.update(headers or {})
        return TransportResponse(status, merged, {"ok": True} if body is None else body)

    return _make


@pytest.fixture
def config() -> DispatcherConfig:
    """Fast configuration: no global budget, short backoff."""
    return DispatcherConfig(
        base_url="https://api.test/v1",
        global_limit=None,
        retry_base_delay=0.01,
        max_backoff=0.05,
        backoff_jitter=0.0,
    )


@pytest.fixture(autouse=True)
def _restore_default_failure_handler():
    """Tests may replace the class-level default failure handler."""
    original = AsyncRequest.__dict__["default_failure_handler"]
    yield
    AsyncRequest.default_failure_handler = original
