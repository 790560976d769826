# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""Protocol for HTTP transport integration."""

from collections.abc import Mapping
from typing import Any, Protocol, runtime_checkable

from ..types.response import TransportResponse


@runtime_checkable
class TransportProtocol(Protocol):
    """
    Minimal protocol for the HTTP layer.

    A transport performs exactly one attempt per call. Retries, backoff and
    rate limiting belong to the dispatcher, so a transport must not retry on
    its own.

    Every response with a status line (including 4xx and 5xx) is returned as
    a TransportResponse. Failures that produced no response (connection
    reset, DNS failure, read timeout) are raised as
    ``restbucket.exceptions.TransportError``.
    """

    async def send(
        self,
        method: str,
        url: str,
        headers: Mapping[str, str],
        body: Any,
        deadline: float | None,
    ) -> TransportResponse:
        """
        Perform a single HTTP exchange.

        Args:
            method: HTTP method name
            url: Absolute URL including the query string
            headers: Outbound headers
            body: Request body, or None
            deadline: Monotonic time by which the call should give up, or None
        """
        ...
