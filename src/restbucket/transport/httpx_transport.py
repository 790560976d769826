# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Default transport built on ``httpx.AsyncClient``.

Requires the ``httpx`` extra:
    pip install restbucket[httpx]
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Mapping
from typing import Any

import httpx
from typing_extensions import Self

from ..exceptions import TransportError
from ..types.response import TransportResponse

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0


class HttpxTransport:
    """
    Single-attempt transport over an httpx async client.

    Dict and list bodies are sent as JSON, str/bytes bodies as-is. JSON
    responses are decoded; anything else is returned as text.

    Example:
        async with HttpxTransport(headers={"Authorization": "Bot ..."}) as transport:
            async with Dispatcher(transport, config) as dispatcher:
                ...
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        *,
        headers: Mapping[str, str] | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        """
        Initialize the transport.

        Args:
            client: Existing client to use; it is not closed by this transport
            headers: Default headers for every call (user agent, authorization)
            timeout: Per-call timeout when the request has no deadline
        """
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient()
        self._headers = dict(headers or {})
        self._timeout = timeout

    async def send(
        self,
        method: str,
        url: str,
        headers: Mapping[str, str],
        body: Any,
        deadline: float | None,
    ) -> TransportResponse:
        timeout = self._timeout
        if deadline is not None:
            timeout = max(0.001, min(timeout, deadline - time.monotonic()))

        merged = {**self._headers, **headers}
        kwargs: dict[str, Any] = {"headers": merged, "timeout": timeout}
        if isinstance(body, (dict, list)):
            kwargs["json"] = body
        elif body is not None:
            kwargs["content"] = body

        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.TransportError as e:
            logger.debug(f"Transport error for {method} {url}: {e!r}")
            raise TransportError(f"{type(e).__name__}: {e}") from e

        return TransportResponse.from_mapping(
            response.status_code,
            response.headers,
            self._decode(response),
        )

    def _decode(self, response: httpx.Response) -> Any:
        if not response.content:
            return None
        content_type = response.headers.get("content-type", "")
        if "json" in content_type:
            try:
                return response.json()
            except (json.JSONDecodeError, UnicodeDecodeError):
                logger.warning(
                    f"Response declared {content_type} but was not valid JSON"
                )
        return response.text

    async def aclose(self) -> None:
        """Close the underlying client if this transport created it."""
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()


__all__ = ["HttpxTransport"]
