# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Transport response type.

Transports return a TransportResponse for every HTTP exchange that produced a
status line, whatever the status. Header lookup is case-insensitive.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any


@dataclass
class TransportResponse:
    """
    A single HTTP response.

    Attributes:
        status: HTTP status code
        headers: Response headers, stored with lowercase keys
        body: Decoded body (parsed JSON, text, bytes or None)
    """

    status: int
    headers: dict[str, str] = field(default_factory=dict)
    body: Any = None

    def __post_init__(self) -> None:
        self.headers = {str(k).lower(): str(v) for k, v in self.headers.items()}

    @classmethod
    def from_mapping(
        cls, status: int, headers: Mapping[str, str] | None = None, body: Any = None
    ) -> TransportResponse:
        return cls(status=status, headers=dict(headers or {}), body=body)

    def header(self, name: str, default: str | None = None) -> str | None:
        """Look up a header by name, ignoring case."""
        return self.headers.get(name.lower(), default)


__all__ = ["TransportResponse"]
