# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Transport implementations.

HttpxTransport requires the optional ``httpx`` extra and is imported lazily.
"""

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .httpx_transport import HttpxTransport

__all__ = ["HttpxTransport"]


def __getattr__(name: str) -> type:
    """Lazy import for the optional httpx transport."""
    if name == "HttpxTransport":
        from .httpx_transport import HttpxTransport

        return HttpxTransport
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
