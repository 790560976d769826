# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Protocol definitions for pluggable dispatcher components.

Available protocols:
- TransportProtocol: Interface for the single-attempt HTTP layer

Supporting types:
- TransportResponse: Status, headers and decoded body of one exchange
"""

from ..types.response import TransportResponse
from .transport import TransportProtocol

__all__ = [
    "TransportProtocol",
    "TransportResponse",
]
