# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""Type definitions and constants."""

from .request import QueuedRequest, RequestState
from .response import TransportResponse
from .route import (
    MAJOR_PARAMETER_NAMES,
    CompiledRoute,
    HttpMethod,
    Route,
)

__all__ = [
    # Routes
    "MAJOR_PARAMETER_NAMES",
    "CompiledRoute",
    "HttpMethod",
    # Queue types
    "QueuedRequest",
    "RequestState",
    "Route",
    # Transport
    "TransportResponse",
]
