# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""restbucket - Rate-limited dispatching for bucketed REST APIs.

This library schedules outgoing REST calls against per-route rate-limit
buckets that the server reveals through response headers, and exposes each
call as a deferred, composable request handle.

Key Features:
    - Automatic bucket discovery from X-RateLimit-* headers
    - Strict FIFO order per bucket, preserved across bucket migrations
    - Unbounded 429 retries, bounded backoff for 5xx and transport errors
    - Account-wide budget with server global throttle support
    - Audit reasons propagated from the submitting code to the request
    - Composable handles: map, and_then, recover, callbacks, await

Quick Start:
    >>> from restbucket import Dispatcher, DispatcherConfig, Route, with_reason
    >>> from restbucket.transport import HttpxTransport
    >>>
    >>> DELETE_MESSAGE = Route.delete("channels/{channel_id}/messages/{message_id}")
    >>>
    >>> config = DispatcherConfig(base_url="https://api.example.com/v10")
    >>> async with Dispatcher(HttpxTransport(), config) as dispatcher:
    ...     with with_reason("spam cleanup"):
    ...         await dispatcher.new_request(DELETE_MESSAGE.compile("123", "456"))

Main Exports:
    - Dispatcher, DispatcherConfig: Core dispatching components
    - Route, CompiledRoute: Route templates and their compiled form
    - AsyncRequest, RestRequest: Request handles
    - all_of: Combine requests into one resolving to all their results
    - with_reason, CallContext: Audit reason propagation
    - TransportProtocol, TransportResponse: Pluggable HTTP layer

Note: HttpxTransport requires the 'httpx' extra. Install with:
    pip install restbucket[httpx]

Version: 1.0.0
"""

__version__ = "1.0.0"

from typing import TYPE_CHECKING

from .actions import (
    AsyncRequest,
    ChainedRequest,
    CombinedRequest,
    DelayedRequest,
    FallbackRequest,
    MappedRequest,
    RecoveredRequest,
    RestRequest,
    all_of,
)
from .context import (
    CallContext,
    callback_scope,
    get_current_reason,
    in_callback_context,
    with_reason,
)
from .dispatcher import (
    BucketState,
    Dispatcher,
    DispatcherConfig,
    GlobalRateLimiter,
    ResponseClass,
    RetryPolicy,
)
from .exceptions import (
    AlreadySubmittedError,
    CallbackContextError,
    ConfigurationError,
    DispatcherStoppedError,
    QueueOverflowError,
    RequestCancelledError,
    RequestFailedError,
    RequestRejectedError,
    RequestTimeoutError,
    RestBucketError,
    ServerUnavailableError,
    TransportError,
    TransportFailureError,
)
from .protocols import TransportProtocol, TransportResponse
from .providers import HeaderRateLimitProvider, ProviderInterface, RateLimitInfo
from .types import (
    MAJOR_PARAMETER_NAMES,
    CompiledRoute,
    HttpMethod,
    RequestState,
    Route,
)

# Lazy import for optional httpx transport
if TYPE_CHECKING:
    from .transport import HttpxTransport

__all__ = [
    "MAJOR_PARAMETER_NAMES",
    "AlreadySubmittedError",
    # Requests
    "AsyncRequest",
    "BucketState",
    # Context
    "CallContext",
    "CallbackContextError",
    "ChainedRequest",
    "CombinedRequest",
    "CompiledRoute",
    "ConfigurationError",
    # Dispatcher
    "DelayedRequest",
    "Dispatcher",
    "DispatcherConfig",
    "DispatcherStoppedError",
    "FallbackRequest",
    "GlobalRateLimiter",
    # Providers
    "HeaderRateLimitProvider",
    "HttpMethod",
    "HttpxTransport",  # Lazy loaded - requires httpx extra
    "MappedRequest",
    "ProviderInterface",
    "QueueOverflowError",
    "RateLimitInfo",
    "RecoveredRequest",
    "RequestCancelledError",
    "RequestFailedError",
    "RequestRejectedError",
    "RequestState",
    "RequestTimeoutError",
    "ResponseClass",
    # Exceptions
    "RestBucketError",
    "RestRequest",
    "RetryPolicy",
    # Routes
    "Route",
    "ServerUnavailableError",
    "TransportError",
    "TransportFailureError",
    # Transport
    "TransportProtocol",
    "TransportResponse",
    "all_of",
    "callback_scope",
    "get_current_reason",
    "in_callback_context",
    "with_reason",
]


def __getattr__(name: str) -> type:
    """Lazy import for optional dependencies."""
    if name == "HttpxTransport":
        from .transport import HttpxTransport

        return HttpxTransport
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
