# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""Exception classes for the restbucket library.

This module defines the exception hierarchy used throughout the library.
All exceptions inherit from RestBucketError, making it easy to catch
every library error with a single except clause. Terminal request outcomes
that callers may want to retry at the application level derive from
RequestFailedError and carry the attempt count and the route.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .types.route import CompiledRoute


class RestBucketError(Exception):
    """Base exception for all restbucket errors.

    Example:
        try:
            user = await dispatcher.new_request(route.compile("42"))
        except RestBucketError as e:
            logger.error(f"Request failed: {e}")
    """

    pass


class ConfigurationError(RestBucketError):
    """Raised for invalid configuration or route compile arguments.

    Example:
        >>> Route.get("/channels/{channel_id}").compile()
        Traceback (most recent call last):
        ConfigurationError: Route GET /channels/{channel_id} expects 1 argument(s), got 0
    """

    pass


class RequestFailedError(RestBucketError):
    """Base class for terminal request failures surfaced to callers.

    Throttling (HTTP 429) never produces one of these: it is absorbed by the
    bucket loop. Everything else that ends a request unsuccessfully does.

    Attributes:
        route: The compiled route of the failed request, if known.
        attempts: How many times the request was sent.
    """

    def __init__(
        self,
        message: str,
        route: CompiledRoute | None = None,
        attempts: int = 0,
    ):
        super().__init__(message)
        self.route = route
        self.attempts = attempts


class RequestRejectedError(RequestFailedError):
    """Raised for 4xx responses other than 429.

    The request itself is invalid or unauthorized, so it is never retried.

    Attributes:
        status: HTTP status code.
        body: Decoded response body.
        code: Application error code from a JSON error body, if present.
        error_message: Message from a JSON error body, if present.

    Example:
        try:
            await request
        except RequestRejectedError as e:
            if e.status == 404:
                return None
            raise
    """

    def __init__(
        self,
        status: int,
        body: Any = None,
        route: CompiledRoute | None = None,
        attempts: int = 0,
    ):
        self.status = status
        self.body = body
        self.code: int | None = None
        self.error_message: str | None = None
        if isinstance(body, dict):
            code = body.get("code")
            self.code = code if isinstance(code, int) else None
            message = body.get("message")
            self.error_message = message if isinstance(message, str) else None
        detail = f": {self.error_message}" if self.error_message else ""
        super().__init__(
            f"Request rejected with HTTP {status}{detail}", route, attempts
        )


class ServerUnavailableError(RequestFailedError):
    """Raised when 5xx responses persist after all bounded retries.

    Attributes:
        status: The last HTTP status code received.
        body: The last decoded response body.
    """

    def __init__(
        self,
        status: int,
        body: Any = None,
        route: CompiledRoute | None = None,
        attempts: int = 0,
    ):
        super().__init__(
            f"Server unavailable (HTTP {status}) after {attempts} attempt(s)",
            route,
            attempts,
        )
        self.status = status
        self.body = body


class TransportFailureError(RequestFailedError):
    """Raised when transport-level failures persist after all bounded retries.

    Distinct from ServerUnavailableError: the server never produced a
    response, so there is no status or body.

    Attributes:
        cause: The last transport exception.
    """

    def __init__(
        self,
        cause: BaseException,
        route: CompiledRoute | None = None,
        attempts: int = 0,
    ):
        super().__init__(
            f"Transport failure after {attempts} attempt(s): {cause}",
            route,
            attempts,
        )
        self.cause = cause


class RequestTimeoutError(RequestFailedError):
    """Raised when a request exceeds its wall-clock budget across retries.

    Attributes:
        deadline: The monotonic deadline that was exceeded.
    """

    def __init__(
        self,
        deadline: float,
        route: CompiledRoute | None = None,
        attempts: int = 0,
    ):
        super().__init__(
            f"Request timed out after {attempts} attempt(s)", route, attempts
        )
        self.deadline = deadline


class RequestCancelledError(RestBucketError):
    """Raised to awaiters of a request that was cancelled.

    Cancellation is an outcome of its own, not a failure: failure callbacks
    never receive this exception.
    """

    pass


class TransportError(RestBucketError):
    """Raised by transports for a single failed I/O attempt.

    The dispatcher retries these with bounded backoff and surfaces
    TransportFailureError once attempts are exhausted.
    """

    pass


class AlreadySubmittedError(RestBucketError):
    """Raised when a request is composed or configured after submission."""

    pass


class CallbackContextError(RestBucketError):
    """Raised when blocking on a result from inside a bucket loop or callback.

    Waiting there would stall the bucket loop that has to deliver the result.
    Use on_success/and_then instead.
    """

    pass


class DispatcherStoppedError(RestBucketError):
    """Raised when submitting to a dispatcher that is not accepting requests."""

    pass


class QueueOverflowError(RestBucketError):
    """Raised when a bucket queue has reached its configured size limit.

    Attributes:
        queue_key: The bucket id whose queue is full.
    """

    def __init__(self, message: str, queue_key: str | None = None):
        super().__init__(message)
        self.queue_key = queue_key


__all__ = [
    "AlreadySubmittedError",
    "CallbackContextError",
    "ConfigurationError",
    "DispatcherStoppedError",
    "QueueOverflowError",
    "RequestCancelledError",
    "RequestFailedError",
    "RequestRejectedError",
    "RequestTimeoutError",
    "RestBucketError",
    "ServerUnavailableError",
    "TransportError",
    "TransportFailureError",
]
