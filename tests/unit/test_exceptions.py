"""Unit tests for the exceptions module.

Tests all exception classes defined in restbucket.exceptions.
"""

import pytest

from restbucket.exceptions import (
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
from restbucket.types.route import Route


class TestRestBucketError:
    """Tests for the base RestBucketError exception."""

    def test_can_be_caught_as_exception(self):
        """RestBucketError can be caught as a standard Exception."""
        with pytest.raises(Exception):  # noqa: B017
            raise RestBucketError("test error")

    def test_message_preserved(self):
        """RestBucketError preserves its message."""
        error = RestBucketError("test message")
        assert str(error) == "test message"

    @pytest.mark.parametrize(
        "exc_type",
        [
            ConfigurationError,
            RequestFailedError,
            RequestCancelledError,
            TransportError,
            AlreadySubmittedError,
            CallbackContextError,
            DispatcherStoppedError,
        ],
    )
    def test_subclasses_share_root(self, exc_type):
        """Every library error can be caught as RestBucketError."""
        with pytest.raises(RestBucketError):
            raise exc_type("boom")


class TestRequestRejectedError:
    """Tests for RequestRejectedError."""

    def test_parses_json_error_body(self):
        """Code and message are read from a JSON error body."""
        error = RequestRejectedError(404, {"code": 10008, "message": "Unknown Message"})
        assert error.status == 404
        assert error.code == 10008
        assert error.error_message == "Unknown Message"
        assert "Unknown Message" in str(error)
        assert "404" in str(error)

    def test_non_dict_body(self):
        """A text body leaves code and message unset."""
        error = RequestRejectedError(403, "Forbidden")
        assert error.body == "Forbidden"
        assert error.code is None
        assert error.error_message is None

    def test_ignores_malformed_fields(self):
        """Fields of the wrong type are ignored."""
        error = RequestRejectedError(400, {"code": "x", "message": 12})
        assert error.code is None
        assert error.error_message is None

    def test_carries_route_and_attempts(self):
        """Route and attempt count are kept for diagnostics."""
        route = Route.get("channels/{channel_id}").compile("1")
        error = RequestRejectedError(401, None, route=route, attempts=1)
        assert error.route is route
        assert error.attempts == 1
        assert isinstance(error, RequestFailedError)


class TestServerUnavailableError:
    """Tests for ServerUnavailableError."""

    def test_stores_status_and_body(self):
        """The last status and body are kept."""
        error = ServerUnavailableError(503, "unavailable", attempts=4)
        assert error.status == 503
        assert error.body == "unavailable"
        assert error.attempts == 4
        assert "4 attempt" in str(error)


class TestTransportFailureError:
    """Tests for TransportFailureError."""

    def test_stores_cause(self):
        """The last transport exception is exposed as cause."""
        cause = TransportError("connection reset")
        error = TransportFailureError(cause, attempts=2)
        assert error.cause is cause
        assert "connection reset" in str(error)

    def test_distinct_from_server_unavailable(self):
        """Callers can tell transport failures from 5xx failures."""
        error = TransportFailureError(OSError("down"))
        assert not isinstance(error, ServerUnavailableError)
        assert isinstance(error, RequestFailedError)


class TestRequestTimeoutError:
    """Tests for RequestTimeoutError."""

    def test_stores_deadline(self):
        """The exceeded deadline is stored."""
        error = RequestTimeoutError(123.5, attempts=3)
        assert error.deadline == 123.5
        assert error.attempts == 3


class TestRequestCancelledError:
    """Tests for RequestCancelledError."""

    def test_not_a_request_failure(self):
        """Cancellation is its own outcome, not a failure."""
        assert not issubclass(RequestCancelledError, RequestFailedError)


class TestQueueOverflowError:
    """Tests for QueueOverflowError."""

    def test_stores_queue_key(self):
        """QueueOverflowError stores queue_key attribute."""
        error = QueueOverflowError("queue full", queue_key="abc:channel_id=1")
        assert error.queue_key == "abc:channel_id=1"
        assert str(error) == "queue full"

    def test_defaults_to_none(self):
        """QueueOverflowError defaults queue_key to None."""
        assert QueueOverflowError("queue full").queue_key is None
