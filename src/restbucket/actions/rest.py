# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""Leaf request handle for a single HTTP call routed through a bucket."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import TYPE_CHECKING, Any, TypeVar

from ..types.request import QueuedRequest, RequestState
from ..types.response import TransportResponse
from ..types.route import CompiledRoute
from .base import AsyncRequest

if TYPE_CHECKING:
    from ..dispatcher.dispatcher import Dispatcher

T = TypeVar("T")

ResponseHandler = Callable[[TransportResponse], Any]


class RestRequest(AsyncRequest[T]):
    """
    One HTTP call scheduled by the dispatcher.

    Built by ``Dispatcher.new_request``. The result is ``handler(response)``
    when a handler is given, the decoded body otherwise.

    Handles are meant to be used from the dispatcher's event loop thread;
    ``complete()`` is the one entry point for other threads.
    """

    def __init__(
        self,
        dispatcher: Dispatcher,
        route: CompiledRoute,
        body: Any = None,
        headers: Mapping[str, str] | None = None,
        handler: ResponseHandler | None = None,
    ) -> None:
        super().__init__(dispatcher)
        self.route = route
        self.body = body
        self.headers = dict(headers or {})
        self.handler = handler

        self._timeout: float | None = None
        self._deadline: float | None = None
        self._check: Callable[[], bool] | None = None
        self._priority = False
        self._entry: QueuedRequest | None = None

    # === Configuration ===

    def timeout(self, seconds: float | None) -> RestRequest[T]:
        """Override the wall-clock budget, counted from submission."""
        self._check_not_submitted()
        if seconds is not None and seconds <= 0:
            raise ValueError("timeout must be positive")
        self._timeout = seconds
        self._deadline = None
        return self

    def deadline(self, monotonic_deadline: float) -> RestRequest[T]:
        """Fail the request once ``time.monotonic()`` passes this value."""
        self._check_not_submitted()
        self._deadline = monotonic_deadline
        self._timeout = None
        return self

    def set_check(self, check: Callable[[], bool] | None) -> RestRequest[T]:
        """
        Predicate evaluated once the request is ready to be sent.

        False cancels the request. The check runs before the request takes a
        unit of the global budget, and runs again if that budget held it back.
        """
        self._check_not_submitted()
        self._check = check
        return self

    def add_check(self, check: Callable[[], bool]) -> RestRequest[T]:
        """Combine ``check`` with the current check; both must pass."""
        self._check_not_submitted()
        current = self._check
        if current is None:
            self._check = check
        else:
            self._check = lambda: bool(current()) and bool(check())
        return self

    def priority(self) -> RestRequest[T]:
        """Exempt the request from ``Dispatcher.cancel_requests()``."""
        self._check_not_submitted()
        self._priority = True
        return self

    @property
    def is_priority(self) -> bool:
        return self._priority

    @property
    def attempts(self) -> int:
        return self._entry.attempts if self._entry is not None else 0

    def _resolve_deadline(self, submitted_at: float, default: float | None) -> float | None:
        if self._deadline is not None:
            return self._deadline
        budget = self._timeout if self._timeout is not None else default
        return None if budget is None else submitted_at + budget

    def _passes_check(self) -> bool:
        return self._check is None or bool(self._check())

    # === Lifecycle ===

    def _do_submit(self) -> None:
        self._dispatcher._submit(self)

    def cancel(self) -> bool:
        """
        Cancel the request unless it is on the wire.

        A request waiting in its bucket queue, including one waiting there for
        a retry, is removed and never sent again. An in-flight request finishes
        its call; its outcome is suppressed and no retry follows.
        """
        if self._state is RequestState.CREATED:
            return self._cancelled()
        if self._state.is_terminal:
            return False
        if self._state is not RequestState.IN_FLIGHT and self._entry is not None:
            if self._dispatcher._discard(self._entry):
                return True
            if self._state is RequestState.QUEUED:
                # Popped by its bucket loop, which drops it before sending
                return self._cancelled()
        self._cancel_requested = True
        return False

    def _mark_queued(self, entry: QueuedRequest) -> None:
        self._entry = entry
        self._state = RequestState.QUEUED

    def _mark_in_flight(self) -> None:
        self._state = RequestState.IN_FLIGHT

    def _mark_retrying(self) -> None:
        self._state = RequestState.RETRYING

    def _build_result(self, response: TransportResponse) -> Any:
        if self.handler is None:
            return response.body
        return self.handler(response)

    def __repr__(self) -> str:
        return (
            f"<RestRequest {self.route} state={self._state.value} "
            f"attempts={self.attempts}>"
        )


__all__ = ["RestRequest"]
