# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Derived request handles built by the AsyncRequest composition methods.

A derived request owns no bucket slot. Submitting it submits its source,
cancelling it cancels its source (or the follow-up request once that exists),
and its transform runs on the source's delivery path with the source's call
context active, so requests issued from the transform inherit the reason.

CombinedRequest is the one handle with several sources: it submits all of
them and resolves to their results in order, or to the first failure.
"""

from __future__ import annotations

import asyncio
import functools
import inspect
from collections.abc import Awaitable, Callable, Sequence
from typing import Any, TypeVar

from ..context import callback_scope
from ..types.request import RequestState
from .base import AsyncRequest

T = TypeVar("T")
R = TypeVar("R")


class _DerivedRequest(AsyncRequest[R]):
    """Common plumbing for requests resolved from another request."""

    def __init__(self, source: AsyncRequest[Any]) -> None:
        super().__init__(source.dispatcher)
        self._source = source
        self._next: AsyncRequest[Any] | None = None

    @property
    def state(self) -> RequestState:
        if self._state is not RequestState.QUEUED:
            return self._state
        source_state = self._source.state
        if source_state.is_terminal:
            # Transform or chained request still running
            return RequestState.IN_FLIGHT
        return source_state

    def _do_submit(self) -> None:
        self._state = RequestState.QUEUED
        if not self._source.is_submitted and self._explicit_reason is not None:
            self._source._explicit_reason = self._explicit_reason
        self._source._listen(
            self._on_source_success,
            self._on_source_failure,
            self._on_source_cancel,
        )
        self._source.submit()

    def _active_source(self) -> AsyncRequest[Any]:
        return self._next if self._next is not None else self._source

    def cancel(self) -> bool:
        if self._outcome is not None:
            return False
        if self._state is RequestState.CREATED:
            return self._cancelled()
        if self._active_source().cancel():
            self._cancelled()
            return True
        self._cancel_requested = True
        return False

    # === Source outcome hooks ===

    def _on_source_success(self, value: Any) -> None:
        if self._cancel_requested:
            self._cancelled()
            return
        try:
            self._handle_success(value)
        except Exception as e:
            self._fail(e)

    def _on_source_failure(self, error: BaseException) -> None:
        if self._cancel_requested:
            self._cancelled()
            return
        try:
            self._handle_failure(error)
        except Exception as e:
            self._fail(e)

    def _on_source_cancel(self) -> None:
        self._cancelled()

    def _handle_success(self, value: Any) -> None:
        self._succeed(value)

    def _handle_failure(self, error: BaseException) -> None:
        self._fail(error)

    def _follow(self, next_request: Any, operator: str) -> None:
        """Resolve with the outcome of ``next_request``, submitting it now."""
        if not isinstance(next_request, AsyncRequest):
            raise TypeError(
                f"{operator} callback must return an AsyncRequest, "
                f"got {type(next_request).__name__}"
            )
        self._next = next_request
        next_request._listen(self._succeed, self._fail, self._cancelled)
        # Submitted under the source's context, so the reason carries over
        next_request.submit()

    def _resolve_with(self, result: Any) -> None:
        """Succeed with ``result``, awaiting it first if it is awaitable."""
        if inspect.isawaitable(result):
            self._spawn(self._await_and_resolve(result))
        else:
            self._succeed(result)

    async def _await_and_resolve(self, awaitable: Awaitable[Any]) -> None:
        with callback_scope(False):
            try:
                value = await awaitable
            except asyncio.CancelledError:
                self._cancelled()
                raise
            except Exception as e:
                self._fail(e)
            else:
                self._succeed(value)


class MappedRequest(_DerivedRequest[R]):
    """Resolves to ``transform(source_result)``."""

    def __init__(
        self,
        source: AsyncRequest[T],
        transform: Callable[[T], R | Awaitable[R]],
    ) -> None:
        super().__init__(source)
        self._transform = transform

    def _handle_success(self, value: Any) -> None:
        self._resolve_with(self._transform(value))


class ChainedRequest(_DerivedRequest[R]):
    """Resolves to the result of the request built from the source result."""

    def __init__(
        self,
        source: AsyncRequest[T],
        transform: Callable[[T], AsyncRequest[R]],
    ) -> None:
        super().__init__(source)
        self._transform = transform

    def _handle_success(self, value: Any) -> None:
        self._follow(self._transform(value), "and_then")


class RecoveredRequest(_DerivedRequest[T]):
    """Turns failures of the given types into a fallback result."""

    def __init__(
        self,
        source: AsyncRequest[T],
        handler: Callable[[BaseException], T | Awaitable[T]],
        exc_types: tuple[type[BaseException], ...],
    ) -> None:
        super().__init__(source)
        self._handler = handler
        self._exc_types = exc_types

    def _handle_failure(self, error: BaseException) -> None:
        if not isinstance(error, self._exc_types):
            self._fail(error)
            return
        self._resolve_with(self._handler(error))


class FallbackRequest(_DerivedRequest[T]):
    """Replaces failures of the given types with the result of a fallback request."""

    def __init__(
        self,
        source: AsyncRequest[T],
        handler: Callable[[BaseException], AsyncRequest[T]],
        exc_types: tuple[type[BaseException], ...],
    ) -> None:
        super().__init__(source)
        self._handler = handler
        self._exc_types = exc_types

    def _handle_failure(self, error: BaseException) -> None:
        if not isinstance(error, self._exc_types):
            self._fail(error)
            return
        self._follow(self._handler(error), "recover_with")


class DelayedRequest(_DerivedRequest[T]):
    """Delivers the source result ``seconds`` after it arrived. Failures pass straight through."""

    def __init__(self, source: AsyncRequest[T], seconds: float) -> None:
        super().__init__(source)
        self._seconds = seconds
        self._timer: asyncio.TimerHandle | None = None

    def _handle_success(self, value: Any) -> None:
        loop = self._dispatcher.loop
        if loop is None:
            self._succeed(value)
            return
        self._timer = loop.call_later(self._seconds, self._deliver, value)

    def _deliver(self, value: Any) -> None:
        self._timer = None
        self._succeed(value)

    def cancel(self) -> bool:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
            return self._cancelled()
        return super().cancel()


class CombinedRequest(AsyncRequest[list[Any]]):
    """
    Resolves to the results of several requests, in the order they were given.

    All sources are submitted together. The first failure fails the combined
    request and cancels the sources that have not resolved yet; a cancelled
    source cancels the whole group the same way.
    """

    def __init__(self, sources: Sequence[AsyncRequest[Any]]) -> None:
        if not sources:
            raise ValueError("at least one request is required")
        if len({id(source) for source in sources}) != len(sources):
            raise ValueError("a request cannot be combined with itself")
        for source in sources:
            source._check_not_submitted()
        super().__init__(sources[0].dispatcher)
        self._sources = list(sources)
        self._results: list[Any] = [None] * len(self._sources)
        self._pending = len(self._sources)

    @property
    def state(self) -> RequestState:
        if self._state is not RequestState.QUEUED:
            return self._state
        if all(source.state is RequestState.QUEUED for source in self._sources):
            return RequestState.QUEUED
        return RequestState.IN_FLIGHT

    def _do_submit(self) -> None:
        self._state = RequestState.QUEUED
        for index, source in enumerate(self._sources):
            if self._explicit_reason is not None:
                source._explicit_reason = self._explicit_reason
            source._listen(
                functools.partial(self._on_source_success, index),
                self._on_source_failure,
                self._on_source_cancel,
            )
        for source in self._sources:
            source.submit()

    def cancel(self) -> bool:
        if self._outcome is not None:
            return False
        if self._state is RequestState.CREATED:
            return self._cancelled()
        self._cancel_requested = True
        self._cancel_sources()
        return self._state is RequestState.CANCELLED

    def _cancel_sources(self) -> None:
        for source in self._sources:
            if not source.is_done:
                source.cancel()

    def _on_source_success(self, index: int, value: Any) -> None:
        if self._outcome is not None:
            return
        self._results[index] = value
        self._pending -= 1
        if self._pending == 0:
            self._succeed(list(self._results))

    def _on_source_failure(self, error: BaseException) -> None:
        if self._outcome is not None:
            return
        self._fail(error)
        self._cancel_sources()

    def _on_source_cancel(self) -> None:
        if self._outcome is not None:
            return
        self._cancelled()
        self._cancel_sources()


def all_of(*requests: AsyncRequest[Any]) -> CombinedRequest:
    """
    Combine requests into one resolving to the list of their results.

    Example:
        >>> user, member = await all_of(
        ...     dispatcher.new_request(GET_USER.compile(user_id)),
        ...     dispatcher.new_request(GET_MEMBER.compile(guild_id, user_id)),
        ... )
    """
    return CombinedRequest(requests)


__all__ = [
    "ChainedRequest",
    "CombinedRequest",
    "DelayedRequest",
    "FallbackRequest",
    "MappedRequest",
    "RecoveredRequest",
    "all_of",
]
