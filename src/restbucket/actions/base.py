# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Base class for deferred, composable request handles.

An AsyncRequest is created in the CREATED state, enters the dispatcher on
``submit()`` and resolves exactly once: it either succeeds, fails or is
cancelled. Callbacks registered with on_success/on_failure/on_cancel fire
exactly once for the outcome that happened, always with the call context
captured at submission re-established around them.

Callbacks may be plain functions or coroutine functions. Plain callbacks run
synchronously on the dispatcher's delivery path and must not block; coroutine
callbacks are scheduled as their own tasks and may await other requests.
"""

from __future__ import annotations

import asyncio
import contextvars
import inspect
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Generator
from typing import TYPE_CHECKING, Any, ClassVar, Generic, TypeVar

from ..context import CallContext, callback_scope, in_callback_context
from ..exceptions import (
    AlreadySubmittedError,
    CallbackContextError,
    RequestCancelledError,
)
from ..types.request import RequestState

if TYPE_CHECKING:
    from ..dispatcher.dispatcher import Dispatcher

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

SuccessCallback = Callable[[Any], Any]
FailureCallback = Callable[[BaseException], Any]
CancelCallback = Callable[[], Any]

_SUCCESS = "success"
_FAILURE = "failure"
_CANCELLED = "cancelled"


def _log_unhandled_failure(error: BaseException) -> None:
    logger.error(f"Request failed and no failure handler was registered: {error!r}")


class AsyncRequest(ABC, Generic[T]):
    """
    A deferred, cancellable unit of work resolved by the dispatcher.

    Example:
        >>> request = dispatcher.new_request(GET_MESSAGE.compile(channel_id, message_id))
        >>> request.on_success(handle_message).on_failure(report).submit()
        >>> message = await dispatcher.new_request(route.compile("1")).map(parse)
    """

    default_failure_handler: ClassVar[Callable[[BaseException], None] | None] = (
        _log_unhandled_failure
    )
    """Called for failures nobody observed. Set to None to disable."""

    def __init__(self, dispatcher: Dispatcher) -> None:
        self._dispatcher = dispatcher
        self._state = RequestState.CREATED
        self._submitted = False
        self._explicit_reason: str | None = None
        self._context: CallContext | None = None

        self._outcome: tuple[str, Any] | None = None
        self._cancel_requested = False
        self._suppressed = False
        self._observed = False

        self._success_callbacks: list[SuccessCallback] = []
        self._failure_callbacks: list[FailureCallback] = []
        self._cancel_callbacks: list[CancelCallback] = []
        self._waiters: list[asyncio.Future[None]] = []

    # === State ===

    @property
    def state(self) -> RequestState:
        return self._state

    @property
    def dispatcher(self) -> Dispatcher:
        return self._dispatcher

    @property
    def context(self) -> CallContext | None:
        """Context captured at submission, None before ``submit()``."""
        return self._context

    @property
    def is_submitted(self) -> bool:
        return self._submitted

    @property
    def is_done(self) -> bool:
        return self._outcome is not None

    @property
    def cancel_requested(self) -> bool:
        """True if ``cancel()`` was called too late to stop the call."""
        return self._cancel_requested

    def _check_not_submitted(self) -> None:
        if self._submitted:
            raise AlreadySubmittedError(
                f"{type(self).__name__} was already submitted and can no longer "
                f"be configured or composed"
            )

    # === Configuration ===

    def reason(self, reason: str | None) -> AsyncRequest[T]:
        """Set an explicit audit reason, overriding the ambient one."""
        self._check_not_submitted()
        self._explicit_reason = reason
        return self

    # === Submission ===

    def submit(self) -> AsyncRequest[T]:
        """
        Hand the request to the dispatcher.

        The ambient call context is captured here. Calling submit again, or on
        a request cancelled before submission, is a no-op.
        """
        if self._submitted or self._state is not RequestState.CREATED:
            return self
        self._submitted = True
        self._context = CallContext.capture(self._explicit_reason)
        self._do_submit()
        return self

    @abstractmethod
    def _do_submit(self) -> None:
        """Enqueue the work once the context has been captured."""
        pass

    # === Cancellation ===

    @abstractmethod
    def cancel(self) -> bool:
        """
        Cancel the request.

        Returns:
            True if the request had not been sent, or was waiting for a
            retry, and is now CANCELLED. Otherwise the call on the wire still
            completes, but its result is no longer delivered to callbacks or
            awaiters.
        """
        pass

    # === Composition ===

    def map(self, transform: Callable[[T], R | Awaitable[R]]) -> AsyncRequest[R]:
        """Return a request resolving to ``transform(result)``."""
        from .composed import MappedRequest

        self._check_not_submitted()
        return MappedRequest(self, transform)

    def and_then(self, transform: Callable[[T], AsyncRequest[R]]) -> AsyncRequest[R]:
        """Return a request resolving to the result of the request ``transform`` builds."""
        from .composed import ChainedRequest

        self._check_not_submitted()
        return ChainedRequest(self, transform)

    def recover(
        self,
        handler: Callable[[BaseException], T | Awaitable[T]],
        *exc_types: type[BaseException],
    ) -> AsyncRequest[T]:
        """Return a request that turns matching failures into ``handler(error)``."""
        from .composed import RecoveredRequest

        self._check_not_submitted()
        return RecoveredRequest(self, handler, exc_types or (Exception,))

    def recover_with(
        self,
        handler: Callable[[BaseException], AsyncRequest[T]],
        *exc_types: type[BaseException],
    ) -> AsyncRequest[T]:
        """Return a request that answers matching failures with the request ``handler`` builds."""
        from .composed import FallbackRequest

        self._check_not_submitted()
        return FallbackRequest(self, handler, exc_types or (Exception,))

    def delay(self, seconds: float) -> AsyncRequest[T]:
        """Return a request delivering the result ``seconds`` after it arrives."""
        from .composed import DelayedRequest

        self._check_not_submitted()
        if seconds < 0:
            raise ValueError("delay must not be negative")
        return DelayedRequest(self, seconds)

    def zip(self, *others: AsyncRequest[Any]) -> AsyncRequest[list[Any]]:
        """
        Return a request resolving to the results of this and ``others``, in order.

        The first failure fails the whole group and cancels what is still
        pending.
        """
        from .composed import CombinedRequest

        self._check_not_submitted()
        return CombinedRequest([self, *others])

    def combine(
        self, other: AsyncRequest[Any], accumulator: Callable[[T, Any], R]
    ) -> AsyncRequest[R]:
        """Return a request resolving to ``accumulator(result, other_result)``."""
        return self.zip(other).map(lambda results: accumulator(*results))

    # === Callbacks ===

    def on_success(self, callback: Callable[[T], Any]) -> AsyncRequest[T]:
        """Register a callback for the successful result."""
        self._observed = True
        if self._outcome is None:
            self._success_callbacks.append(callback)
        elif self._outcome[0] == _SUCCESS and not self._suppressed:
            self._invoke(callback, self._outcome[1])
        return self

    def on_failure(self, callback: FailureCallback) -> AsyncRequest[T]:
        """Register a callback for the failure exception."""
        self._observed = True
        if self._outcome is None:
            self._failure_callbacks.append(callback)
        elif self._outcome[0] == _FAILURE and not self._suppressed:
            self._invoke(callback, self._outcome[1])
        return self

    def on_cancel(self, callback: CancelCallback) -> AsyncRequest[T]:
        """Register a callback fired if the request ends up cancelled."""
        if self._outcome is None:
            self._cancel_callbacks.append(callback)
        elif self._outcome[0] == _CANCELLED or self._suppressed:
            self._invoke(callback)
        return self

    def _listen(
        self,
        on_success: SuccessCallback,
        on_failure: FailureCallback,
        on_cancel: CancelCallback,
    ) -> None:
        """Register all three outcome hooks at once (used by composition)."""
        self.on_success(on_success)
        self.on_failure(on_failure)
        self.on_cancel(on_cancel)

    # === Waiting ===

    async def await_result(self) -> T:
        """
        Submit if needed and wait for the outcome.

        Raises:
            CallbackContextError: If called from a bucket loop or a plain callback
            RequestCancelledError: If the request was cancelled
            RequestFailedError: Or any other failure the request resolved with
        """
        if in_callback_context():
            raise CallbackContextError(
                "await_result() cannot be used inside a bucket loop or callback; "
                "use on_success or and_then instead"
            )
        self.submit()
        return await self._wait()

    def __await__(self) -> Generator[Any, None, T]:
        return self.await_result().__await__()

    async def _wait(self) -> T:
        self._observed = True
        if self._outcome is None:
            waiter: asyncio.Future[None] = asyncio.get_running_loop().create_future()
            self._waiters.append(waiter)
            try:
                await waiter
            finally:
                if waiter in self._waiters:
                    self._waiters.remove(waiter)
        return self._unwrap()

    def complete(self, timeout: float | None = None) -> T:
        """
        Block the calling thread until the request resolves.

        Only usable from threads other than the dispatcher's event loop.

        Raises:
            CallbackContextError: If called on a thread running an event loop
                or from inside a callback
        """
        if in_callback_context():
            raise CallbackContextError("complete() cannot be used inside a callback")
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            pass
        else:
            raise CallbackContextError(
                "complete() would block a running event loop; use await instead"
            )
        loop = self._dispatcher.loop
        if loop is None:
            raise RuntimeError("Dispatcher is not running")
        self.submit()
        future = asyncio.run_coroutine_threadsafe(self._wait(), loop)
        return future.result(timeout)

    def _unwrap(self) -> T:
        if self._outcome is None:
            raise RuntimeError(f"{type(self).__name__} has not resolved yet")
        kind, payload = self._outcome
        if kind == _CANCELLED or self._suppressed:
            raise RequestCancelledError(f"{type(self).__name__} was cancelled")
        if kind == _FAILURE:
            raise payload
        result: T = payload
        return result

    # === Resolution ===

    def _succeed(self, value: T) -> bool:
        return self._finish(_SUCCESS, value, RequestState.SUCCEEDED)

    def _fail(self, error: BaseException) -> bool:
        return self._finish(_FAILURE, error, RequestState.FAILED)

    def _cancelled(self) -> bool:
        return self._finish(_CANCELLED, None, RequestState.CANCELLED)

    def _finish(self, kind: str, payload: Any, state: RequestState) -> bool:
        """Record the outcome once and deliver it. Returns False if already done."""
        if self._outcome is not None:
            return False
        self._outcome = (kind, payload)
        self._state = state
        self._suppressed = self._cancel_requested and kind != _CANCELLED

        for waiter in self._waiters:
            if not waiter.done():
                waiter.set_result(None)

        success_callbacks, self._success_callbacks = self._success_callbacks, []
        failure_callbacks, self._failure_callbacks = self._failure_callbacks, []
        cancel_callbacks, self._cancel_callbacks = self._cancel_callbacks, []

        if kind == _CANCELLED or self._suppressed:
            for cancel_callback in cancel_callbacks:
                self._invoke(cancel_callback)
        elif kind == _SUCCESS:
            for success_callback in success_callbacks:
                self._invoke(success_callback, payload)
        else:
            for failure_callback in failure_callbacks:
                self._invoke(failure_callback, payload)
            handler = type(self).default_failure_handler
            if not self._observed and handler is not None:
                self._invoke(handler, payload)
        return True

    def _invoke(self, callback: Callable[..., Any], *args: Any) -> None:
        """Run a callback under the captured context, isolating its errors."""
        context = self._context or CallContext()
        with context.activate(), callback_scope(True):
            try:
                result = callback(*args)
            except Exception as e:
                self._report_callback_error(callback, e)
                return
            if inspect.isawaitable(result):
                self._spawn(self._run_async_callback(callback, result))

    async def _run_async_callback(
        self, callback: Callable[..., Any], awaitable: Awaitable[Any]
    ) -> None:
        with callback_scope(False):
            try:
                await awaitable
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self._report_callback_error(callback, e)

    def _spawn(self, coro: Any) -> None:
        """Schedule a coroutine on the dispatcher loop with the current context."""
        loop = self._dispatcher.loop
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is not None and (loop is None or running is loop):
            self._dispatcher._track_task(running.create_task(coro))
        elif loop is not None:
            loop.call_soon_threadsafe(
                self._spawn_in_loop, coro, context=contextvars.copy_context()
            )
        else:
            coro.close()
            logger.warning(
                f"Dropped async callback for {self!r}: dispatcher is not running"
            )

    def _spawn_in_loop(self, coro: Any) -> None:
        loop = asyncio.get_running_loop()
        self._dispatcher._track_task(loop.create_task(coro))

    def _report_callback_error(
        self, callback: Callable[..., Any], error: BaseException
    ) -> None:
        name = getattr(callback, "__qualname__", repr(callback))
        logger.error(
            f"Uncaught exception in callback {name} of {self!r}: {error!r}",
            exc_info=error,
        )
        self._dispatcher._record_callback_error()

    def __repr__(self) -> str:
        return f"<{type(self).__name__} state={self._state.value}>"


__all__ = ["AsyncRequest"]
