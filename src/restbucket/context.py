# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Call-scoped context propagation.

The audit reason of a request is read from an ambient ContextVar when the
request is submitted, stored on the queued request, and re-established around
every callback the dispatcher later runs for it. Code running in a callback
therefore sees the reason of the call that scheduled it, and requests
submitted from inside that callback inherit it.

Usage:
    >>> with with_reason("cleanup of spam"):
    ...     request = dispatcher.new_request(route.compile(channel_id)).submit()
    >>> request.on_success(lambda _: print(get_current_reason()))
    cleanup of spam

ContextVars are copied into each asyncio task at creation time, so a reason
set in one task never leaks into a concurrently running one.
"""

from __future__ import annotations

import functools
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from contextvars import ContextVar, Token
from dataclasses import dataclass
from typing import Any, TypeVar, overload

T = TypeVar("T")

_current_reason: ContextVar[str | None] = ContextVar(
    "restbucket_reason", default=None
)
_callback_context: ContextVar[bool] = ContextVar(
    "restbucket_callback_context", default=False
)


def get_current_reason() -> str | None:
    """Return the ambient audit reason for the current call chain."""
    return _current_reason.get()


def in_callback_context() -> bool:
    """Return True inside a bucket loop or a callback it delivered."""
    return _callback_context.get()


class _ReasonScope:
    """Sets the ambient reason on enter and restores the previous one on exit."""

    def __init__(self, reason: str | None):
        self._reason = reason
        self._token: Token[str | None] | None = None

    def __enter__(self) -> str | None:
        self._token = _current_reason.set(self._reason)
        return self._reason

    def __exit__(self, *exc_info: Any) -> None:
        if self._token is not None:
            _current_reason.reset(self._token)
            self._token = None


@overload
def with_reason(reason: str | None) -> _ReasonScope: ...


@overload
def with_reason(
    reason: str | None, block: Callable[..., T], *args: Any, **kwargs: Any
) -> T: ...


def with_reason(
    reason: str | None,
    block: Callable[..., Any] | None = None,
    *args: Any,
    **kwargs: Any,
) -> Any:
    """
    Establish ``reason`` as the ambient audit reason.

    Used as a context manager, or with a callable that is run immediately
    under the reason. The previous reason is restored on every exit path.

    Args:
        reason: Audit reason, or None to clear it
        block: Optional callable to run under the reason
        *args: Positional arguments for ``block``
        **kwargs: Keyword arguments for ``block``

    Returns:
        The scope object, or the return value of ``block``
    """
    scope = _ReasonScope(reason)
    if block is None:
        return scope
    with scope:
        return block(*args, **kwargs)


@contextmanager
def callback_scope(active: bool = True) -> Iterator[None]:
    """Mark the enclosed code as running inside the dispatcher's delivery path."""
    token = _callback_context.set(active)
    try:
        yield
    finally:
        _callback_context.reset(token)


@dataclass(frozen=True)
class CallContext:
    """
    Immutable snapshot of the ambient call context.

    Attributes:
        reason: Audit reason captured at submission, or None
    """

    reason: str | None = None

    @classmethod
    def capture(cls, explicit_reason: str | None = None) -> CallContext:
        """
        Snapshot the current context.

        An explicit per-call reason takes precedence over the ambient one.
        """
        if explicit_reason is not None:
            return cls(reason=explicit_reason)
        return cls(reason=_current_reason.get())

    @contextmanager
    def activate(self) -> Iterator[CallContext]:
        """Re-establish this snapshot for the duration of the block."""
        token = _current_reason.set(self.reason)
        try:
            yield self
        finally:
            _current_reason.reset(token)

    def run(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Run ``fn`` with this snapshot active."""
        with self.activate():
            return fn(*args, **kwargs)

    def propagate(self, fn: Callable[..., T]) -> Callable[..., T]:
        """Wrap ``fn`` so every invocation runs with this snapshot active."""

        @functools.wraps(fn)
        def wrapper(*args: Any, **kwargs: Any) -> T:
            with self.activate():
                return fn(*args, **kwargs)

        return wrapper


__all__ = [
    "CallContext",
    "callback_scope",
    "get_current_reason",
    "in_callback_context",
    "with_reason",
]
