# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Request lifecycle types.

This module defines the request state machine and the QueuedRequest record
that a bucket queue holds for every submitted request.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from ..context import CallContext
from .route import CompiledRoute

if TYPE_CHECKING:
    from ..actions.rest import RestRequest


class RequestState(Enum):
    """
    Lifecycle state of an AsyncRequest.

    CREATED -> QUEUED -> IN_FLIGHT -> SUCCEEDED | FAILED, with
    IN_FLIGHT -> RETRYING -> IN_FLIGHT for throttled or failed attempts.
    A RETRYING request is back in its bucket queue, so like a QUEUED one it
    can still be cancelled. CANCELLED is never reached from IN_FLIGHT.
    """

    CREATED = "created"
    QUEUED = "queued"
    IN_FLIGHT = "in_flight"
    RETRYING = "retrying"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (
            RequestState.SUCCEEDED,
            RequestState.FAILED,
            RequestState.CANCELLED,
        )


@dataclass
class QueuedRequest:
    """
    A request waiting in, or being served by, a bucket queue.

    Attributes:
        sequence: Global submission counter, defines FIFO order across merges
        route: Compiled route of the call
        body: Request body handed to the transport
        headers: Outbound headers, including the resolved reason header
        context: Call context captured at submission
        handle: The request handle this entry resolves
        submitted_at: Monotonic submission time
        deadline: Monotonic deadline of the wall-clock budget, or None
        attempts: Number of sends so far
        retries: Number of bounded (5xx / transport) retries so far
        not_before: Monotonic time before which the entry must not be sent
        bucket_id: Id of the bucket whose queue currently holds the entry
        finished: Set once the entry has left the dispatcher for good
        timer: Loop timer failing the entry when its deadline passes
    """

    sequence: int
    route: CompiledRoute
    body: Any
    headers: dict[str, str]
    context: CallContext
    handle: RestRequest[Any]
    submitted_at: float = field(default_factory=time.monotonic)
    deadline: float | None = None
    attempts: int = 0
    retries: int = 0
    not_before: float = 0.0
    bucket_id: str = ""
    finished: bool = False
    timer: asyncio.TimerHandle | None = field(default=None, repr=False)

    @property
    def is_cancelled(self) -> bool:
        """True if the handle was cancelled, or asked to be while in flight."""
        return (
            self.handle.state is RequestState.CANCELLED
            or self.handle.cancel_requested
        )

    def is_expired(self, now: float) -> bool:
        return self.deadline is not None and now >= self.deadline


__all__ = ["QueuedRequest", "RequestState"]
