# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Tests for combining requests: all_of/zip/combine, delayed delivery and
fallback requests. Every request goes through a running Dispatcher.
"""

import asyncio
import time

import pytest

from restbucket.actions import all_of
from restbucket.context import with_reason
from restbucket.dispatcher.dispatcher import Dispatcher
from restbucket.exceptions import (
    AlreadySubmittedError,
    RequestCancelledError,
    RequestRejectedError,
)
from restbucket.types.request import RequestState
from restbucket.types.response import TransportResponse
from restbucket.types.route import Route

GET_CHANNEL = Route.get("channels/{channel_id}")
GET_USER = Route.get("users/{user_id}")


async def exhaust_channel(dispatcher, fake_transport, make_response):
    """Leave the bucket of channel 1 with no budget for the next two seconds."""
    fake_transport.script("channels/1", make_response(remaining=0, reset_after=2.0))
    await dispatcher.new_request(GET_CHANNEL.compile("1"))


class TestAllOf:
    """Tests for all_of, zip and combine."""

    @pytest.mark.asyncio
    async def test_results_in_given_order(self, fake_transport, config):
        """The combined result lists each result in argument order."""
        fake_transport.delay = 0.02
        fake_transport.script("users/1", TransportResponse(200, {}, {"id": "1"}))
        fake_transport.script("users/2", TransportResponse(200, {}, {"id": "2"}))
        fake_transport.script("channels/3", TransportResponse(200, {}, {"id": "3"}))
        async with Dispatcher(fake_transport, config) as dispatcher:
            results = await all_of(
                dispatcher.new_request(GET_USER.compile("2")),
                dispatcher.new_request(GET_CHANNEL.compile("3")),
                dispatcher.new_request(GET_USER.compile("1")),
            )
        assert [body["id"] for body in results] == ["2", "3", "1"]
        assert len(fake_transport.calls) == 3

    @pytest.mark.asyncio
    async def test_zip_includes_receiver(self, fake_transport, config):
        """zip puts the request it was called on first."""
        fake_transport.script("users/1", TransportResponse(200, {}, "first"))
        fake_transport.script("users/2", TransportResponse(200, {}, "second"))
        async with Dispatcher(fake_transport, config) as dispatcher:
            first = dispatcher.new_request(GET_USER.compile("1"))
            results = await first.zip(dispatcher.new_request(GET_USER.compile("2")))
        assert results == ["first", "second"]

    @pytest.mark.asyncio
    async def test_combine_accumulates(self, fake_transport, config):
        """combine merges two results with the accumulator."""
        fake_transport.script("users/1", TransportResponse(200, {}, 20))
        fake_transport.script("users/2", TransportResponse(200, {}, 22))
        async with Dispatcher(fake_transport, config) as dispatcher:
            total = await dispatcher.new_request(GET_USER.compile("1")).combine(
                dispatcher.new_request(GET_USER.compile("2")), lambda a, b: a + b
            )
        assert total == 42

    @pytest.mark.asyncio
    async def test_failure_cancels_pending(
        self, fake_transport, config, make_response
    ):
        """The first failure fails the group and cancels requests still queued."""
        fake_transport.script("users/9", TransportResponse(404, {}, {"code": 10013}))
        async with Dispatcher(fake_transport, config) as dispatcher:
            await exhaust_channel(dispatcher, fake_transport, make_response)
            waiting = dispatcher.new_request(GET_CHANNEL.compile("1"))
            failing = dispatcher.new_request(GET_USER.compile("9"))
            start = time.monotonic()
            with pytest.raises(RequestRejectedError):
                await waiting.zip(failing)
            elapsed = time.monotonic() - start
        assert elapsed < 1.0
        assert waiting.state is RequestState.CANCELLED
        assert failing.state is RequestState.FAILED
        assert len(fake_transport.calls_to("channels/1")) == 1

    @pytest.mark.asyncio
    async def test_cancel_cancels_sources(
        self, fake_transport, config, make_response
    ):
        """Cancelling a queued group cancels every source."""
        async with Dispatcher(fake_transport, config) as dispatcher:
            await exhaust_channel(dispatcher, fake_transport, make_response)
            sources = [dispatcher.new_request(GET_CHANNEL.compile("1")) for _ in range(2)]
            combined = all_of(*sources).submit()
            assert combined.state is RequestState.QUEUED
            assert combined.cancel() is True
            with pytest.raises(RequestCancelledError):
                await combined
        assert all(source.state is RequestState.CANCELLED for source in sources)
        assert len(fake_transport.calls) == 1

    @pytest.mark.asyncio
    async def test_reason_applies_to_every_source(self, fake_transport, config):
        """The ambient reason at submission is sent with each source."""
        async with Dispatcher(fake_transport, config) as dispatcher:
            with with_reason("bulk lookup"):
                combined = all_of(
                    dispatcher.new_request(GET_USER.compile("1")),
                    dispatcher.new_request(GET_USER.compile("2")),
                ).submit()
            await combined
        assert [c.headers.get("X-Audit-Log-Reason") for c in fake_transport.calls] == [
            "bulk%20lookup",
            "bulk%20lookup",
        ]

    def test_invalid_groups_rejected(self, fake_transport, config):
        """Empty groups, repeated requests and submitted requests are rejected."""
        dispatcher = Dispatcher(fake_transport, config)
        request = dispatcher.new_request(GET_USER.compile("1"))
        with pytest.raises(ValueError):
            all_of()
        with pytest.raises(ValueError):
            all_of(request, request)

    @pytest.mark.asyncio
    async def test_submitted_source_rejected(self, fake_transport, config):
        """A request that was already submitted cannot join a group."""
        async with Dispatcher(fake_transport, config) as dispatcher:
            submitted = dispatcher.new_request(GET_USER.compile("1")).submit()
            with pytest.raises(AlreadySubmittedError):
                all_of(dispatcher.new_request(GET_USER.compile("2")), submitted)
            await submitted


class TestDelay:
    """Tests for delayed delivery."""

    @pytest.mark.asyncio
    async def test_result_delivered_after_delay(self, fake_transport, config):
        """The result arrives no earlier than the delay after the response."""
        async with Dispatcher(fake_transport, config) as dispatcher:
            start = time.monotonic()
            result = await dispatcher.new_request(GET_USER.compile("1")).delay(0.2)
            elapsed = time.monotonic() - start
        assert result == {"ok": True}
        assert elapsed >= 0.18

    @pytest.mark.asyncio
    async def test_failure_not_delayed(self, fake_transport, config):
        """Failures are delivered right away."""
        fake_transport.script("users/1", TransportResponse(404))
        async with Dispatcher(fake_transport, config) as dispatcher:
            start = time.monotonic()
            with pytest.raises(RequestRejectedError):
                await dispatcher.new_request(GET_USER.compile("1")).delay(5)
        assert time.monotonic() - start < 1.0

    @pytest.mark.asyncio
    async def test_delay_spaces_chained_requests(self, fake_transport, config):
        """A delay before and_then holds back the follow-up call."""
        async with Dispatcher(fake_transport, config) as dispatcher:
            await (
                dispatcher.new_request(GET_USER.compile("1"))
                .delay(0.15)
                .and_then(lambda _: dispatcher.new_request(GET_USER.compile("2")))
            )
        first, second = fake_transport.calls
        assert second.sent_at - first.sent_at >= 0.13

    @pytest.mark.asyncio
    async def test_cancel_during_delay(self, fake_transport, config):
        """A request waiting out its delay can still be cancelled."""
        delivered = []
        async with Dispatcher(fake_transport, config) as dispatcher:
            source = dispatcher.new_request(GET_USER.compile("1"))
            delayed = source.delay(5)
            delayed.on_success(delivered.append).submit()
            for _ in range(50):
                if source.is_done:
                    break
                await asyncio.sleep(0.01)
            assert source.state is RequestState.SUCCEEDED
            assert delayed.cancel() is True
            with pytest.raises(RequestCancelledError):
                await delayed
        assert delivered == []

    def test_negative_delay_rejected(self, fake_transport, config):
        """Negative delays are rejected."""
        dispatcher = Dispatcher(fake_transport, config)
        with pytest.raises(ValueError):
            dispatcher.new_request(GET_USER.compile("1")).delay(-1)


class TestRecoverWith:
    """Tests for fallback requests."""

    @pytest.mark.asyncio
    async def test_failure_answered_by_fallback(self, fake_transport, config):
        """A matching failure submits the fallback request and resolves with it."""
        fake_transport.script("channels/1", TransportResponse(404, {}, {"code": 10003}))
        fake_transport.script("channels/2", TransportResponse(200, {}, {"id": "2"}))
        async with Dispatcher(fake_transport, config) as dispatcher:
            result = await dispatcher.new_request(GET_CHANNEL.compile("1")).recover_with(
                lambda error: dispatcher.new_request(GET_CHANNEL.compile("2")),
                RequestRejectedError,
            )
        assert result == {"id": "2"}
        assert [call.url.rsplit("/", 1)[-1] for call in fake_transport.calls] == [
            "1",
            "2",
        ]

    @pytest.mark.asyncio
    async def test_fallback_inherits_reason(self, fake_transport, config):
        """The fallback request is sent with the reason of the failed one."""
        fake_transport.script("channels/1", TransportResponse(404))
        async with Dispatcher(fake_transport, config) as dispatcher:
            with with_reason("restore"):
                request = (
                    dispatcher.new_request(GET_CHANNEL.compile("1"))
                    .recover_with(
                        lambda _: dispatcher.new_request(GET_CHANNEL.compile("2"))
                    )
                    .submit()
                )
            await request
        assert [c.headers.get("X-Audit-Log-Reason") for c in fake_transport.calls] == [
            "restore",
            "restore",
        ]

    @pytest.mark.asyncio
    async def test_other_errors_pass_through(self, fake_transport, config):
        """Failures of other types skip the fallback."""
        fake_transport.script("channels/1", TransportResponse(404))
        async with Dispatcher(fake_transport, config) as dispatcher:
            with pytest.raises(RequestRejectedError):
                await dispatcher.new_request(GET_CHANNEL.compile("1")).recover_with(
                    lambda _: dispatcher.new_request(GET_CHANNEL.compile("2")),
                    KeyError,
                )
        assert len(fake_transport.calls) == 1

    @pytest.mark.asyncio
    async def test_fallback_failure_surfaces(self, fake_transport, config):
        """If the fallback fails too, its failure is the result."""
        fake_transport.script("channels/1", TransportResponse(404))
        fake_transport.script("channels/2", TransportResponse(403, {}, {"code": 50013}))
        async with Dispatcher(fake_transport, config) as dispatcher:
            with pytest.raises(RequestRejectedError) as exc_info:
                await dispatcher.new_request(GET_CHANNEL.compile("1")).recover_with(
                    lambda _: dispatcher.new_request(GET_CHANNEL.compile("2"))
                )
        assert exc_info.value.status == 403

    @pytest.mark.asyncio
    async def test_handler_must_return_request(self, fake_transport, config):
        """A handler that does not build a request fails the result."""
        fake_transport.script("channels/1", TransportResponse(404))
        async with Dispatcher(fake_transport, config) as dispatcher:
            with pytest.raises(TypeError, match="recover_with"):
                await dispatcher.new_request(GET_CHANNEL.compile("1")).recover_with(
                    lambda error: None
                )
