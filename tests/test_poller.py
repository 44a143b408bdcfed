"""Tests for the completion poller's attempt budget and interval."""

import itertools
from unittest.mock import AsyncMock

import pytest
from orgtree.chain.steps import ActionCall, ProvisioningStep, ResourceFamily, StepVerb
from orgtree.controlplane.base import PollResult
from orgtree.core.errors import (
    ConfigurationError,
    ExternalFailure,
    PollTimeoutError,
    TransportError,
)
from orgtree.domain.entities import Account
from orgtree.operations import AsyncOperation, CompletionPoller, OperationDispatcher, OperationState


def _pending_operation():
    step = ProvisioningStep(
        step_id="account:Dev/a",
        verb=StepVerb.create,
        target=Account("a", "Dev/a"),
        family=ResourceFamily.account,
        call=ActionCall("organizations", "create_account", "us-east-1"),
    )
    return AsyncOperation(step=step, resumption_token="account:car-1")


def _poller(control_plane, sleep):
    return CompletionPoller(OperationDispatcher(control_plane), sleep=sleep)


class TestCompletionPoller:
    @pytest.mark.asyncio
    async def test_budget_exhausted_after_exactly_max_attempts(self, no_sleep):
        control_plane = AsyncMock()
        control_plane.poll.return_value = PollResult.pending()
        operation = _pending_operation()

        state = await _poller(control_plane, no_sleep).wait(operation, 5, 4)

        assert state is OperationState.failed
        assert isinstance(operation.error, PollTimeoutError)
        assert control_plane.poll.await_count == 4
        assert operation.attempts == 4

    @pytest.mark.asyncio
    async def test_waits_interval_between_attempts(self, no_sleep):
        control_plane = AsyncMock()
        control_plane.poll.side_effect = [
            PollResult.pending(),
            PollResult.pending(),
            PollResult.succeeded({"ok": True}),
        ]
        operation = _pending_operation()

        state = await _poller(control_plane, no_sleep).wait(operation, 10, 90)

        assert state is OperationState.complete
        assert operation.result_payload == {"ok": True}
        assert no_sleep.await_count == 2
        for call in no_sleep.await_args_list:
            assert call.args[0] == 10

    @pytest.mark.asyncio
    async def test_success_on_last_attempt(self, no_sleep):
        control_plane = AsyncMock()
        control_plane.poll.side_effect = [PollResult.pending(), PollResult.succeeded({})]

        state = await _poller(control_plane, no_sleep).wait(_pending_operation(), 0, 2)
        assert state is OperationState.complete

    @pytest.mark.asyncio
    async def test_external_failure_returns_early(self, no_sleep):
        control_plane = AsyncMock()
        control_plane.poll.side_effect = [PollResult.pending(), PollResult.failed("INVALID_EMAIL")]
        operation = _pending_operation()

        state = await _poller(control_plane, no_sleep).wait(operation, 0, 10)

        assert state is OperationState.failed
        assert isinstance(operation.error, ExternalFailure)
        assert operation.error.message == "INVALID_EMAIL"
        assert control_plane.poll.await_count == 2

    @pytest.mark.asyncio
    async def test_transport_errors_count_against_budget(self, no_sleep):
        control_plane = AsyncMock()
        control_plane.poll.side_effect = [
            TransportError("connection reset"),
            PollResult.succeeded({"done": 1}),
        ]
        operation = _pending_operation()

        state = await _poller(control_plane, no_sleep).wait(operation, 0, 2)

        assert state is OperationState.complete
        assert operation.attempts == 2

    @pytest.mark.asyncio
    async def test_transport_errors_exhaust_budget(self, no_sleep):
        control_plane = AsyncMock()
        control_plane.poll.side_effect = TransportError("connection reset")
        operation = _pending_operation()

        state = await _poller(control_plane, no_sleep).wait(operation, 0, 3)

        assert state is OperationState.failed
        assert isinstance(operation.error, PollTimeoutError)
        assert "connection reset" in operation.error.message
        assert control_plane.poll.await_count == 3

    @pytest.mark.asyncio
    async def test_terminal_operation_not_polled(self, no_sleep):
        control_plane = AsyncMock()
        operation = _pending_operation()
        operation.state = OperationState.complete

        assert await _poller(control_plane, no_sleep).wait(operation, 0, 3) is OperationState.complete
        control_plane.poll.assert_not_called()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("interval,max_attempts", [(1, 0), (-1, 3)])
    async def test_invalid_policy_rejected(self, no_sleep, interval, max_attempts):
        with pytest.raises(ConfigurationError):
            await _poller(AsyncMock(), no_sleep).wait(_pending_operation(), interval, max_attempts)


class TestDeadline:
    """Polling stops short of the deadline and leaves the job pending."""

    @staticmethod
    def _ticking_clock(step):
        ticks = itertools.count(0, step)
        return lambda: next(ticks)

    @pytest.mark.asyncio
    async def test_deadline_leaves_operation_pending(self, no_sleep):
        control_plane = AsyncMock()
        control_plane.poll.return_value = PollResult.pending()
        operation = _pending_operation()
        poller = CompletionPoller(
            OperationDispatcher(control_plane), sleep=no_sleep, clock=self._ticking_clock(10)
        )

        state = await poller.wait(operation, 10, 90, deadline=25)

        assert state is OperationState.pending
        assert operation.error is None
        assert operation.resumption_token == "account:car-1"
        assert control_plane.poll.await_count == 3
        assert no_sleep.await_count == 2

    @pytest.mark.asyncio
    async def test_budget_still_applies_before_deadline(self, no_sleep):
        control_plane = AsyncMock()
        control_plane.poll.return_value = PollResult.pending()
        operation = _pending_operation()
        poller = CompletionPoller(
            OperationDispatcher(control_plane), sleep=no_sleep, clock=lambda: 0.0
        )

        state = await poller.wait(operation, 10, 2, deadline=1000)

        assert state is OperationState.failed
        assert isinstance(operation.error, PollTimeoutError)

    @pytest.mark.asyncio
    async def test_completion_before_deadline(self, no_sleep):
        control_plane = AsyncMock()
        control_plane.poll.side_effect = [PollResult.pending(), PollResult.succeeded({})]
        poller = CompletionPoller(
            OperationDispatcher(control_plane), sleep=no_sleep, clock=lambda: 0.0
        )

        state = await poller.wait(_pending_operation(), 10, 90, deadline=1000)
        assert state is OperationState.complete
