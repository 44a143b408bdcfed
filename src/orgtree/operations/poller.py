from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Awaitable, Callable

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    retry_if_exception_type,
    retry_if_result,
    stop_after_attempt,
    wait_fixed,
)
from tenacity.stop import stop_base

from orgtree.core.errors import ConfigurationError, OrgTreeError, PollTimeoutError, TransportError
from orgtree.operations.state import AsyncOperation, OperationState

if TYPE_CHECKING:
    from orgtree.operations.dispatcher import OperationDispatcher

logger = structlog.get_logger()


@dataclass(frozen=True)
class PollPolicy:
    """Poll spacing in seconds and the number of status queries allowed."""

    interval: float
    max_attempts: int


def _still_pending(state: OperationState) -> bool:
    return state is OperationState.pending


def _log_retry(retry_state: RetryCallState) -> None:
    outcome = retry_state.outcome
    if outcome is not None and outcome.failed:
        logger.warning(
            "poll_transport_error",
            attempt=retry_state.attempt_number,
            error=str(outcome.exception()),
        )


class _StopAtDeadline(stop_base):
    """Stop once another wait of ``interval`` would end past ``deadline``."""

    def __init__(self, deadline: float, interval: float, clock: Callable[[], float]) -> None:
        self._deadline = deadline
        self._interval = interval
        self._clock = clock

    def __call__(self, retry_state: RetryCallState) -> bool:
        return self._clock() + self._interval >= self._deadline


class CompletionPoller:
    """Polls a dispatched operation at a fixed interval until it settles."""

    def __init__(
        self,
        dispatcher: OperationDispatcher,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._dispatcher = dispatcher
        self._sleep = sleep
        self._clock = clock

    async def wait(
        self,
        operation: AsyncOperation,
        interval: float,
        max_attempts: int,
        *,
        deadline: float | None = None,
    ) -> OperationState:
        """
        Poll until Complete or Failed, or until ``max_attempts`` status
        queries have come back non-terminal.

        Transport errors count as non-terminal observations against the same
        budget. Running out of budget fails the operation with
        PollTimeoutError, distinct from an upstream failure.

        ``deadline`` is a point on the poller's clock. When the next wait
        would end past it, polling stops and the operation is left pending
        with its resumption token, to be resumed by a later run.
        """
        if max_attempts < 1:
            raise ConfigurationError(f"max_attempts must be at least 1, got {max_attempts}")
        if interval < 0:
            raise ConfigurationError(f"interval must not be negative, got {interval}")
        if operation.is_terminal:
            return operation.state

        stop: stop_base = stop_after_attempt(max_attempts)
        if deadline is not None:
            stop = stop | _StopAtDeadline(deadline, interval, self._clock)

        retrying = AsyncRetrying(
            retry=retry_if_exception_type(TransportError) | retry_if_result(_still_pending),
            stop=stop,
            wait=wait_fixed(interval),
            sleep=self._sleep,
            before_sleep=_log_retry,
        )
        try:
            return await retrying(self._dispatcher.poll, operation)
        except RetryError as exc:
            last = exc.last_attempt
            if deadline is not None and last.attempt_number < max_attempts:
                logger.info(
                    "poll_suspended",
                    step_id=operation.step.step_id,
                    attempts=operation.attempts,
                    resumption_token=operation.resumption_token,
                )
                return operation.state
            reason = str(last.exception()) if last.failed else "job still pending"
            logger.warning(
                "poll_budget_exhausted",
                step_id=operation.step.step_id,
                attempts=operation.attempts,
                last_observation=reason,
            )
            operation.fail(
                PollTimeoutError(
                    f"poll budget exhausted after {max_attempts} attempts for "
                    f"{operation.step.step_id}: {reason}",
                    details={"resumption_token": operation.resumption_token},
                )
            )
            return operation.state
        except OrgTreeError as exc:
            logger.error("poll_failed", step_id=operation.step.step_id, error=exc.message)
            operation.fail(exc)
            return operation.state
