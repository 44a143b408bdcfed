"""
Tree orchestrator.

Executes a step chain strictly in order: step i is dispatched only after
step i-1 completed. The first failure stops the run; every later step is
marked skipped and nothing already completed is rolled back.

Runs are resumable. The host re-invokes with the same chain and the result
it saved last time; completed steps are not dispatched again, steps left
pending (or timed out) resume polling their recorded resumption token.
A run given a deadline stops short of it and leaves the current step
pending, so a bounded host invocation always returns its progress.
"""

from __future__ import annotations

import dataclasses
import inspect
import time
from typing import Awaitable, Callable, Mapping, Optional, Sequence

import structlog

from orgtree.chain.steps import ProvisioningStep, ResourceFamily, StepVerb, extract_field
from orgtree.core.errors import ConfigurationError, OrgTreeError, ValidationError
from orgtree.operations.dispatcher import OperationDispatcher
from orgtree.operations.poller import CompletionPoller, PollPolicy
from orgtree.operations.state import AsyncOperation, OperationState
from orgtree.orchestration.results import ProvisioningResult, StepOutcome, StepStatus

logger = structlog.get_logger()

Checkpoint = Callable[[ProvisioningResult], Optional[Awaitable[None]]]


def verify_chain(steps: Sequence[ProvisioningStep]) -> None:
    """Each step must name the step before it as predecessor, with unique ids."""
    seen: set[str] = set()
    for index, step in enumerate(steps):
        if step.step_id in seen:
            raise ValidationError(f"Duplicate step {step.step_id} in chain")
        seen.add(step.step_id)
        if index and step.predecessor != steps[index - 1].step_id:
            raise ValidationError(
                f"{step.step_id} must follow {steps[index - 1].step_id}",
                details={"predecessor": step.predecessor},
            )


class TreeOrchestrator:
    """Drains a step chain through the dispatcher and poller."""

    def __init__(
        self,
        dispatcher: OperationDispatcher,
        poller: CompletionPoller,
        policies: Mapping[ResourceFamily, PollPolicy],
        *,
        checkpoint: Checkpoint | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._dispatcher = dispatcher
        self._poller = poller
        self._policies = dict(policies)
        self._checkpoint_hook = checkpoint
        self._clock = clock

    async def run(
        self,
        steps: Sequence[ProvisioningStep],
        prior: ProvisioningResult | None = None,
        *,
        deadline: float | None = None,
    ) -> ProvisioningResult:
        """
        Drain ``steps`` in order, resuming from ``prior``.

        With a ``deadline`` (a point on the orchestrator's clock) the run
        suspends instead of outliving it: the current step stays pending with
        its resumption token and later steps are left untouched.
        """
        verify_chain(steps)
        result = ProvisioningResult()
        for step in steps:
            previous = prior.get(step.step_id) if prior else None
            outcome = previous.model_copy() if previous else _new_outcome(step)
            if outcome.status is StepStatus.skipped:
                outcome.status = StepStatus.pending
            result.record(outcome)

        if steps and steps[0].predecessor is not None:
            head = prior.get(steps[0].predecessor) if prior else None
            if head is None or head.status is not StepStatus.complete:
                raise ValidationError(
                    f"{steps[0].step_id} requires {steps[0].predecessor} to be complete"
                )

        logger.info("run_started", steps=len(steps), resumed=prior is not None)
        for index, step in enumerate(steps):
            outcome = result.outcomes[step.step_id]
            if outcome.status is StepStatus.complete:
                if outcome.entity_id is not None:
                    step.target.assign_id(outcome.entity_id)
                logger.debug("step_already_complete", step_id=step.step_id)
                continue

            if deadline is not None and self._clock() >= deadline:
                return await self._suspend(step, result)

            status = await self._execute(step, outcome, result, deadline)
            if status is StepStatus.pending:
                return await self._suspend(step, result)
            if status is StepStatus.failed:
                for later in steps[index + 1 :]:
                    later_outcome = result.outcomes[later.step_id]
                    if later_outcome.status is not StepStatus.complete:
                        later_outcome.status = StepStatus.skipped
                await self._checkpoint(result)
                logger.error(
                    "run_halted",
                    step_id=step.step_id,
                    error=outcome.error,
                    error_kind=outcome.error_kind,
                    skipped=len(result.skipped),
                )
                return result

        logger.info("run_finished", **result.summary())
        return result

    async def _execute(
        self,
        step: ProvisioningStep,
        outcome: StepOutcome,
        result: ProvisioningResult,
        deadline: float | None = None,
    ) -> StepStatus:
        log = logger.bind(step_id=step.step_id, verb=str(step.verb))

        if step.verb is StepVerb.delete and step.prior_physical_id is None:
            log.info("delete_of_uncreated_entity_ignored")
            outcome.status = StepStatus.complete
            await self._checkpoint(result)
            return StepStatus.complete

        policy = self._policies.get(step.family)
        if policy is None:
            raise ConfigurationError(f"No poll policy configured for {step.family}")

        if outcome.entity_id is None:
            operation = await self._primary(step, outcome, result)
            if operation.state is OperationState.pending:
                await self._poller.wait(
                    operation, policy.interval, policy.max_attempts, deadline=deadline
                )
            if operation.state is OperationState.pending:
                outcome.status = StepStatus.pending
                outcome.resumption_token = operation.resumption_token
                outcome.error = None
                outcome.error_kind = None
                return StepStatus.pending
            if operation.state is OperationState.failed:
                return await self._failed(outcome, operation.error, result)

            entity_id = self._entity_id(step, operation)
            if step.id_path is not None and entity_id is None and step.verb is not StepVerb.delete:
                return await self._failed(
                    outcome,
                    ValidationError(f"{step.call.action} response has no {step.id_path}"),
                    result,
                )
            outcome.entity_id = entity_id
            if entity_id is not None:
                step.target.assign_id(entity_id)
            log.info("step_created", entity_id=entity_id)
            await self._checkpoint(result)
        elif step.target.id is None:
            step.target.assign_id(outcome.entity_id)

        if await self._follow_ups(step, outcome, result, policy) is StepStatus.failed:
            return StepStatus.failed

        outcome.status = StepStatus.complete
        outcome.error = None
        outcome.error_kind = None
        await self._checkpoint(result)
        log.info("step_complete", entity_id=outcome.entity_id)
        return StepStatus.complete

    async def _primary(
        self, step: ProvisioningStep, outcome: StepOutcome, result: ProvisioningResult
    ) -> AsyncOperation:
        resumable = outcome.status is StepStatus.pending or outcome.error_kind == "poll_timeout"
        if outcome.resumption_token and resumable:
            return self._dispatcher.resume(step, outcome.resumption_token)

        try:
            resolved = step.resolve(result.entity_ids())
        except ValidationError as exc:
            operation = AsyncOperation(step=step)
            operation.fail(exc)
            return operation

        operation = await self._dispatcher.start(resolved)
        if operation.resumption_token is not None and not operation.is_terminal:
            outcome.resumption_token = operation.resumption_token
            outcome.status = StepStatus.pending
            outcome.error = None
            outcome.error_kind = None
            await self._checkpoint(result)
        return operation

    async def _follow_ups(
        self,
        step: ProvisioningStep,
        outcome: StepOutcome,
        result: ProvisioningResult,
        policy: PollPolicy,
    ) -> StepStatus:
        ids = result.entity_ids()
        if outcome.entity_id is not None:
            ids[step.step_id] = outcome.entity_id

        for call in step.follow_ups[outcome.completed_follow_ups :]:
            try:
                resolved = call.resolve(ids)
            except ValidationError as exc:
                return await self._failed(outcome, exc, result)
            follow_up = dataclasses.replace(
                step,
                step_id=f"{step.step_id}:{call.action}",
                call=resolved,
                id_path=None,
                follow_ups=(),
            )
            operation = await self._dispatcher.start(follow_up)
            if operation.state is OperationState.pending:
                await self._poller.wait(operation, policy.interval, policy.max_attempts)
            if operation.state is OperationState.failed:
                return await self._failed(outcome, operation.error, result)
            outcome.completed_follow_ups += 1
            await self._checkpoint(result)
        return StepStatus.complete

    @staticmethod
    def _entity_id(step: ProvisioningStep, operation: AsyncOperation) -> str | None:
        value = None
        if step.id_path is not None:
            value = extract_field(operation.result_payload, step.id_path)
        if value is None:
            value = step.prior_physical_id
        return None if value is None else str(value)

    async def _failed(
        self, outcome: StepOutcome, error: OrgTreeError | None, result: ProvisioningResult
    ) -> StepStatus:
        outcome.status = StepStatus.failed
        outcome.error = error.message if error else "unknown failure"
        outcome.error_kind = error.error_kind if error else None
        await self._checkpoint(result)
        return StepStatus.failed

    async def _suspend(
        self, step: ProvisioningStep, result: ProvisioningResult
    ) -> ProvisioningResult:
        await self._checkpoint(result)
        logger.info("run_suspended", step_id=step.step_id, **result.summary())
        return result

    async def _checkpoint(self, result: ProvisioningResult) -> None:
        if self._checkpoint_hook is None:
            return
        maybe = self._checkpoint_hook(result)
        if inspect.isawaitable(maybe):
            await maybe


def _new_outcome(step: ProvisioningStep) -> StepOutcome:
    return StepOutcome(
        step_id=step.step_id,
        entity_kind=str(step.target.kind),
        entity_name=step.target.name,
    )
