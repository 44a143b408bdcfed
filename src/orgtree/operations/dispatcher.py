from __future__ import annotations

import structlog

from orgtree.chain.steps import ProvisioningStep
from orgtree.controlplane.base import ControlPlane
from orgtree.core.errors import DispatchError, ValidationError
from orgtree.operations.state import AsyncOperation, OperationState

logger = structlog.get_logger()


class OperationDispatcher:
    """Performs the side-effecting call for a step and its status queries.

    One instance is constructed per run and shared by every step.
    """

    def __init__(self, control_plane: ControlPlane) -> None:
        self._control_plane = control_plane

    async def start(self, step: ProvisioningStep) -> AsyncOperation:
        """Dispatch ``step`` once. Failures yield a handle already in Failed."""
        operation = AsyncOperation(step=step)
        log = logger.bind(step_id=step.step_id, action=step.call.action)

        unresolved = step.references()
        if unresolved:
            operation.fail(
                ValidationError(
                    f"{step.step_id} has unresolved parameters",
                    details={"references": [ref.step_id for ref in unresolved]},
                )
            )
            log.error("dispatch_invalid", references=[ref.step_id for ref in unresolved])
            return operation

        try:
            receipt = await self._control_plane.dispatch(step.call)
        except (DispatchError, ValidationError) as exc:
            operation.fail(exc)
            log.error("dispatch_failed", error=exc.message, error_kind=exc.error_kind)
            return operation

        operation.accept(receipt)
        log.info(
            "step_dispatched",
            resumption_token=receipt.resumption_token,
            state=str(operation.state),
        )
        return operation

    def resume(self, step: ProvisioningStep, token: str) -> AsyncOperation:
        """Rebuild a pending handle from a recorded token without dispatching again."""
        logger.info("operation_resumed", step_id=step.step_id, resumption_token=token)
        return AsyncOperation(step=step, resumption_token=token)

    async def poll(self, operation: AsyncOperation) -> OperationState:
        """Query status once. Terminal handles are answered without an external call."""
        if operation.is_terminal:
            return operation.state
        if operation.resumption_token is None:
            raise ValidationError(f"{operation.step.step_id} has no resumption token")

        operation.attempts += 1
        result = await self._control_plane.poll(operation.resumption_token)
        state = operation.observe(result)
        logger.debug(
            "operation_polled",
            step_id=operation.step.step_id,
            attempt=operation.attempts,
            state=str(state),
        )
        return state
