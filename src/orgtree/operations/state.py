"""Three-state lifecycle shared by every dispatched step: Pending -> Complete | Failed."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from orgtree.chain.steps import ProvisioningStep
from orgtree.controlplane.base import DispatchReceipt, PollResult
from orgtree.core.errors import ExternalFailure, OperationStateError, OrgTreeError


class OperationState(StrEnum):
    pending = "Pending"
    complete = "Complete"
    failed = "Failed"


@dataclass
class AsyncOperation:
    """Handle for one dispatched step. Serves exactly that step, once."""

    step: ProvisioningStep
    state: OperationState = OperationState.pending
    resumption_token: str | None = None
    attempts: int = 0
    result_payload: dict[str, Any] | None = None
    error: OrgTreeError | None = None

    @property
    def is_terminal(self) -> bool:
        return self.state is not OperationState.pending

    def accept(self, receipt: DispatchReceipt) -> None:
        """Record the dispatch receipt; synchronous receipts complete immediately."""
        self._require_pending("accept")
        if self.resumption_token is not None:
            raise OperationStateError(f"{self.step.step_id} was already dispatched")
        self.resumption_token = receipt.resumption_token
        if receipt.completed:
            self.result_payload = receipt.result_payload
            self.state = OperationState.complete

    def observe(self, result: PollResult) -> OperationState:
        """Apply one poll observation. Non-terminal observations change nothing."""
        self._require_pending("observe")
        if not result.terminal:
            return self.state
        self.result_payload = result.result_payload
        if result.success:
            self.state = OperationState.complete
        else:
            self.error = ExternalFailure(
                result.error_message or "external job reported failure",
                details={"step_id": self.step.step_id},
            )
            self.state = OperationState.failed
        return self.state

    def fail(self, error: OrgTreeError) -> None:
        self._require_pending("fail")
        self.error = error
        self.state = OperationState.failed

    def _require_pending(self, transition: str) -> None:
        if self.is_terminal:
            raise OperationStateError(
                f"Cannot {transition} {self.step.step_id}: operation is {self.state}",
                details={"step_id": self.step.step_id},
            )
