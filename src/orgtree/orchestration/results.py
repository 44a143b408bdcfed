"""Tree-wide provisioning result, persisted between host invocations."""

from __future__ import annotations

from enum import StrEnum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from orgtree.core.errors import ValidationError

DEFAULT_STATE_PATH = Path("orgtree-state.json")


class StepStatus(StrEnum):
    pending = "pending"
    complete = "complete"
    failed = "failed"
    skipped = "skipped"


class StepOutcome(BaseModel):
    step_id: str
    entity_kind: str
    entity_name: str
    status: StepStatus = StepStatus.pending
    entity_id: str | None = None
    resumption_token: str | None = None
    completed_follow_ups: int = 0
    error: str | None = None
    error_kind: str | None = None

    def to_response(self) -> dict[str, Any]:
        """Caller-facing shape: ``{complete, entityId?, error?}``."""
        response: dict[str, Any] = {"complete": self.status is StepStatus.complete}
        if self.entity_id is not None:
            response["entityId"] = self.entity_id
        if self.error is not None:
            response["error"] = self.error
        return response


class ProvisioningResult(BaseModel):
    """Outcome of every step, in chain order."""

    outcomes: dict[str, StepOutcome] = Field(default_factory=dict)

    def get(self, step_id: str) -> StepOutcome | None:
        return self.outcomes.get(step_id)

    def record(self, outcome: StepOutcome) -> None:
        self.outcomes[outcome.step_id] = outcome

    @property
    def complete(self) -> bool:
        return bool(self.outcomes) and all(
            o.status is StepStatus.complete for o in self.outcomes.values()
        )

    @property
    def first_failure(self) -> StepOutcome | None:
        for outcome in self.outcomes.values():
            if outcome.status is StepStatus.failed:
                return outcome
        return None

    @property
    def skipped(self) -> list[str]:
        return [o.step_id for o in self.outcomes.values() if o.status is StepStatus.skipped]

    def entity_ids(self) -> dict[str, str]:
        """Ids of entities whose step completed, keyed by step id."""
        return {
            o.step_id: o.entity_id
            for o in self.outcomes.values()
            if o.status is StepStatus.complete and o.entity_id is not None
        }

    def to_response(self, step_id: str) -> dict[str, Any]:
        outcome = self.outcomes.get(step_id)
        if outcome is None:
            return {"complete": False}
        return outcome.to_response()

    def summary(self) -> dict[str, int]:
        counts = {status.value: 0 for status in StepStatus}
        for outcome in self.outcomes.values():
            counts[outcome.status.value] += 1
        return counts


def load_result(path: Path | None = None) -> ProvisioningResult | None:
    state_path = path or DEFAULT_STATE_PATH
    if not state_path.exists():
        return None
    try:
        return ProvisioningResult.model_validate_json(state_path.read_text())
    except ValueError as exc:
        raise ValidationError(f"Corrupt provisioning state in {state_path}: {exc}") from exc


def save_result(result: ProvisioningResult, path: Path | None = None) -> None:
    state_path = path or DEFAULT_STATE_PATH
    state_path.write_text(result.model_dump_json(indent=2) + "\n")
