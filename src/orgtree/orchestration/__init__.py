"""Ordered, resumable execution of a step chain."""

from orgtree.orchestration.orchestrator import TreeOrchestrator, verify_chain
from orgtree.orchestration.results import (
    ProvisioningResult,
    StepOutcome,
    StepStatus,
    load_result,
    save_result,
)
from orgtree.orchestration.runner import build_orchestrator

__all__ = [
    "ProvisioningResult",
    "StepOutcome",
    "StepStatus",
    "TreeOrchestrator",
    "build_orchestrator",
    "load_result",
    "save_result",
    "verify_chain",
]
