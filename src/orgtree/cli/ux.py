"""Console output helpers for the orgtree CLI (rich)."""

from __future__ import annotations

from rich.console import Console
from rich.table import Table
from rich.theme import Theme

from orgtree.chain.steps import ProvisioningStep
from orgtree.orchestration.results import ProvisioningResult, StepStatus

ORGTREE_THEME = Theme(
    {
        "info": "#88C0D0",
        "success": "#A3BE8C",
        "warning": "#EBCB8B",
        "error": "#BF616A bold",
        "muted": "#D8DEE9",
    }
)

console = Console(theme=ORGTREE_THEME)

_STATUS_STYLE = {
    StepStatus.complete: "success",
    StepStatus.pending: "info",
    StepStatus.failed: "error",
    StepStatus.skipped: "muted",
}


def success(message: str) -> None:
    console.print(f"[success]✓[/success] {message}")


def error(message: str) -> None:
    console.print(f"[error]✗[/error] {message}")


def warning(message: str) -> None:
    console.print(f"[warning]![/warning] {message}")


def steps_table(steps: list[ProvisioningStep]) -> Table:
    table = Table(title="Provisioning chain")
    table.add_column("#", justify="right")
    table.add_column("Step")
    table.add_column("Verb")
    table.add_column("Action")
    table.add_column("After", style="muted")
    for index, step in enumerate(steps, 1):
        table.add_row(
            str(index),
            step.step_id,
            str(step.verb),
            step.call.action,
            step.predecessor or "-",
        )
    return table


def result_table(result: ProvisioningResult) -> Table:
    table = Table(title="Provisioning result")
    table.add_column("Step")
    table.add_column("Status")
    table.add_column("Id")
    table.add_column("Error", style="error")
    for outcome in result.outcomes.values():
        style = _STATUS_STYLE[outcome.status]
        table.add_row(
            outcome.step_id,
            f"[{style}]{outcome.status}[/{style}]",
            outcome.entity_id or "",
            outcome.error or "",
        )
    return table
