"""
CLI command for printing the provisioning chain of an organization tree.
"""

from __future__ import annotations

from pathlib import Path

from orgtree.chain import plan_organization
from orgtree.cli.ux import console, steps_table, warning
from orgtree.config import Settings, get_settings
from orgtree.core.errors import ExitCode, main_with_error_handling
from orgtree.domain.specs import load_organization_spec
from orgtree.orchestration.results import load_result

PLACEHOLDER_ACCOUNT_ID = "000000000000"


@main_with_error_handling()
def plan_command(
    tree_path: str,
    *,
    state_path: str | None = None,
    settings: Settings | None = None,
) -> int:
    """Print the ordered step chain without calling the control plane."""
    settings = settings or get_settings()
    spec = load_organization_spec(Path(tree_path))
    prior = load_result(Path(state_path)) if state_path else None

    steps = plan_organization(
        spec,
        region=settings.control_plane_region,
        account_number=settings.management_account_id or PLACEHOLDER_ACCOUNT_ID,
        prior_ids=prior.entity_ids() if prior else None,
    )
    if not steps:
        warning("No organizational units declared, nothing to provision")
        return ExitCode.SUCCESS

    console.print(steps_table(steps))
    return ExitCode.SUCCESS
