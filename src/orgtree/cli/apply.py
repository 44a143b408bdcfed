"""
CLI command for provisioning an organization tree.

Progress is saved to the state file after every step transition. Re-running
the same command resumes from the last completed step.
"""

from __future__ import annotations

import asyncio
from pathlib import Path

from orgtree.accounts import AccountDetailsPublisher
from orgtree.chain import plan_organization
from orgtree.cli.plan import PLACEHOLDER_ACCOUNT_ID
from orgtree.cli.ux import console, error, result_table, success, warning
from orgtree.config import Settings, get_settings
from orgtree.controlplane import ControlPlane, InMemoryControlPlane, OrganizationsControlPlane
from orgtree.core.errors import ExitCode, OrgTreeError, main_with_error_handling
from orgtree.domain.specs import OrganizationSpec, load_organization_spec
from orgtree.orchestration import ProvisioningResult, build_orchestrator, load_result, save_result


async def _apply(
    spec: OrganizationSpec,
    control_plane: ControlPlane,
    settings: Settings,
    *,
    state_path: Path,
    prior: ProvisioningResult | None,
    reconcile: bool,
    simulate: bool,
) -> ProvisioningResult:
    account_number = spec.management_account_id or settings.management_account_id
    if account_number is None and spec.email and spec.nested_ou:
        account_number = await control_plane.caller_account_id()

    steps = plan_organization(
        spec,
        region=settings.control_plane_region,
        account_number=account_number,
        prior_ids=prior.entity_ids() if (reconcile and prior) else None,
    )
    orchestrator = build_orchestrator(
        control_plane,
        settings,
        checkpoint=lambda result: save_result(result, state_path),
    )
    result = await orchestrator.run(steps, None if reconcile else prior)

    if settings.publish_account_details and not simulate:
        publisher = AccountDetailsPublisher(
            region=settings.control_plane_region,
            prefix=settings.account_parameter_prefix,
        )
        try:
            await publisher.publish(steps, result)
        except OrgTreeError as exc:
            warning(f"Account details not published: {exc.message}")
    return result


@main_with_error_handling()
def apply_command(
    tree_path: str,
    *,
    state_path: str,
    simulate: bool = False,
    reconcile: bool = False,
    settings: Settings | None = None,
) -> int:
    """Provision the tree, resuming from ``state_path`` when it exists."""
    settings = settings or get_settings()
    spec = load_organization_spec(Path(tree_path))
    state = Path(state_path)
    prior = load_result(state)

    control_plane: ControlPlane
    if simulate:
        control_plane = InMemoryControlPlane(account_id=PLACEHOLDER_ACCOUNT_ID)
    else:
        control_plane = OrganizationsControlPlane(region=settings.control_plane_region)

    result = asyncio.run(
        _apply(
            spec,
            control_plane,
            settings,
            state_path=state,
            prior=prior,
            reconcile=reconcile,
            simulate=simulate,
        )
    )
    save_result(result, state)

    if not result.outcomes:
        warning("No organizational units declared, nothing to provision")
        return ExitCode.SUCCESS

    console.print(result_table(result))
    failure = result.first_failure
    if failure is not None:
        error(f"{failure.step_id} failed ({failure.error_kind}): {failure.error}")
        if result.skipped:
            warning(f"Skipped {len(result.skipped)} step(s): {', '.join(result.skipped)}")
        console.print(f"[muted]Fix the cause and re-run to resume from {failure.step_id}[/muted]")
        return ExitCode.BLOCKED

    success(f"Provisioned {len(result.outcomes)} step(s)")
    return ExitCode.SUCCESS
