"""
Lambda entry point.

The host invokes the handler repeatedly, once per external event, until the
response reports ``complete``. Each invocation is stateless: the event carries
the organization tree and the result returned by the previous invocation.
A run stops short of the Lambda timeout, leaving the step it was polling
pending with its resumption token for the next invocation.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any

import structlog

from orgtree.accounts import AccountDetailsPublisher
from orgtree.chain import plan_organization, step_from_request
from orgtree.chain.requests import ProvisioningRequest
from orgtree.config import Settings, get_settings
from orgtree.controlplane import OrganizationsControlPlane
from orgtree.core.errors import OrgTreeError
from orgtree.domain.specs import parse_organization_spec
from orgtree.logging import bind_run_context, configure_logging
from orgtree.metrics import MetricsCollector
from orgtree.orchestration import ProvisioningResult, build_orchestrator
from orgtree.tracing import init_xray, trace_async

logger = structlog.get_logger()


def _prior_result(event: dict[str, Any]) -> ProvisioningResult | None:
    raw = event.get("result")
    if not raw:
        return None
    return ProvisioningResult.model_validate(raw)


@trace_async("provision_organization")
async def process_tree(
    event: dict[str, Any], settings: Settings, deadline: float | None = None
) -> dict[str, Any]:
    spec = parse_organization_spec(event["organization"])
    prior = _prior_result(event)
    control_plane = OrganizationsControlPlane(region=settings.control_plane_region)

    account_number = spec.management_account_id or settings.management_account_id
    if account_number is None and spec.email and spec.nested_ou:
        account_number = await control_plane.caller_account_id()

    steps = plan_organization(
        spec,
        region=settings.control_plane_region,
        account_number=account_number,
    )
    if not steps:
        logger.info("nothing_to_provision")
        return {"complete": True, "result": ProvisioningResult().model_dump(mode="json"), "steps": {}}

    metrics = MetricsCollector(settings.metrics_namespace, settings.control_plane_region)
    orchestrator = build_orchestrator(control_plane, settings)
    try:
        async with metrics.timer("RunDuration"):
            result = await orchestrator.run(steps, prior, deadline=deadline)
        await metrics.record_result(result)
    finally:
        await metrics.close()

    failure = result.first_failure
    response: dict[str, Any] = {
        "complete": result.complete,
        "result": result.model_dump(mode="json"),
        "steps": {step.step_id: result.to_response(step.step_id) for step in steps},
    }
    if failure is not None:
        response["error"] = failure.error
        response["errorKind"] = failure.error_kind
        response["skipped"] = result.skipped

    if settings.publish_account_details:
        publisher = AccountDetailsPublisher(
            region=settings.control_plane_region,
            prefix=settings.account_parameter_prefix,
        )
        try:
            await publisher.publish(steps, result)
        except OrgTreeError as exc:
            # The run's progress still has to reach the host
            logger.error("account_details_not_published", error=exc.message)
            response["warnings"] = [exc.message]
    return response


async def process_request(
    event: dict[str, Any], settings: Settings, deadline: float | None = None
) -> dict[str, Any]:
    """Provision a single unit or account request."""
    request = ProvisioningRequest.from_event(event)
    step = step_from_request(request, region=settings.control_plane_region)
    control_plane = OrganizationsControlPlane(region=settings.control_plane_region)
    orchestrator = build_orchestrator(control_plane, settings)
    result = await orchestrator.run([step], _prior_result(event), deadline=deadline)
    return result.to_response(step.step_id)


async def handle_event(
    event: dict[str, Any], settings: Settings, deadline: float | None = None
) -> dict[str, Any]:
    try:
        if "requestKind" in event:
            return await process_request(event, settings, deadline)
        return await process_tree(event, settings, deadline)
    except OrgTreeError as exc:
        logger.error(
            "invocation_failed",
            error_type=type(exc).__name__,
            error=exc.message,
            **exc.details,
        )
        raise


def invocation_deadline(context: Any, settings: Settings) -> float | None:
    """Monotonic time by which the run must hand its result back to the host."""
    remaining = getattr(context, "get_remaining_time_in_millis", None)
    if remaining is None:
        return None
    return time.monotonic() + remaining() / 1000 - settings.invocation_margin_seconds


def lambda_handler(event: dict[str, Any], context: Any) -> dict[str, Any]:
    settings = get_settings()
    configure_logging(settings.log_level)
    init_xray("orgtree-orchestrator")

    request_id = getattr(context, "aws_request_id", "unknown")
    bind_run_context(request_id=request_id)
    logger.info("lambda_invoked", resumed=bool(event.get("result")))

    return asyncio.run(handle_event(event, settings, invocation_deadline(context, settings)))
