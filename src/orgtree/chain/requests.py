"""Single provisioning requests from the declarative infrastructure layer."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

from orgtree.chain.builder import ORGANIZATIONS
from orgtree.chain.steps import ActionCall, ProvisioningStep, ResourceFamily, StepVerb
from orgtree.core.errors import ValidationError
from orgtree.domain.entities import Account, Entity, OrganizationalUnit

ENTITY_KINDS = ("Unit", "Account")

_REQUIRED = {
    "Unit": ("Name", "ParentId"),
    "Account": ("Email", "AccountName"),
}


@dataclass(frozen=True)
class ProvisioningRequest:
    request_kind: StepVerb
    entity_kind: str
    parameters: dict[str, str] = field(default_factory=dict)
    prior_physical_id: str | None = None

    @classmethod
    def from_event(cls, event: Mapping[str, Any]) -> ProvisioningRequest:
        """Parse ``{requestKind, entityKind, parameters, priorPhysicalId?}``."""
        try:
            kind = StepVerb(event["requestKind"])
        except (KeyError, ValueError) as exc:
            raise ValidationError(f"Unsupported requestKind: {event.get('requestKind')}") from exc
        entity_kind = event.get("entityKind")
        if entity_kind not in ENTITY_KINDS:
            raise ValidationError(f"Unsupported entityKind: {entity_kind}")
        parameters = {str(k): str(v) for k, v in (event.get("parameters") or {}).items()}
        return cls(kind, entity_kind, parameters, event.get("priorPhysicalId"))


def step_from_request(request: ProvisioningRequest, *, region: str) -> ProvisioningStep:
    """Translate a request into one step. Deletes without a physical id become no-ops."""
    params = dict(request.parameters)
    prior = request.prior_physical_id

    if request.request_kind is not StepVerb.delete:
        missing = [name for name in _REQUIRED[request.entity_kind] if not params.get(name)]
        if missing:
            raise ValidationError(
                f"Missing required parameters for {request.entity_kind}: {', '.join(missing)}",
                details={"missing": missing},
            )
        if request.request_kind is StepVerb.update and prior is None:
            raise ValidationError(f"Update of {request.entity_kind} requires priorPhysicalId")

    if request.entity_kind == "Unit":
        return _unit_step(request.request_kind, params, prior, region)
    return _account_step(request.request_kind, params, prior, region)


def _unit_step(
    verb: StepVerb, params: dict[str, str], prior: str | None, region: str
) -> ProvisioningStep:
    name = params.get("Name", prior or "unit")
    target: Entity = OrganizationalUnit(name, name, parent=params.get("ParentId"))
    if verb is StepVerb.create:
        call = ActionCall(
            ORGANIZATIONS,
            "create_organizational_unit",
            region,
            {"Name": params["Name"], "ParentId": params["ParentId"]},
        )
    elif verb is StepVerb.update:
        call = ActionCall(
            ORGANIZATIONS,
            "update_organizational_unit",
            region,
            {"OrganizationalUnitId": prior, "Name": params["Name"]},  # type: ignore[dict-item]
        )
    else:
        call = ActionCall(
            ORGANIZATIONS,
            "delete_organizational_unit",
            region,
            {"OrganizationalUnitId": prior} if prior else {},
        )
    return ProvisioningStep(
        step_id=f"ou:{name}",
        verb=verb,
        target=target,
        family=ResourceFamily.organizational_unit,
        call=call,
        id_path=None if verb is StepVerb.delete else "OrganizationalUnit.Id",
        prior_physical_id=prior,
    )


def _account_step(
    verb: StepVerb, params: dict[str, str], prior: str | None, region: str
) -> ProvisioningStep:
    name = params.get("AccountName", prior or "account")
    target = Account(name, name, email=params.get("Email", ""))
    if verb is StepVerb.delete:
        if prior is not None:
            raise ValidationError("DeleteAccount is not a supported operation", details={"account": prior})
        call = ActionCall(ORGANIZATIONS, "close_account", region)
        id_path = None
    elif verb is StepVerb.update:
        call = ActionCall(ORGANIZATIONS, "tag_resource", region, {"ResourceId": prior, **params})  # type: ignore[dict-item]
        id_path = None
    else:
        call = ActionCall(ORGANIZATIONS, "create_account", region, dict(params))
        id_path = "CreateAccountStatus.AccountId"
    return ProvisioningStep(
        step_id=f"account:{name}",
        verb=verb,
        target=target,
        family=ResourceFamily.account,
        call=call,
        id_path=id_path,
        prior_physical_id=prior,
    )
