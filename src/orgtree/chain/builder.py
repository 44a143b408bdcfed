"""
Dependency chain builder.

Walks the declarative tree of organizational units and accounts and emits a
strict total order of provisioning steps. The control plane rejects or
corrupts concurrent mutating calls against the same organization, even for
siblings, so every step names exactly one predecessor: the step emitted
immediately before it.

Order for each unit:
    1. the unit itself
    2. its accounts, in input order
    3. its nested units, recursively, in input order
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Sequence

import structlog

from orgtree.chain.steps import (
    ActionCall,
    EntityRef,
    ParameterValue,
    ProvisioningStep,
    ResourceFamily,
    StepVerb,
)
from orgtree.core.errors import ValidationError
from orgtree.domain.entities import Account, OrganizationalUnit
from orgtree.domain.specs import AccountSpec, AccountType, OUSpec

logger = structlog.get_logger()

ORGANIZATIONS = "organizations"
DEFAULT_REGION = "us-east-1"

CICD_DELEGATED_PRINCIPAL = "ssm.amazonaws.com"
# The default delegated administrator quota is 3, so non-CICD accounts use another principal.
STAGE_DELEGATED_PRINCIPAL = "config-multiaccountsetup.amazonaws.com"


@dataclass(frozen=True)
class EmailTemplate:
    """Builds account emails as ``{prefix}+{accountName}-{accountNumber}@{domain}``."""

    prefix: str
    domain: str
    account_number: str

    @classmethod
    def from_root_email(cls, email: str, account_number: str) -> EmailTemplate:
        prefix, sep, domain = email.partition("@")
        if not sep or not prefix or not domain:
            raise ValidationError(f"Invalid root email: {email}")
        return cls(prefix=prefix, domain=domain, account_number=account_number)

    def render(self, account_name: str) -> str:
        return f"{self.prefix}+{account_name}-{self.account_number}@{self.domain}"


def unit_step_id(key: str) -> str:
    return f"ou:{key}"


def account_step_id(key: str) -> str:
    return f"account:{key}"


class DependencyChainBuilder:
    """Turns a tree of OUSpec into a linked list of ProvisioningStep."""

    def __init__(
        self,
        *,
        email_template: EmailTemplate | None = None,
        region: str = DEFAULT_REGION,
        prior_ids: Mapping[str, str] | None = None,
    ) -> None:
        self._email_template = email_template
        self._region = region
        self._prior_ids = dict(prior_ids or {})

    def build(
        self,
        tree: Sequence[OUSpec],
        root_parent_id: str | EntityRef,
        predecessor: str | None = None,
    ) -> list[ProvisioningStep]:
        steps: list[ProvisioningStep] = []
        seen: set[str] = set()
        for unit_spec in tree:
            self._walk(unit_spec, root_parent_id, root_parent_id, "", steps, seen, predecessor)
            predecessor = steps[-1].step_id
        logger.debug("chain_built", steps=len(steps))
        return steps

    def _walk(
        self,
        spec: OUSpec,
        parent: str | EntityRef,
        root_parent: str | EntityRef,
        path: str,
        steps: list[ProvisioningStep],
        seen: set[str],
        predecessor: str | None,
    ) -> OrganizationalUnit:
        key = f"{path}/{spec.name}" if path else spec.name
        unit = OrganizationalUnit(spec.name, key, parent=parent)
        unit_step = self._unit_step(unit, predecessor)
        self._append(unit_step, steps, seen)

        unit_ref = EntityRef(unit_step.step_id)
        for account_spec in spec.accounts:
            account = self._account(account_spec, key, unit_ref)
            unit.accounts.append(account)
            self._append(self._account_step(account, root_parent, steps[-1].step_id), steps, seen)

        for nested_spec in spec.nested_ou:
            nested = self._walk(
                nested_spec, unit_ref, root_parent, key, steps, seen, steps[-1].step_id
            )
            unit.units.append(nested)
        return unit

    @staticmethod
    def _append(step: ProvisioningStep, steps: list[ProvisioningStep], seen: set[str]) -> None:
        if step.step_id in seen:
            raise ValidationError(
                f"Duplicate {step.target.kind} {step.target.key} in organization tree",
                details={"step_id": step.step_id},
            )
        seen.add(step.step_id)
        steps.append(step)

    def _account(self, spec: AccountSpec, unit_key: str, unit_ref: EntityRef) -> Account:
        if spec.email:
            email = spec.email
        elif self._email_template is not None:
            email = self._email_template.render(spec.name)
        else:
            raise ValidationError(
                f"master account email must be provided or an account email for account {spec.name}",
                details={"account": spec.name},
            )
        return Account(
            spec.name,
            f"{unit_key}/{spec.name}",
            email=email,
            parent=unit_ref,
            type=spec.type,
            stage_name=spec.stage_name,
            stage_order=spec.stage_order,
            hosted_services=list(spec.hosted_services or []),
        )

    def _unit_step(self, unit: OrganizationalUnit, predecessor: str | None) -> ProvisioningStep:
        step_id = unit_step_id(unit.key)
        prior = self._prior_ids.get(step_id)
        if prior is None:
            verb = StepVerb.create
            call = self._call(
                "create_organizational_unit", {"Name": unit.name, "ParentId": unit.parent}
            )
        else:
            verb = StepVerb.update
            call = self._call(
                "update_organizational_unit", {"OrganizationalUnitId": prior, "Name": unit.name}
            )
        return ProvisioningStep(
            step_id=step_id,
            verb=verb,
            target=unit,
            family=ResourceFamily.organizational_unit,
            call=call,
            id_path="OrganizationalUnit.Id",
            predecessor=predecessor,
            prior_physical_id=prior,
        )

    def _account_step(
        self, account: Account, root_parent: str | EntityRef, predecessor: str
    ) -> ProvisioningStep:
        step_id = account_step_id(account.key)
        prior = self._prior_ids.get(step_id)
        properties = _account_properties(account)

        if prior is not None:
            return ProvisioningStep(
                step_id=step_id,
                verb=StepVerb.update,
                target=account,
                family=ResourceFamily.account,
                call=self._call("tag_resource", {"ResourceId": prior, **properties}),
                predecessor=predecessor,
                prior_physical_id=prior,
            )

        self_ref = EntityRef(step_id)
        principal = (
            CICD_DELEGATED_PRINCIPAL if account.type == AccountType.CICD else STAGE_DELEGATED_PRINCIPAL
        )
        follow_ups = (
            self._call(
                "move_account",
                {
                    "AccountId": self_ref,
                    "SourceParentId": root_parent,
                    "DestinationParentId": account.parent,  # type: ignore[dict-item]
                },
            ),
            self._call(
                "register_delegated_administrator",
                {"AccountId": self_ref, "ServicePrincipal": principal},
            ),
        )
        return ProvisioningStep(
            step_id=step_id,
            verb=StepVerb.create,
            target=account,
            family=ResourceFamily.account,
            call=self._call("create_account", properties),
            id_path="CreateAccountStatus.AccountId",
            predecessor=predecessor,
            follow_ups=follow_ups,
        )

    def _call(self, action: str, parameters: dict[str, ParameterValue]) -> ActionCall:
        return ActionCall(ORGANIZATIONS, action, self._region, parameters)


def _account_properties(account: Account) -> dict[str, ParameterValue]:
    properties: dict[str, ParameterValue] = {
        "Email": account.email,
        "AccountName": account.name,
    }
    if account.type is not None:
        properties["AccountType"] = account.type.value
    if account.stage_name is not None:
        properties["StageName"] = account.stage_name
    if account.stage_order is not None:
        properties["StageOrder"] = str(account.stage_order)
    if account.hosted_services:
        properties["HostedServices"] = ":".join(account.hosted_services)
    return properties
