"""Provisioning steps and the action calls they carry."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Mapping, Union

from orgtree.core.errors import ValidationError
from orgtree.domain.entities import Entity


class StepVerb(StrEnum):
    create = "Create"
    update = "Update"
    delete = "Delete"


class ResourceFamily(StrEnum):
    """Groups resources that share a poll interval and attempt budget."""

    organization = "organization"
    organizational_unit = "organizational_unit"
    account = "account"
    email_identity = "email_identity"


@dataclass(frozen=True)
class EntityRef:
    """Stands in for the id produced by another step until that step completes.

    ``template`` embeds the id in a larger value; every ``{id}`` in it is
    replaced by the referenced id.
    """

    step_id: str
    template: str = "{id}"

    def render(self, entity_id: str) -> str:
        return self.template.replace("{id}", entity_id)

    def __str__(self) -> str:
        return f"ref({self.step_id})"


ParameterValue = Union[str, int, bool, list[str], dict[str, Any], EntityRef]


@dataclass(frozen=True)
class ActionCall:
    """An opaque control-plane invocation: service, action name, region, parameters."""

    service: str
    action: str
    region: str
    parameters: dict[str, ParameterValue] = field(default_factory=dict)

    def references(self) -> list[EntityRef]:
        return [value for value in self.parameters.values() if isinstance(value, EntityRef)]

    def resolve(self, ids: Mapping[str, str]) -> ActionCall:
        """Return a copy with every EntityRef replaced by the referenced id."""
        resolved: dict[str, ParameterValue] = {}
        for name, value in self.parameters.items():
            if isinstance(value, EntityRef):
                if value.step_id not in ids:
                    raise ValidationError(
                        f"Parameter {name} of {self.action} references {value.step_id}, "
                        "which has not been provisioned",
                        details={"action": self.action, "parameter": name},
                    )
                value = value.render(ids[value.step_id])
            resolved[name] = value
        return dataclasses.replace(self, parameters=resolved)


@dataclass(frozen=True)
class ProvisioningStep:
    """One unit of work in the chain. `predecessor` must complete first."""

    step_id: str
    verb: StepVerb
    target: Entity
    family: ResourceFamily
    call: ActionCall
    id_path: str | None = None
    predecessor: str | None = None
    prior_physical_id: str | None = None
    follow_ups: tuple[ActionCall, ...] = ()

    def references(self) -> list[EntityRef]:
        return self.call.references()

    def resolve(self, ids: Mapping[str, str]) -> ProvisioningStep:
        return dataclasses.replace(self, call=self.call.resolve(ids))

    @property
    def is_resolved(self) -> bool:
        return not self.references()


def extract_field(payload: Mapping[str, Any] | None, path: str) -> Any:
    """Read a dotted path such as ``Roots.0.Id`` from a response payload."""
    current: Any = payload
    for part in path.split("."):
        if current is None:
            return None
        if isinstance(current, list):
            try:
                current = current[int(part)]
            except (ValueError, IndexError):
                return None
        elif isinstance(current, Mapping):
            current = current.get(part)
        else:
            return None
    return current
