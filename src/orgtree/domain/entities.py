"""Entities provisioned by a run. Ids appear only once their step completes."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING

from orgtree.core.errors import ValidationError
from orgtree.domain.specs import AccountType

if TYPE_CHECKING:
    from orgtree.chain.steps import EntityRef


class EntityKind(StrEnum):
    organization = "organization"
    root = "root"
    email_identity = "email_identity"
    trail_bucket = "trail_bucket"
    trail = "trail"
    organizational_unit = "organizational_unit"
    account = "account"


@dataclass
class Entity:
    name: str
    key: str
    id: str | None = field(default=None, kw_only=True)

    kind = EntityKind.organization

    def assign_id(self, value: str) -> None:
        """Set the physical id. Ids never change once assigned."""
        if self.id is not None and self.id != value:
            raise ValidationError(
                f"{self.kind} {self.key} already has id {self.id}",
                details={"new_id": value},
            )
        self.id = value


@dataclass
class Organization(Entity):
    kind = EntityKind.organization


@dataclass
class OrganizationRoot(Entity):
    kind = EntityKind.root


@dataclass
class EmailIdentity(Entity):
    kind = EntityKind.email_identity


@dataclass
class TrailBucket(Entity):
    kind = EntityKind.trail_bucket


@dataclass
class OrganizationTrail(Entity):
    kind = EntityKind.trail


@dataclass
class Account(Entity):
    kind = EntityKind.account

    email: str = field(default="", kw_only=True)
    parent: str | EntityRef | None = field(default=None, kw_only=True)
    type: AccountType | None = field(default=None, kw_only=True)
    stage_name: str | None = field(default=None, kw_only=True)
    stage_order: int | None = field(default=None, kw_only=True)
    hosted_services: list[str] = field(default_factory=list, kw_only=True)


@dataclass
class OrganizationalUnit(Entity):
    kind = EntityKind.organizational_unit

    parent: str | EntityRef | None = field(default=None, kw_only=True)
    accounts: list[Account] = field(default_factory=list, kw_only=True)
    units: list[OrganizationalUnit] = field(default_factory=list, kw_only=True)
