from orgtree.domain.entities import (
    Account,
    EmailIdentity,
    Entity,
    EntityKind,
    Organization,
    OrganizationalUnit,
    OrganizationRoot,
    OrganizationTrail,
    TrailBucket,
)
from orgtree.domain.specs import (
    AccountSpec,
    AccountType,
    OrganizationSpec,
    OUSpec,
    load_organization_spec,
    parse_organization_spec,
)

__all__ = [
    "Account",
    "AccountSpec",
    "AccountType",
    "EmailIdentity",
    "Entity",
    "EntityKind",
    "Organization",
    "OrganizationalUnit",
    "OrganizationRoot",
    "OrganizationSpec",
    "OrganizationTrail",
    "TrailBucket",
    "OUSpec",
    "load_organization_spec",
    "parse_organization_spec",
]
