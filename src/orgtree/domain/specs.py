"""Declarative organization tree, as authored by operators."""

from __future__ import annotations

import json
from enum import StrEnum
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field

from orgtree.core.errors import ValidationError


class AccountType(StrEnum):
    """Role tag used downstream to sequence pipeline stages."""

    CICD = "CICD"
    STAGE = "STAGE"
    PLAYGROUND = "PLAYGROUND"


class _TreeModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="forbid")


class AccountSpec(_TreeModel):
    name: str = Field(min_length=1)
    email: str | None = None
    type: AccountType | None = None
    stage_name: str | None = Field(default=None, alias="stageName")
    stage_order: int | None = Field(default=None, alias="stageOrder")
    hosted_services: list[str] | None = Field(default=None, alias="hostedServices")


class OUSpec(_TreeModel):
    name: str = Field(min_length=1)
    accounts: list[AccountSpec] = Field(default_factory=list)
    nested_ou: list[OUSpec] = Field(default_factory=list, alias="nestedOU")


class OrganizationSpec(_TreeModel):
    email: str | None = None
    nested_ou: list[OUSpec] = Field(default_factory=list, alias="nestedOU")
    force_email_verification: bool = Field(default=False, alias="forceEmailVerification")
    management_account_id: str | None = Field(default=None, alias="managementAccountId")


def parse_organization_spec(data: dict[str, Any]) -> OrganizationSpec:
    """Validate a raw mapping into an OrganizationSpec."""
    try:
        return OrganizationSpec.model_validate(data)
    except ValueError as exc:
        raise ValidationError(f"Invalid organization tree: {exc}") from exc


def load_organization_spec(path: Path) -> OrganizationSpec:
    """Load an organization tree from a YAML or JSON file."""
    if not path.exists():
        raise ValidationError(f"Organization tree not found: {path}")
    text = path.read_text()
    if path.suffix == ".json":
        data = json.loads(text)
    else:
        data = yaml.safe_load(text)
    if not isinstance(data, dict):
        raise ValidationError(f"Organization tree must be a mapping: {path}")
    return parse_organization_spec(data)
