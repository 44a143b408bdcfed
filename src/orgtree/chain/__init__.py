"""Turns the organization tree into an ordered step list."""

from orgtree.chain.bootstrap import build_bootstrap, plan_organization
from orgtree.chain.builder import DependencyChainBuilder, EmailTemplate
from orgtree.chain.requests import ProvisioningRequest, step_from_request
from orgtree.chain.steps import (
    ActionCall,
    EntityRef,
    ProvisioningStep,
    ResourceFamily,
    StepVerb,
    extract_field,
)

__all__ = [
    "ActionCall",
    "DependencyChainBuilder",
    "EmailTemplate",
    "EntityRef",
    "ProvisioningRequest",
    "ProvisioningStep",
    "ResourceFamily",
    "StepVerb",
    "build_bootstrap",
    "extract_field",
    "plan_organization",
    "step_from_request",
]
