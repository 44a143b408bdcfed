from orgtree.controlplane.base import ControlPlane, DispatchReceipt, PollResult
from orgtree.controlplane.memory import InMemoryControlPlane
from orgtree.controlplane.organizations import OrganizationsControlPlane

__all__ = [
    "ControlPlane",
    "DispatchReceipt",
    "InMemoryControlPlane",
    "OrganizationsControlPlane",
    "PollResult",
]
