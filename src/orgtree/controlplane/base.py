from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol

from orgtree.chain.steps import ActionCall


@dataclass(frozen=True)
class DispatchReceipt:
    """Answer to a dispatch call.

    Long-running jobs return only a resumption token. Calls the control plane
    serves synchronously also carry their response as ``result_payload``.
    """

    resumption_token: str
    result_payload: dict[str, Any] | None = None

    @property
    def completed(self) -> bool:
        return self.result_payload is not None


@dataclass(frozen=True)
class PollResult:
    terminal: bool
    success: bool | None = None
    result_payload: dict[str, Any] = field(default_factory=dict)
    error_message: str | None = None

    @classmethod
    def pending(cls) -> PollResult:
        return cls(terminal=False)

    @classmethod
    def succeeded(cls, payload: dict[str, Any]) -> PollResult:
        return cls(terminal=True, success=True, result_payload=payload)

    @classmethod
    def failed(cls, message: str, payload: dict[str, Any] | None = None) -> PollResult:
        return cls(terminal=True, success=False, result_payload=payload or {}, error_message=message)


class ControlPlane(Protocol):
    """Contract for the external API that provisions organization resources."""

    async def dispatch(self, call: ActionCall) -> DispatchReceipt:
        """Send a mutating call. Raises DispatchError when rejected."""
        ...

    async def poll(self, token: str) -> PollResult:
        """Query job status. Read-only. Raises TransportError when unreachable."""
        ...

    async def caller_account_id(self) -> str:
        """Account number of the credentials in use."""
        ...
