from __future__ import annotations

import itertools
from typing import Any

from orgtree.chain.steps import ActionCall
from orgtree.controlplane.base import DispatchReceipt, PollResult
from orgtree.core.errors import DispatchError, ValidationError


class InMemoryControlPlane:
    """Simulated control plane for local runs.

    Long-running jobs (``create_account``, ``verify_email_identity``) stay
    pending for ``pending_polls`` status queries, then succeed unless the
    action is listed in ``failures``. Actions listed in ``rejections`` are
    refused at dispatch.
    """

    def __init__(
        self,
        *,
        pending_polls: int = 0,
        failures: dict[str, str] | None = None,
        rejections: dict[str, str] | None = None,
        account_id: str = "123456789012",
    ) -> None:
        self.account_id = account_id
        self.pending_polls = pending_polls
        self.failures = dict(failures or {})
        self.rejections = dict(rejections or {})
        self.calls: list[ActionCall] = []
        self.polls: list[str] = []
        self._ids = itertools.count(1)
        self._jobs: dict[str, dict[str, Any]] = {}
        self._organization_id: str | None = None

    async def dispatch(self, call: ActionCall) -> DispatchReceipt:
        self.calls.append(call)
        if call.action in self.rejections:
            raise DispatchError(self.rejections[call.action], details={"action": call.action})

        n = next(self._ids)
        if call.action == "create_account":
            token = f"account:car-{n:08d}"
            self._jobs[token] = {
                "action": call.action,
                "remaining": self.pending_polls,
                "payload": {
                    "CreateAccountStatus": {
                        "Id": token.split(":", 1)[1],
                        "AccountName": call.parameters.get("AccountName"),
                        "AccountId": f"{100000000000 + n}",
                        "State": "SUCCEEDED",
                    }
                },
            }
            return DispatchReceipt(token)
        if call.action == "verify_email_identity":
            address = str(call.parameters["EmailAddress"])
            token = f"email:{address}"
            self._jobs[token] = {
                "action": call.action,
                "remaining": self.pending_polls,
                "payload": {"EmailAddress": address, "VerificationStatus": "Success"},
            }
            return DispatchReceipt(token)
        return DispatchReceipt(f"sync:{call.action}", result_payload=self._respond(call, n))

    async def poll(self, token: str) -> PollResult:
        self.polls.append(token)
        job = self._jobs.get(token)
        if job is None:
            raise ValidationError(f"Unknown resumption token: {token}")
        if job["remaining"] > 0:
            job["remaining"] -= 1
            return PollResult.pending()
        if job["action"] in self.failures:
            return PollResult.failed(self.failures[job["action"]])
        return PollResult.succeeded(job["payload"])

    async def caller_account_id(self) -> str:
        return self.account_id

    def _respond(self, call: ActionCall, n: int) -> dict[str, Any]:
        params = call.parameters
        if call.action in ("create_organization", "describe_organization"):
            if self._organization_id is None:
                self._organization_id = f"o-{n:010d}"
            return {"Organization": {"Id": self._organization_id, "FeatureSet": "ALL"}}
        if call.action == "list_roots":
            return {"Roots": [{"Id": "r-0001", "Name": "Root"}]}
        if call.action == "create_organizational_unit":
            return {"OrganizationalUnit": {"Id": f"ou-0001-{n:08d}", "Name": params.get("Name")}}
        if call.action == "update_organizational_unit":
            return {
                "OrganizationalUnit": {
                    "Id": params.get("OrganizationalUnitId"),
                    "Name": params.get("Name"),
                }
            }
        if call.action == "create_bucket":
            return {"Location": f"/{params.get('Bucket')}"}
        if call.action in ("create_trail", "get_trail"):
            name = params.get("Name")
            trail = {
                "Name": name,
                "TrailARN": f"arn:aws:cloudtrail:{call.region}:{self.account_id}:trail/{name}",
                "IsOrganizationTrail": True,
            }
            return trail if call.action == "create_trail" else {"Trail": trail}
        return {}
