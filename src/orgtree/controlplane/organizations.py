"""AWS Organizations control plane backed by aioboto3."""

from __future__ import annotations

from typing import Any

import aioboto3
import structlog
from botocore.exceptions import BotoCoreError, ClientError

from orgtree.chain.steps import ActionCall, extract_field
from orgtree.controlplane.base import DispatchReceipt, PollResult
from orgtree.core.errors import DispatchError, TransportError, ValidationError

logger = structlog.get_logger()

ACCOUNT_TOKEN = "account"
EMAIL_TOKEN = "email"
SYNC_TOKEN = "sync"

# Parameters passed to the API as-is; everything else on an account becomes a tag.
_ACCOUNT_ARGUMENTS = {"create_account": ("Email", "AccountName"), "tag_resource": ("ResourceId",)}


def _tags(parameters: dict[str, Any]) -> list[dict[str, str]]:
    return [{"Key": key, "Value": str(value)} for key, value in parameters.items()]


def shape_arguments(call: ActionCall) -> dict[str, Any]:
    """Convert step parameters into the keyword arguments of the boto3 call."""
    parameters = dict(call.parameters)
    arguments = _ACCOUNT_ARGUMENTS.get(call.action)
    if arguments is None:
        return parameters
    shaped = {name: parameters[name] for name in arguments if name in parameters}
    if call.action == "tag_resource":
        parameters.pop("ResourceId", None)
    shaped["Tags"] = _tags(parameters)
    return shaped


class OrganizationsControlPlane:
    """Dispatches Organizations, SES, S3 and CloudTrail calls and polls long-running jobs."""

    def __init__(self, *, region: str = "us-east-1", session: aioboto3.Session | None = None) -> None:
        self._region = region
        self._session = session or aioboto3.Session()

    async def dispatch(self, call: ActionCall) -> DispatchReceipt:
        arguments = shape_arguments(call)
        log = logger.bind(service=call.service, action=call.action, region=call.region)
        try:
            async with self._session.client(call.service, region_name=call.region) as client:
                response: dict[str, Any] = await getattr(client, call.action)(**arguments)
        except (ClientError, BotoCoreError) as exc:
            log.error("dispatch_rejected", error=str(exc))
            raise DispatchError(
                f"Failed to {call.action}: {exc}",
                details={"action": call.action},
            ) from exc

        response.pop("ResponseMetadata", None)
        log.info("dispatch_accepted")

        if call.action == "create_account":
            request_id = extract_field(response, "CreateAccountStatus.Id")
            if not request_id:
                raise DispatchError("create_account returned no request id", details=response)
            return DispatchReceipt(f"{ACCOUNT_TOKEN}:{request_id}")
        if call.action == "verify_email_identity":
            return DispatchReceipt(f"{EMAIL_TOKEN}:{call.parameters['EmailAddress']}")
        return DispatchReceipt(f"{SYNC_TOKEN}:{call.action}", result_payload=response)

    async def poll(self, token: str) -> PollResult:
        family, _, identifier = token.partition(":")
        if family not in (ACCOUNT_TOKEN, EMAIL_TOKEN) or not identifier:
            raise ValidationError(f"Unknown resumption token: {token}")
        try:
            if family == ACCOUNT_TOKEN:
                return await self._poll_account(identifier)
            return await self._poll_email(identifier)
        except (ClientError, BotoCoreError) as exc:
            logger.warning("poll_transport_error", token=token, error=str(exc))
            raise TransportError(f"Status query failed for {token}: {exc}") from exc

    async def _poll_account(self, request_id: str) -> PollResult:
        async with self._session.client("organizations", region_name=self._region) as client:
            response = await client.describe_create_account_status(
                CreateAccountRequestId=request_id
            )
        response.pop("ResponseMetadata", None)
        status = response.get("CreateAccountStatus", {})
        state = status.get("State")
        if state == "SUCCEEDED":
            return PollResult.succeeded(response)
        if state == "FAILED":
            return PollResult.failed(status.get("FailureReason", "UNKNOWN"), response)
        return PollResult.pending()

    async def _poll_email(self, address: str) -> PollResult:
        async with self._session.client("ses", region_name=self._region) as client:
            response = await client.get_identity_verification_attributes(Identities=[address])
        attributes = response.get("VerificationAttributes", {}).get(address, {})
        status = attributes.get("VerificationStatus")
        payload = {"EmailAddress": address, "VerificationStatus": status}
        if status == "Success":
            return PollResult.succeeded(payload)
        if status == "Failed":
            return PollResult.failed(f"Verification of {address} failed", payload)
        return PollResult.pending()

    async def caller_account_id(self) -> str:
        """Account number of the credentials in use (the management account)."""
        async with self._session.client("sts", region_name=self._region) as client:
            identity = await client.get_caller_identity()
        return identity["Account"]
