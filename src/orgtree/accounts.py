"""Publishes account details to SSM Parameter Store for downstream pipelines."""

from __future__ import annotations

import json
from typing import Any, Sequence

import aioboto3
import structlog
from botocore.exceptions import BotoCoreError, ClientError

from orgtree.chain.steps import EntityRef, ProvisioningStep
from orgtree.core.errors import DispatchError
from orgtree.domain.entities import Account
from orgtree.orchestration.results import ProvisioningResult, StepStatus

logger = structlog.get_logger()


def account_details(account: Account, ids: dict[str, str]) -> dict[str, Any]:
    parent = account.parent
    if isinstance(parent, EntityRef):
        parent = ids.get(parent.step_id)
    details: dict[str, Any] = {
        "name": account.name,
        "email": account.email,
        "type": account.type.value if account.type else None,
        "stageName": account.stage_name,
        "stageOrder": account.stage_order,
        "hostedServices": account.hosted_services or None,
        "parentOrganizationalUnitId": parent,
        "id": account.id,
    }
    return {key: value for key, value in details.items() if value is not None}


class AccountDetailsPublisher:
    """Writes ``{prefix}/{unit path}/{account name}`` for every completed account step."""

    def __init__(
        self,
        *,
        region: str,
        prefix: str = "/accounts",
        session: aioboto3.Session | None = None,
    ) -> None:
        self._region = region
        self._prefix = prefix.rstrip("/")
        self._session = session or aioboto3.Session()

    async def publish(
        self, steps: Sequence[ProvisioningStep], result: ProvisioningResult
    ) -> list[str]:
        ids = result.entity_ids()
        accounts = [
            step.target
            for step in steps
            if isinstance(step.target, Account)
            and (outcome := result.get(step.step_id)) is not None
            and outcome.status is StepStatus.complete
            and step.target.id is not None
        ]
        if not accounts:
            return []

        published = []
        try:
            async with self._session.client("ssm", region_name=self._region) as client:
                for account in accounts:
                    name = f"{self._prefix}/{account.key}"
                    await client.put_parameter(
                        Name=name,
                        Description=f"Details of {account.name}",
                        Value=json.dumps(account_details(account, ids)),
                        Type="String",
                        Overwrite=True,
                    )
                    published.append(name)
        except (ClientError, BotoCoreError) as exc:
            logger.error("account_details_publish_failed", error=str(exc))
            raise DispatchError(f"Failed to publish account details: {exc}") from exc

        logger.info("account_details_published", count=len(published))
        return published
