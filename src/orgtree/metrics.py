from __future__ import annotations

import time
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

import aioboto3
import structlog

from orgtree.orchestration.results import ProvisioningResult, StepStatus

logger = structlog.get_logger()


class MetricsCollector:
    """CloudWatch metrics for provisioning runs. Buffered, flushed on close."""

    def __init__(self, namespace: str = "OrgTree", region: str = "us-east-1") -> None:
        self.namespace = namespace
        self.region = region
        self._buffer: list[dict[str, Any]] = []

    @asynccontextmanager
    async def timer(self, metric_name: str, **dimensions: str) -> AsyncIterator[None]:
        start = time.time()
        try:
            yield
        finally:
            await self.emit(metric_name, time.time() - start, unit="Seconds", **dimensions)

    async def emit(
        self,
        metric_name: str,
        value: float,
        *,
        unit: str = "Count",
        **dimensions: str,
    ) -> None:
        self._buffer.append(
            {
                "MetricName": metric_name,
                "Value": value,
                "Unit": unit,
                "Dimensions": [{"Name": k, "Value": v} for k, v in dimensions.items()],
                "Timestamp": time.time(),
            }
        )
        # PutMetricData accepts at most 20 datums per call
        if len(self._buffer) >= 20:
            await self._flush()

    async def record_result(self, result: ProvisioningResult) -> None:
        """One datum per step status (complete, failed, skipped)."""
        for outcome in result.outcomes.values():
            if outcome.status is StepStatus.complete:
                await self.emit("StepCompleted", 1, EntityKind=outcome.entity_kind)
            elif outcome.status is StepStatus.failed:
                await self.emit(
                    "StepFailed",
                    1,
                    EntityKind=outcome.entity_kind,
                    ErrorKind=outcome.error_kind or "unknown",
                )
            elif outcome.status is StepStatus.skipped:
                await self.emit("StepSkipped", 1, EntityKind=outcome.entity_kind)

    async def _flush(self) -> None:
        if not self._buffer:
            return
        # A failed batch is dropped, never re-sent with the next one
        batch, self._buffer = self._buffer, []
        try:
            session = aioboto3.Session(region_name=self.region)
            async with session.client("cloudwatch") as client:
                await client.put_metric_data(Namespace=self.namespace, MetricData=batch)
        except Exception as exc:
            logger.error("metrics_flush_failed", error=str(exc), dropped=len(batch))

    async def close(self) -> None:
        await self._flush()
