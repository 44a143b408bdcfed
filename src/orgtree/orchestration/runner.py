from __future__ import annotations

import asyncio
from typing import Awaitable, Callable

from orgtree.config import Settings
from orgtree.controlplane.base import ControlPlane
from orgtree.operations.dispatcher import OperationDispatcher
from orgtree.operations.poller import CompletionPoller
from orgtree.orchestration.orchestrator import Checkpoint, TreeOrchestrator


def build_orchestrator(
    control_plane: ControlPlane,
    settings: Settings,
    *,
    checkpoint: Checkpoint | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> TreeOrchestrator:
    """Wire one dispatcher and one poller, shared by every step of the run."""
    dispatcher = OperationDispatcher(control_plane)
    poller = CompletionPoller(dispatcher, sleep=sleep)
    return TreeOrchestrator(
        dispatcher,
        poller,
        settings.poll_policies(),
        checkpoint=checkpoint,
    )
