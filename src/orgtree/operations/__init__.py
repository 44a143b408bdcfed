"""Asynchronous operation lifecycle: dispatch once, poll until settled."""

from orgtree.operations.dispatcher import OperationDispatcher
from orgtree.operations.poller import CompletionPoller, PollPolicy
from orgtree.operations.state import AsyncOperation, OperationState

__all__ = [
    "AsyncOperation",
    "CompletionPoller",
    "OperationDispatcher",
    "OperationState",
    "PollPolicy",
]
