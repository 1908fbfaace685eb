"""Cancellable, idempotent external-process runs and concurrent batches."""

from __future__ import annotations

from procbatch.cancel import CancellationToken
from procbatch.coordinator import BatchCoordinator
from procbatch.errors import (
    AlreadyCancelledError,
    AlreadyRunningError,
    ExecutionFailedError,
    NoUnitsToRunError,
    ProcBatchError,
    RunCancelledError,
    SpawnFailedError,
)
from procbatch.outcome import RunOutcome, RunState
from procbatch.unit import MemoizedUnit, RunnableUnit

__all__ = [
    "AlreadyCancelledError",
    "AlreadyRunningError",
    "BatchCoordinator",
    "CancellationToken",
    "ExecutionFailedError",
    "MemoizedUnit",
    "NoUnitsToRunError",
    "ProcBatchError",
    "RunCancelledError",
    "RunOutcome",
    "RunState",
    "RunnableUnit",
    "SpawnFailedError",
    "__version__",
]

__version__ = "0.1.0"
