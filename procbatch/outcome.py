from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any

from procbatch.errors import ExecutionFailedError, ProcBatchError, RunCancelledError


class RunState(str, enum.Enum):
    IDLE = "idle"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def terminal(self) -> bool:
        return self in {RunState.SUCCEEDED, RunState.FAILED, RunState.CANCELLED}


@dataclass(frozen=True, slots=True)
class RunOutcome:
    """Terminal result of one run attempt.

    `error` is set for every state other than SUCCEEDED; `exit_code` and
    `signal` are only known when a process actually terminated.
    """

    unit_id: int | str
    state: RunState
    exit_code: int | None = None
    signal: int | None = None
    error: ProcBatchError | None = None
    duration_ms: int = 0

    @property
    def ok(self) -> bool:
        return self.state is RunState.SUCCEEDED

    @classmethod
    def from_error(cls, unit_id: int | str, error: ProcBatchError, *, duration_ms: int = 0) -> "RunOutcome":
        state = RunState.CANCELLED if isinstance(error, RunCancelledError) else RunState.FAILED
        exit_code = signal = None
        if isinstance(error, ExecutionFailedError):
            exit_code, signal = error.exit_code, error.signal
        return cls(
            unit_id=unit_id,
            state=state,
            exit_code=exit_code,
            signal=signal,
            error=error,
            duration_ms=duration_ms,
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "unit_id": self.unit_id,
            "state": self.state.value,
            "duration_ms": self.duration_ms,
        }
        if self.exit_code is not None:
            out["exit_code"] = self.exit_code
        if self.signal is not None:
            out["signal"] = self.signal
        if self.error is not None:
            out["error"] = {"type": self.error.error_type, "message": self.error.message, **self.error.details}
        return out
