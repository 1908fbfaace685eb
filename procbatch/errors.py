from __future__ import annotations

import signal as _signal


class ProcBatchError(RuntimeError):
    """Base exception for run and batch failures.

    Every failure is normalized into a stable `error_type` string plus a small
    `details` mapping, so callers can branch without string-matching messages.
    """

    def __init__(
        self,
        error_type: str,
        message: str,
        *,
        unit_id: int | str | None = None,
        details: dict[str, str] | None = None,
    ):
        super().__init__(message)
        self.error_type = error_type
        self.message = message
        self.unit_id = unit_id
        self.details = details or {}


class AlreadyRunningError(ProcBatchError):
    """A run was requested while the unit still owns a live process."""

    def __init__(self, *, unit_id: int | str):
        super().__init__(
            "already_running",
            f"Unit {unit_id!r} is already running",
            unit_id=unit_id,
        )


class SpawnFailedError(ProcBatchError):
    """The OS refused or failed to start the process."""

    def __init__(self, *, unit_id: int | str, cause: BaseException):
        super().__init__(
            "spawn_failed",
            f"Unit {unit_id!r} failed to start: {cause}",
            unit_id=unit_id,
            details={"cause": type(cause).__name__, "reason": str(cause)},
        )
        self.cause = cause


class ExecutionFailedError(ProcBatchError):
    """The process ran and terminated abnormally (non-zero code or a signal)."""

    def __init__(self, *, unit_id: int | str, exit_code: int | None = None, signal: int | None = None):
        if signal is not None:
            reason = f"signal: {_signal_name(signal)}"
        else:
            reason = f"code: {exit_code}"
        super().__init__(
            "execution_failed",
            f"Unit {unit_id!r} process closed: {reason}",
            unit_id=unit_id,
            details={
                k: v
                for k, v in {
                    "exit_code": None if exit_code is None else str(exit_code),
                    "signal": None if signal is None else _signal_name(signal),
                }.items()
                if v is not None
            },
        )
        self.exit_code = exit_code
        self.signal = signal


class RunCancelledError(ProcBatchError):
    """The run was terminated (or never started) because its token fired."""

    def __init__(self, *, unit_id: int | str, message: str | None = None, error_type: str = "cancelled"):
        super().__init__(
            error_type,
            message or f"Unit {unit_id!r} was terminated by its cancellation token",
            unit_id=unit_id,
        )


class AlreadyCancelledError(RunCancelledError):
    """The token had already fired before launch; nothing was spawned."""

    def __init__(self, *, unit_id: int | str):
        super().__init__(
            unit_id=unit_id,
            message=f"Unit {unit_id!r} not started: token already fired",
            error_type="already_cancelled",
        )


class NoUnitsToRunError(ProcBatchError):
    def __init__(self) -> None:
        super().__init__("no_units", "Batch has no units to run")


def _signal_name(signum: int) -> str:
    try:
        return _signal.Signals(signum).name
    except ValueError:
        return str(signum)
