"""Runnable unit: one external command with cancellable, idempotent runs.

A unit owns at most one live process. Each run spawns the command, then races
two observers (process termination and token firing); whichever completes
first decides the outcome. Teardown of a launch is scoped, so every exit path
kills/reaps the process and detaches the observers exactly once.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from typing import AsyncIterator, Sequence

from procbatch.cancel import CancellationToken
from procbatch.core.clock import elapsed_ms, monotonic_ms
from procbatch.errors import (
    AlreadyCancelledError,
    AlreadyRunningError,
    ExecutionFailedError,
    ProcBatchError,
    RunCancelledError,
    SpawnFailedError,
)
from procbatch.outcome import RunOutcome, RunState
from procbatch.process import Command, ProcessHandle, ProcessLauncher, SubprocessLauncher, describe_command


logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class _MemoEntry:
    token: CancellationToken | None
    outcome: RunOutcome


class _Launch:
    """A spawned process plus the observers watching it."""

    def __init__(self, handle: ProcessHandle) -> None:
        self.handle = handle
        self.exit_status: int | None = None
        self._observers: list[asyncio.Future] = []
        self._closed = False

    async def wait_first(self, token: CancellationToken | None) -> int | None:
        """Wait for termination or token firing.

        Returns the exit status, or None if the token won (the process is then
        killed and reaped, and its status is ignored).
        """

        exit_task = asyncio.ensure_future(self.handle.wait())
        self._observers.append(exit_task)
        if token is not None:
            self._observers.append(asyncio.ensure_future(token.wait()))

        await asyncio.wait(self._observers, return_when=asyncio.FIRST_COMPLETED)
        if exit_task.done():
            self.exit_status = exit_task.result()
            return self.exit_status

        self.handle.kill()
        self.exit_status = await exit_task
        return None

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for fut in self._observers:
            if not fut.done():
                fut.cancel()
        self._observers.clear()
        if self.exit_status is None:
            self.handle.kill()
            self.exit_status = await self.handle.wait()


class RunnableUnit:
    """Wrapper around one external command.

    Args:
        unit_id: Opaque identifier (not required to be unique in a batch).
        command: A shell command line, or an argv sequence executed without a shell.
        launcher: Process-execution boundary; defaults to asyncio subprocesses.
    """

    def __init__(
        self,
        unit_id: int | str,
        command: Command,
        *,
        launcher: ProcessLauncher | None = None,
    ) -> None:
        self._unit_id = unit_id
        self._command: str | tuple[str, ...] = command if isinstance(command, str) else tuple(command)
        self._launcher: ProcessLauncher = launcher or SubprocessLauncher()

        self._state = RunState.IDLE
        self._busy = False
        self._launch: _Launch | None = None
        self._memo: _MemoEntry | None = None
        self._last_outcome: RunOutcome | None = None

    @property
    def unit_id(self) -> int | str:
        return self._unit_id

    @property
    def command(self) -> str | Sequence[str]:
        return self._command

    @property
    def state(self) -> RunState:
        return self._state

    @property
    def running(self) -> bool:
        return self._busy

    @property
    def pid(self) -> int | None:
        launch = self._launch
        return launch.handle.pid if launch is not None else None

    @property
    def last_outcome(self) -> RunOutcome | None:
        return self._last_outcome

    async def run(self, token: CancellationToken | None = None) -> RunOutcome:
        """Run the command once and return its outcome.

        Raises:
            AlreadyCancelledError: `token` had fired before launch (nothing spawned).
            AlreadyRunningError: another run of this unit still owns a live process.
            SpawnFailedError: the command could not be started (OS refusal, NUL byte, bad argv).
            ExecutionFailedError: non-zero exit status or death by signal.
            RunCancelledError: `token` fired while the process was live.
        """

        # No suspension point between these checks and reserving the slot.
        if token is not None and token.fired:
            logger.info("unit_not_started", extra={"unit_id": self._unit_id, "reason": token.reason})
            raise AlreadyCancelledError(unit_id=self._unit_id)
        if self._busy:
            raise AlreadyRunningError(unit_id=self._unit_id)

        self._busy = True
        self._state = RunState.RUNNING
        started = monotonic_ms()
        try:
            outcome = await self._run_launched(token, started)
        except ProcBatchError as e:
            self._settle(RunOutcome.from_error(self._unit_id, e, duration_ms=elapsed_ms(started)))
            raise
        except asyncio.CancelledError:
            err = RunCancelledError(unit_id=self._unit_id, message=f"Unit {self._unit_id!r} run was cancelled by its caller")
            self._settle(RunOutcome.from_error(self._unit_id, err, duration_ms=elapsed_ms(started)))
            raise
        except Exception as e:
            unexpected = ProcBatchError(
                "unexpected_error",
                f"Unit {self._unit_id!r} run failed unexpectedly: {e}",
                unit_id=self._unit_id,
                details={"cause": type(e).__name__},
            )
            self._settle(RunOutcome.from_error(self._unit_id, unexpected, duration_ms=elapsed_ms(started)))
            raise
        finally:
            self._busy = False

        self._settle(outcome)
        return outcome

    def memoize(self) -> "MemoizedUnit":
        """Return a view whose runs reuse this unit's last success under the same token."""

        return MemoizedUnit(self)

    async def _run_launched(self, token: CancellationToken | None, started: int) -> RunOutcome:
        async with self._launched() as launch:
            logger.info(
                "unit_started",
                extra={"unit_id": self._unit_id, "pid": launch.handle.pid, "command": describe_command(self._command)},
            )
            status = await launch.wait_first(token)

        if status is None:
            raise RunCancelledError(unit_id=self._unit_id)
        if status == 0:
            return RunOutcome(
                unit_id=self._unit_id,
                state=RunState.SUCCEEDED,
                exit_code=0,
                duration_ms=elapsed_ms(started),
            )
        if status < 0:
            raise ExecutionFailedError(unit_id=self._unit_id, signal=-status)
        raise ExecutionFailedError(unit_id=self._unit_id, exit_code=status)

    @contextlib.asynccontextmanager
    async def _launched(self) -> AsyncIterator[_Launch]:
        try:
            handle = await self._launcher.spawn(self._command)
        except (OSError, ValueError, TypeError) as e:
            # ValueError: NUL byte in the command; TypeError: non-str argv element.
            raise SpawnFailedError(unit_id=self._unit_id, cause=e) from e

        launch = _Launch(handle)
        self._launch = launch
        try:
            yield launch
        finally:
            try:
                await launch.close()
            finally:
                self._launch = None

    def _settle(self, outcome: RunOutcome) -> None:
        self._state = outcome.state
        self._last_outcome = outcome
        if not outcome.ok:
            self._memo = None

        extra = {"unit_id": self._unit_id, **outcome.to_dict()}
        extra.pop("error", None)
        if outcome.ok:
            logger.info("unit_succeeded", extra=extra)
        elif outcome.state is RunState.CANCELLED:
            logger.info("unit_cancelled", extra=extra)
        else:
            logger.warning("unit_failed", extra={**extra, "error": str(outcome.error)})

    def _memo_lookup(self, token: CancellationToken | None) -> RunOutcome | None:
        entry = self._memo
        if entry is None:
            return None
        if entry.token is not token or (token is not None and token.fired) or not entry.outcome.ok:
            self._memo = None
            return None
        return entry.outcome

    def _memo_store(self, token: CancellationToken | None, outcome: RunOutcome) -> None:
        self._memo = _MemoEntry(token=token, outcome=outcome) if outcome.ok else None

    def __repr__(self) -> str:
        return f"RunnableUnit(unit_id={self._unit_id!r}, command={self._command!r}, state={self._state.value})"


class MemoizedUnit:
    """View of a `RunnableUnit` that serves repeat runs from its success cache.

    The cache is the unit's single memo slot: it holds at most one
    (token, outcome) pair and is shared by every view of the same unit.
    """

    def __init__(self, unit: RunnableUnit) -> None:
        self._unit = unit

    @property
    def unit(self) -> RunnableUnit:
        return self._unit

    @property
    def unit_id(self) -> int | str:
        return self._unit.unit_id

    @property
    def command(self) -> str | Sequence[str]:
        return self._unit.command

    @property
    def state(self) -> RunState:
        return self._unit.state

    @property
    def last_outcome(self) -> RunOutcome | None:
        return self._unit.last_outcome

    async def run(self, token: CancellationToken | None = None) -> RunOutcome:
        cached = self._unit._memo_lookup(token)
        if cached is not None:
            logger.debug("unit_memo_hit", extra={"unit_id": self.unit_id})
            return cached

        outcome = await self._unit.run(token)
        self._unit._memo_store(token, outcome)
        return outcome

    def memoize(self) -> "MemoizedUnit":
        return self

    def __repr__(self) -> str:
        return f"MemoizedUnit({self._unit!r})"
