from __future__ import annotations

import asyncio
import os
import signal
import sys

import pytest

from fakes import FakeLauncher, until
from procbatch.cancel import CancellationToken
from procbatch.errors import (
    AlreadyCancelledError,
    AlreadyRunningError,
    ExecutionFailedError,
    RunCancelledError,
    SpawnFailedError,
)
from procbatch.outcome import RunState
from procbatch.unit import RunnableUnit


pytestmark = pytest.mark.skipif(sys.platform == "win32", reason="uses /bin/sh commands")


def _pid_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    return True


def test_exit_zero_succeeds() -> None:
    unit = RunnableUnit(1, "exit 0")

    outcome = asyncio.run(unit.run())

    assert outcome.ok
    assert outcome.unit_id == 1
    assert outcome.exit_code == 0
    assert unit.state is RunState.SUCCEEDED
    assert unit.running is False
    assert unit.pid is None


def test_nonzero_exit_raises_with_code() -> None:
    unit = RunnableUnit(2, "exit 7")

    with pytest.raises(ExecutionFailedError) as ei:
        asyncio.run(unit.run())

    assert ei.value.exit_code == 7
    assert ei.value.signal is None
    assert ei.value.unit_id == 2
    assert ei.value.details == {"exit_code": "7"}
    assert unit.state is RunState.FAILED
    assert unit.last_outcome is not None and unit.last_outcome.exit_code == 7


def test_death_by_signal_is_a_failure_not_success() -> None:
    unit = RunnableUnit("sig", "kill -TERM $$")

    with pytest.raises(ExecutionFailedError) as ei:
        asyncio.run(unit.run())

    assert ei.value.exit_code is None
    assert ei.value.signal == signal.SIGTERM
    assert ei.value.details["signal"] == "SIGTERM"


def test_missing_executable_is_spawn_failure() -> None:
    unit = RunnableUnit("nope", ["/nonexistent/definitely-not-here"])

    with pytest.raises(SpawnFailedError) as ei:
        asyncio.run(unit.run())

    assert isinstance(ei.value.cause, FileNotFoundError)
    assert ei.value.error_type == "spawn_failed"
    assert unit.state is RunState.FAILED
    assert unit.running is False


def test_handle_released_after_completion_allows_fresh_run() -> None:
    unit = RunnableUnit(1, "exit 0")

    async def scenario() -> None:
        first = await unit.run()
        second = await unit.run()
        assert first is not second
        assert second.ok

    asyncio.run(scenario())


def test_already_fired_token_never_spawns() -> None:
    launcher = FakeLauncher({"exit 0": 0})
    unit = RunnableUnit(1, "exit 0", launcher=launcher)
    token = CancellationToken()
    token.fire()

    with pytest.raises(AlreadyCancelledError):
        asyncio.run(unit.run(token))

    assert launcher.spawned == []
    assert unit.state is RunState.IDLE


def test_second_run_while_live_is_rejected_and_first_unaffected() -> None:
    launcher = FakeLauncher()
    unit = RunnableUnit(1, "long", launcher=launcher)

    async def scenario() -> None:
        first = asyncio.ensure_future(unit.run())
        await until(lambda: unit.pid is not None)

        with pytest.raises(AlreadyRunningError):
            await unit.run()

        assert len(launcher.spawned) == 1
        launcher.spawned[0].finish(0)
        outcome = await first
        assert outcome.ok

    asyncio.run(scenario())
    assert unit.state is RunState.SUCCEEDED


def test_cancel_while_live_kills_and_resolves_cancelled() -> None:
    unit = RunnableUnit(3, "sleep 5")

    async def scenario() -> int:
        token = CancellationToken()
        task = asyncio.ensure_future(unit.run(token))
        await until(lambda: unit.pid is not None)
        pid = unit.pid
        assert pid is not None
        token.fire("test")
        with pytest.raises(RunCancelledError) as ei:
            await task
        assert not isinstance(ei.value, AlreadyCancelledError)
        return pid

    pid = asyncio.run(scenario())

    assert not _pid_alive(pid)
    assert unit.state is RunState.CANCELLED
    assert unit.pid is None


def test_cancel_wins_even_if_killed_process_exits_zero() -> None:
    launcher = FakeLauncher(kill_status=0)
    unit = RunnableUnit(1, "long", launcher=launcher)

    async def scenario() -> None:
        token = CancellationToken()
        task = asyncio.ensure_future(unit.run(token))
        await until(lambda: unit.pid is not None)
        token.fire()
        with pytest.raises(RunCancelledError):
            await task

    asyncio.run(scenario())

    proc = launcher.spawned[0]
    assert proc.kill_calls == 1
    assert unit.state is RunState.CANCELLED


def test_late_cancel_after_termination_is_noop() -> None:
    launcher = FakeLauncher({"quick": 0})
    unit = RunnableUnit(1, "quick", launcher=launcher)

    async def scenario() -> None:
        token = CancellationToken()
        outcome = await unit.run(token)
        token.fire()
        assert outcome.ok

    asyncio.run(scenario())

    assert launcher.spawned[0].kill_calls == 0
    assert unit.state is RunState.SUCCEEDED


def test_caller_cancelling_the_run_still_kills_the_process() -> None:
    launcher = FakeLauncher()
    unit = RunnableUnit(1, "long", launcher=launcher)

    async def scenario() -> None:
        task = asyncio.ensure_future(unit.run())
        await until(lambda: unit.pid is not None)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(scenario())

    assert launcher.live == []
    assert launcher.spawned[0].kill_calls == 1
    assert unit.running is False
    assert unit.state is RunState.CANCELLED


def test_spawn_error_from_launcher_maps_to_spawn_failed() -> None:
    launcher = FakeLauncher(spawn_error=PermissionError("denied"))
    unit = RunnableUnit(1, "x", launcher=launcher)

    with pytest.raises(SpawnFailedError) as ei:
        asyncio.run(unit.run())

    assert ei.value.details == {"cause": "PermissionError", "reason": "denied"}
    assert unit.running is False


def test_nul_byte_in_command_is_spawn_failure() -> None:
    unit = RunnableUnit(1, "echo a\0b")

    with pytest.raises(SpawnFailedError) as ei:
        asyncio.run(unit.run())

    assert isinstance(ei.value.cause, ValueError)
    assert unit.state is RunState.FAILED
    assert unit.running is False
    assert unit.last_outcome is not None and unit.last_outcome.error is ei.value


def test_non_string_argv_element_is_spawn_failure() -> None:
    unit = RunnableUnit(1, ["echo", 3])  # type: ignore[list-item]

    with pytest.raises(SpawnFailedError) as ei:
        asyncio.run(unit.run())

    assert isinstance(ei.value.cause, TypeError)
    assert ei.value.details["cause"] == "TypeError"
    assert unit.state is RunState.FAILED
    assert unit.running is False


def test_unexpected_launcher_error_still_settles_failed() -> None:
    launcher = FakeLauncher(spawn_error=RuntimeError("launcher bug"))
    unit = RunnableUnit(1, "x", launcher=launcher)

    with pytest.raises(RuntimeError, match="launcher bug"):
        asyncio.run(unit.run())

    assert unit.state is RunState.FAILED
    assert unit.running is False
    assert unit.last_outcome is not None
    assert unit.last_outcome.error is not None
    assert unit.last_outcome.error.error_type == "unexpected_error"
