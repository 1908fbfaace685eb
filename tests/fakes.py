from __future__ import annotations

import asyncio
from typing import Mapping, Sequence, Union


Command = Union[str, Sequence[str]]


class FakeProcess:
    """In-memory process handle; stays alive until `finish()` or `kill()`."""

    def __init__(self, pid: int, command: Command, *, kill_status: int) -> None:
        self.pid = pid
        self.command = command
        self.kill_status = kill_status
        self.kill_calls = 0
        self._exit: asyncio.Future[int] = asyncio.get_running_loop().create_future()

    @property
    def alive(self) -> bool:
        return not self._exit.done()

    def finish(self, status: int) -> None:
        if not self._exit.done():
            self._exit.set_result(status)

    async def wait(self) -> int:
        return await asyncio.shield(self._exit)

    def kill(self) -> None:
        self.kill_calls += 1
        self.finish(self.kill_status)


class FakeLauncher:
    """Records every spawn.

    `exits` maps a command to the status it exits with right after spawning;
    commands not listed stay alive until finished or killed.
    """

    def __init__(
        self,
        exits: Mapping[str, int] | None = None,
        *,
        kill_status: int = -9,
        spawn_error: Exception | None = None,
    ) -> None:
        self.exits = dict(exits or {})
        self.kill_status = kill_status
        self.spawn_error = spawn_error
        self.spawned: list[FakeProcess] = []

    async def spawn(self, command: Command) -> FakeProcess:
        if self.spawn_error is not None:
            raise self.spawn_error
        proc = FakeProcess(1000 + len(self.spawned), command, kill_status=self.kill_status)
        self.spawned.append(proc)
        key = command if isinstance(command, str) else " ".join(command)
        if key in self.exits:
            asyncio.get_running_loop().call_soon(proc.finish, self.exits[key])
        return proc

    @property
    def live(self) -> list[FakeProcess]:
        return [p for p in self.spawned if p.alive]


async def until(predicate, *, timeout_s: float = 5.0) -> None:
    """Poll the loop until `predicate()` holds."""

    for _ in range(int(timeout_s / 0.005)):
        if predicate():
            return
        await asyncio.sleep(0.005)
    raise AssertionError("condition not reached")
