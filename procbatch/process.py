"""Process execution boundary.

The core only needs three things from the OS: launch a command and get a
handle, observe exactly one terminal event per launch, and forcibly terminate a
live handle. `ProcessLauncher` captures that; `SubprocessLauncher` is the
asyncio implementation used outside tests.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol, Sequence, Union


logger = logging.getLogger(__name__)

Command = Union[str, Sequence[str]]


class ProcessHandle(Protocol):
    pid: int

    async def wait(self) -> int:
        """Wait for termination and return the exit status.

        Negative values mean the process died from signal `-status`.
        """

    def kill(self) -> None:
        """Forcibly terminate the process. Must not raise if it already exited."""


class ProcessLauncher(Protocol):
    async def spawn(self, command: Command) -> ProcessHandle:
        """Start `command`. Raises OSError when the OS refuses to start it."""


class _AsyncioProcessHandle:
    def __init__(self, proc: asyncio.subprocess.Process) -> None:
        self._proc = proc
        self.pid = proc.pid

    async def wait(self) -> int:
        return await self._proc.wait()

    def kill(self) -> None:
        if self._proc.returncode is not None:
            return
        try:
            self._proc.kill()
        except ProcessLookupError:
            pass


class SubprocessLauncher:
    """Launch commands with asyncio subprocesses, all streams on DEVNULL.

    A `str` command runs through the shell; a sequence is exec'd directly, so a
    missing executable surfaces as an OSError instead of shell exit code 127.
    """

    async def spawn(self, command: Command) -> ProcessHandle:
        streams = {
            "stdin": asyncio.subprocess.DEVNULL,
            "stdout": asyncio.subprocess.DEVNULL,
            "stderr": asyncio.subprocess.DEVNULL,
        }
        if isinstance(command, str):
            proc = await asyncio.create_subprocess_shell(command, **streams)
        else:
            argv = list(command)
            if not argv:
                raise FileNotFoundError("empty argv")
            proc = await asyncio.create_subprocess_exec(*argv, **streams)
        logger.debug("process_spawned", extra={"pid": proc.pid})
        return _AsyncioProcessHandle(proc)


def describe_command(command: Command) -> str:
    if isinstance(command, str):
        return command
    return " ".join(command)
