from __future__ import annotations

import asyncio
import logging


logger = logging.getLogger(__name__)


class CancellationToken:
    """One-shot cancellation signal shared by any number of runs.

    Firing is irreversible; a second `fire()` keeps the first reason.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: str | None = None

    @property
    def fired(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    def fire(self, reason: str | None = None) -> None:
        if self._event.is_set():
            return
        self._reason = reason
        self._event.set()
        logger.debug("token_fired", extra={"reason": reason})

    async def wait(self) -> None:
        await self._event.wait()

    def fire_after(self, delay_s: float, *, reason: str = "timeout") -> asyncio.TimerHandle:
        """Schedule `fire()` on the running loop after `delay_s` seconds.

        Must be called from inside a coroutine. Cancel the returned handle to
        disarm the deadline.
        """

        if delay_s < 0:
            raise ValueError("delay_s must be >= 0")
        loop = asyncio.get_running_loop()
        return loop.call_later(delay_s, self.fire, reason)

    def __repr__(self) -> str:
        return f"CancellationToken(fired={self.fired}, reason={self._reason!r})"
