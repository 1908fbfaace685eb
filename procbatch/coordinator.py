from __future__ import annotations

import asyncio
import logging
from typing import Iterable, Protocol, Sequence

from procbatch.cancel import CancellationToken
from procbatch.core.clock import elapsed_ms, monotonic_ms
from procbatch.errors import NoUnitsToRunError, ProcBatchError, RunCancelledError
from procbatch.outcome import RunOutcome


logger = logging.getLogger(__name__)


class Runnable(Protocol):
    """Anything the coordinator can run: a `RunnableUnit` or a memoized view of one."""

    @property
    def unit_id(self) -> int | str: ...

    async def run(self, token: CancellationToken | None = None) -> RunOutcome: ...


class BatchCoordinator:
    """Run an ordered collection of units concurrently under one token.

    A batch never short-circuits: every unit is awaited until it settles, so no
    process is left unmanaged when one of them fails.
    """

    def __init__(self, units: Iterable[Runnable] = ()) -> None:
        self._units: list[Runnable] = list(units)

    @property
    def units(self) -> list[Runnable]:
        return list(self._units)

    def add_unit(self, unit: Runnable) -> "BatchCoordinator":
        self._units.append(unit)
        return self

    def remove_unit(self, unit_id: int | str) -> "BatchCoordinator":
        """Remove every unit whose identifier equals `unit_id`."""

        self._units = [u for u in self._units if u.unit_id != unit_id]
        return self

    def get_unit(self, unit_id: int | str) -> Runnable | None:
        for unit in self._units:
            if unit.unit_id == unit_id:
                return unit
        return None

    async def run_all(self, token: CancellationToken | None = None) -> list[RunOutcome]:
        """Run every unit and succeed only if all of them succeed.

        Returns outcomes in collection order. On failure, raises the first
        failure observed in completion order, after every unit has settled.

        Raises:
            NoUnitsToRunError: The collection is empty; nothing is launched.
        """

        first_error: list[ProcBatchError] = []
        outcomes = await self._run_snapshot(token, first_error)
        if first_error:
            raise first_error[0]
        return outcomes

    async def run_all_settled(self, token: CancellationToken | None = None) -> list[RunOutcome]:
        """Run every unit and report one outcome per unit, never raising for unit failures."""

        return await self._run_snapshot(token, [])

    async def _run_snapshot(
        self,
        token: CancellationToken | None,
        first_error: list[ProcBatchError],
    ) -> list[RunOutcome]:
        units: Sequence[Runnable] = list(self._units)
        if not units:
            raise NoUnitsToRunError()

        started = monotonic_ms()
        logger.info("batch_started", extra={"units": len(units)})

        tasks = [asyncio.ensure_future(u.run(token)) for u in units]
        index = {task: i for i, task in enumerate(tasks)}
        outcomes: list[RunOutcome | None] = [None] * len(units)

        unexpected: list[Exception] = []
        pending: set[asyncio.Future] = set(tasks)
        try:
            while pending:
                done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
                # Completion order within one wakeup follows collection order.
                for task in sorted(done, key=index.__getitem__):
                    i = index[task]
                    try:
                        outcomes[i] = self._collect(units[i], task, first_error)
                    except Exception as e:  # noqa: BLE001
                        unexpected.append(e)
        except asyncio.CancelledError:
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
            logger.info("batch_aborted", extra={"units": len(units), "duration_ms": elapsed_ms(started)})
            raise

        if unexpected:
            # Everything has settled; surface the bug instead of a partial report.
            raise unexpected[0]

        settled = [o for o in outcomes if o is not None]
        logger.info(
            "batch_settled",
            extra={
                "units": len(units),
                "succeeded": sum(1 for o in settled if o.ok),
                "failed": sum(1 for o in settled if not o.ok),
                "duration_ms": elapsed_ms(started),
            },
        )
        return settled

    @staticmethod
    def _collect(unit: Runnable, task: asyncio.Future, first_error: list[ProcBatchError]) -> RunOutcome:
        if task.cancelled():
            err: BaseException | None = RunCancelledError(unit_id=unit.unit_id)
        else:
            err = task.exception()
        if err is None:
            return task.result()
        if not isinstance(err, ProcBatchError):
            raise err
        if not first_error:
            first_error.append(err)
        last = getattr(unit, "last_outcome", None)
        if last is not None and last.error is err:
            return last
        return RunOutcome.from_error(unit.unit_id, err)
