from __future__ import annotations

import asyncio

import pytest

from procbatch.cancel import CancellationToken


def test_fire_is_one_shot_and_keeps_first_reason() -> None:
    token = CancellationToken()
    assert token.fired is False

    token.fire("first")
    token.fire("second")

    assert token.fired is True
    assert token.reason == "first"


def test_wait_resumes_when_fired() -> None:
    async def scenario() -> None:
        token = CancellationToken()
        waiter = asyncio.ensure_future(token.wait())
        await asyncio.sleep(0)
        assert not waiter.done()
        token.fire()
        await asyncio.wait_for(waiter, timeout=1.0)

    asyncio.run(scenario())


def test_fire_after_schedules_and_can_be_disarmed() -> None:
    async def scenario() -> None:
        fired = CancellationToken()
        fired.fire_after(0.01, reason="deadline")
        await asyncio.wait_for(fired.wait(), timeout=1.0)
        assert fired.reason == "deadline"

        disarmed = CancellationToken()
        handle = disarmed.fire_after(0.01)
        handle.cancel()
        await asyncio.sleep(0.05)
        assert disarmed.fired is False

    asyncio.run(scenario())


def test_fire_after_rejects_negative_delay() -> None:
    async def scenario() -> None:
        with pytest.raises(ValueError):
            CancellationToken().fire_after(-1)

    asyncio.run(scenario())
