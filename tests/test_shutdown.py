from __future__ import annotations

import asyncio

import pytest

from fakes import RecordingLeg
from relay.legs import LegName
from relay.shutdown import ShutdownCoordinator


@pytest.mark.parametrize("calls", [1, 2, 5])
def test_close_with_code_acts_exactly_once(calls):
    telephony = RecordingLeg(LegName.TELEPHONY)
    provider = RecordingLeg(LegName.PROVIDER)
    coordinator = ShutdownCoordinator(telephony, provider=lambda: provider)

    results = [coordinator.close_with_code(1011, "boom") for _ in range(calls)]

    assert results == [True] + [False] * (calls - 1)
    assert provider.closes == [(1000, "boom")]
    assert telephony.closes == [(1011, "boom")]
    assert coordinator.code == 1011


def test_first_trigger_wins():
    telephony = RecordingLeg(LegName.TELEPHONY)
    coordinator = ShutdownCoordinator(telephony, provider=lambda: None)

    coordinator.close_with_code(1000, "stop-received")
    coordinator.close_with_code(1011, "transport-error")

    assert telephony.closes == [(1000, "stop-received")]
    assert coordinator.reason == "stop-received"


def test_already_closed_legs_are_left_alone():
    telephony = RecordingLeg(LegName.TELEPHONY)
    provider = RecordingLeg(LegName.PROVIDER)
    telephony.mark_closed()
    coordinator = ShutdownCoordinator(telephony, provider=lambda: provider)

    coordinator.close_with_code(1000, "telephony-closed")

    assert telephony.closes == []
    assert provider.closes == [(1000, "telephony-closed")]


def test_pending_timer_and_task_are_cancelled():
    async def scenario():
        loop = asyncio.get_running_loop()
        coordinator = ShutdownCoordinator(RecordingLeg(LegName.TELEPHONY), provider=lambda: None)
        fired = []
        timer = loop.call_later(10, fired.append, True)
        task = asyncio.create_task(asyncio.sleep(10))
        coordinator.track(timer)
        coordinator.track(task)

        coordinator.close_with_code(1000, "done")
        await asyncio.sleep(0)

        assert timer.cancelled()
        assert task.cancelled()

        late = asyncio.create_task(asyncio.sleep(10))
        coordinator.track(late)
        await asyncio.sleep(0)
        assert late.cancelled()

    asyncio.run(scenario())
