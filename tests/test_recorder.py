from __future__ import annotations

import asyncio

import pytest

from learnloop.agent.recorder import ExperienceRecorder
from learnloop.learning import Experience


class _GatedStore:
    """Blocks every write until the gate opens."""

    def __init__(self, fail: bool = False) -> None:
        self.gate = asyncio.Event()
        self.fail = fail
        self.recorded: list[str] = []

    async def record(self, experience: Experience) -> bool:
        await self.gate.wait()
        if self.fail:
            raise RuntimeError("store unavailable")
        self.recorded.append(experience.query)
        return True


def _exp(query: str) -> Experience:
    return Experience(query=query, success=True, confidence=1.0)


async def _fill(recorder: ExperienceRecorder) -> None:
    """One record in flight with the worker, one waiting in the queue."""
    assert await recorder.submit(_exp("first")) is True
    await asyncio.sleep(0)
    assert await recorder.submit(_exp("second")) is True


@pytest.mark.asyncio
async def test_drop_newest_discards_incoming_record() -> None:
    store = _GatedStore()
    recorder = ExperienceRecorder(store, queue_size=1, workers=1, policy="drop_newest")
    await _fill(recorder)

    accepted = await recorder.submit(_exp("third"))
    store.gate.set()
    await recorder.close()

    assert accepted is False
    assert store.recorded == ["first", "second"]
    assert recorder.dropped == 1


@pytest.mark.asyncio
async def test_drop_oldest_makes_room() -> None:
    store = _GatedStore()
    recorder = ExperienceRecorder(store, queue_size=1, workers=1, policy="drop_oldest")
    await _fill(recorder)

    accepted = await recorder.submit(_exp("third"))
    store.gate.set()
    await recorder.close()

    assert accepted is True
    assert store.recorded == ["first", "third"]
    assert recorder.dropped == 1


@pytest.mark.asyncio
async def test_block_waits_for_room() -> None:
    store = _GatedStore()
    recorder = ExperienceRecorder(store, queue_size=1, workers=1, policy="block")
    await _fill(recorder)

    pending = asyncio.create_task(recorder.submit(_exp("third")))
    await asyncio.sleep(0)
    assert not pending.done()

    store.gate.set()
    assert await pending is True
    await recorder.close()

    assert store.recorded == ["first", "second", "third"]
    assert recorder.dropped == 0


@pytest.mark.asyncio
async def test_write_failures_are_counted_not_raised() -> None:
    store = _GatedStore(fail=True)
    store.gate.set()
    recorder = ExperienceRecorder(store, workers=2)

    await recorder.submit(_exp("a"))
    await recorder.submit(_exp("b"))
    await recorder.drain()

    assert recorder.failed == 2
    assert recorder.stats()["recorded"] == 0
    await recorder.close()


@pytest.mark.asyncio
async def test_close_without_submissions() -> None:
    recorder = ExperienceRecorder(_GatedStore())
    await recorder.drain()
    await recorder.close()
    assert recorder.stats()["queued"] == 0


def test_unknown_policy_is_rejected() -> None:
    with pytest.raises(ValueError):
        ExperienceRecorder(_GatedStore(), policy="drop_everything")


def test_recorder_follows_a_new_event_loop() -> None:
    store = _GatedStore()
    store.gate.set()
    recorder = ExperienceRecorder(store, workers=1)

    async def submit_and_drain(query: str) -> bool:
        accepted = await recorder.submit(_exp(query))
        await recorder.drain()
        return accepted

    assert asyncio.run(submit_and_drain("first")) is True
    assert asyncio.run(submit_and_drain("second")) is True

    assert store.recorded == ["first", "second"]
    assert recorder.stats()["recorded"] == 2


def test_records_left_behind_by_a_finished_loop_count_as_dropped() -> None:
    store = _GatedStore()
    recorder = ExperienceRecorder(store, workers=1)

    async def submit_two() -> None:
        await recorder.submit(_exp("first"))
        await recorder.submit(_exp("second"))

    asyncio.run(submit_two())
    store.gate.set()

    async def submit_and_drain() -> None:
        await recorder.submit(_exp("third"))
        await recorder.drain()

    asyncio.run(submit_and_drain())

    assert store.recorded == ["third"]
    assert recorder.dropped == 2
