from __future__ import annotations

from datetime import datetime, timedelta

import pytest

from learnloop.errors import LearningError
from learnloop.learning import Experience, ExperienceFilters, ExperienceStore
from learnloop.memory import BufferMemory
from tests.stubs import make_vector_memory


class _BrokenBacking:
    async def add_document(self, doc_id, content, metadata) -> None:
        raise RuntimeError("disk full")

    async def search_documents(self, query, limit=10, min_score=0.0, where=None):
        raise RuntimeError("index offline")

    async def list_documents(self, where=None, limit=0):
        raise RuntimeError("index offline")


def _failure(query: str, **kwargs) -> Experience:
    kwargs.setdefault("error", "Tool 'convert' not found")
    return Experience(query=query, success=False, **kwargs)


def _success(query: str, **kwargs) -> Experience:
    kwargs.setdefault("confidence", 1.0)
    return Experience(query=query, success=True, **kwargs)


# ==============================================================================
# Experience
# ==============================================================================

def test_failed_experience_requires_error() -> None:
    with pytest.raises(ValueError):
        Experience(query="q", success=False).validate()


def test_successful_experience_rejects_error() -> None:
    with pytest.raises(ValueError):
        Experience(query="q", success=True, error="boom").validate()


@pytest.mark.parametrize(
    "kwargs",
    [{"latency_ms": -1}, {"confidence": 1.5}, {"confidence": -0.1}, {"user_feedback": 3}],
)
def test_out_of_range_fields_are_rejected(kwargs: dict) -> None:
    with pytest.raises(ValueError):
        _success("q", **kwargs).validate()


def test_experience_ids_are_unique() -> None:
    assert _success("q").id != _success("q").id


def test_experience_dict_round_trip() -> None:
    exp = _failure("convert 5 miles", tool_called="convert", arguments={"value": 5}, latency_ms=12)
    restored = Experience.from_dict(exp.to_dict())
    assert restored == exp


# ==============================================================================
# ExperienceStore
# ==============================================================================

@pytest.mark.asyncio
async def test_record_and_filter_by_outcome() -> None:
    store = ExperienceStore(make_vector_memory())
    await store.record(_success("what is 2 + 2", intent="calculation"))
    await store.record(_failure("convert 5 miles to km", intent="calculation"))

    failures = await store.get_all_failures()
    successes = await store.query(ExperienceFilters(success=True))

    assert [e.query for e in failures] == ["convert 5 miles to km"]
    assert [e.query for e in successes] == ["what is 2 + 2"]
    assert await store.count() == 2


@pytest.mark.asyncio
async def test_recency_query_is_newest_first() -> None:
    store = ExperienceStore(make_vector_memory())
    now = datetime.now()
    for minutes, query in [(30, "oldest"), (20, "middle"), (10, "newest")]:
        await store.record(_success(query, timestamp=now - timedelta(minutes=minutes)))

    results = await store.query(ExperienceFilters(limit=2))

    assert [e.query for e in results] == ["newest", "middle"]


@pytest.mark.asyncio
async def test_similarity_query_respects_threshold() -> None:
    store = ExperienceStore(make_vector_memory())
    await store.record(_success("convert miles to kilometers"))
    await store.record(_success("weather forecast for paris"))

    results = await store.query(ExperienceFilters(query="convert miles to kilometers", min_similarity=0.75))

    assert [e.query for e in results] == ["convert miles to kilometers"]


@pytest.mark.asyncio
async def test_post_filters_apply() -> None:
    store = ExperienceStore(make_vector_memory())
    now = datetime.now()
    await store.record(_success("a", confidence=0.4, timestamp=now - timedelta(hours=2)))
    await store.record(_success("b", confidence=0.9, timestamp=now))

    confident = await store.query(ExperienceFilters(min_confidence=0.5))
    recent = await store.query(ExperienceFilters(start_time=now - timedelta(hours=1)))

    assert [e.query for e in confident] == ["b"]
    assert [e.query for e in recent] == ["b"]


@pytest.mark.asyncio
async def test_add_feedback_keeps_outcome() -> None:
    store = ExperienceStore(make_vector_memory())
    exp = _success("what is the capital of peru", response="Lima")
    await store.record(exp)

    revised = await store.add_feedback(exp.id, -1, "Lima, but mention Cusco history")
    stored = await store.get(exp.id)

    assert await store.count() == 1
    assert stored == revised
    assert stored.user_feedback == -1
    assert stored.success is True and stored.response == "Lima"
    assert len(await store.query(ExperienceFilters(with_feedback=True))) == 1


@pytest.mark.asyncio
async def test_add_feedback_unknown_id() -> None:
    store = ExperienceStore(make_vector_memory())
    with pytest.raises(LearningError):
        await store.add_feedback("exp_missing", 1)


@pytest.mark.asyncio
async def test_invalid_experience_is_not_stored() -> None:
    store = ExperienceStore(make_vector_memory())
    with pytest.raises(LearningError):
        await store.record(Experience(query="q", success=False))
    assert await store.count() == 0


@pytest.mark.asyncio
async def test_without_backing_store_runs_degraded() -> None:
    store = ExperienceStore(BufferMemory())

    assert store.available is False
    assert await store.record(_success("q")) is False
    assert await store.query() == []
    assert await store.get_all_failures() == []


@pytest.mark.asyncio
async def test_backing_errors_are_reported() -> None:
    store = ExperienceStore(_BrokenBacking())

    with pytest.raises(LearningError):
        await store.record(_success("q"))
    with pytest.raises(LearningError):
        await store.query(ExperienceFilters(query="q"))
