from __future__ import annotations

import pytest

from learnloop.learning import ErrorPatternAnalyzer, Experience, ExperienceStore
from learnloop.learning.error_patterns import NO_CORRECTION, cluster_similarity, pattern_confidence
from tests.stubs import make_vector_memory

QUERY = "convert 5 miles to kilometers"
ERROR = "Tool 'unit_convert' not found"


async def _fail(store: ExperienceStore, query: str, error: str = ERROR, tool: str = "unit_convert") -> Experience:
    exp = Experience(
        query=query, success=False, error=error, error_type="tool_not_found",
        intent="calculation", tool_called=tool,
    )
    await store.record(exp)
    return exp


async def _succeed(store: ExperienceStore, query: str, tool: str) -> None:
    await store.record(Experience(
        query=query, success=True, intent="calculation", tool_called=tool, confidence=1.0,
    ))


@pytest.fixture
def store() -> ExperienceStore:
    return ExperienceStore(make_vector_memory())


@pytest.mark.asyncio
async def test_five_similar_failures_form_one_pattern(store: ExperienceStore) -> None:
    for _ in range(5):
        await _fail(store, QUERY)

    patterns = await ErrorPatternAnalyzer(store).detect_patterns()

    assert len(patterns) == 1
    pattern = patterns[0]
    assert pattern.frequency == 5
    assert pattern.error_type == "tool_not_found"
    assert pattern.failed_tools == ["unit_convert"]
    assert pattern.common_intents == ["calculation"]
    assert pattern.error_messages == [ERROR]
    assert len(pattern.experience_ids) == 5
    # 0.6 * min(5 / 10, 1) + 0.4 * 1.0
    assert pattern.confidence == pytest.approx(0.7)
    assert pattern.correction == NO_CORRECTION
    assert pattern.prevention


@pytest.mark.asyncio
async def test_small_clusters_are_discarded(store: ExperienceStore) -> None:
    await _fail(store, QUERY)
    await _fail(store, QUERY)
    await _fail(store, "summarize the quarterly sales report")
    await _fail(store, "book a table for two tonight")

    patterns = await ErrorPatternAnalyzer(store, min_cluster_size=3).detect_patterns()

    assert patterns == []


@pytest.mark.asyncio
async def test_correction_comes_from_similar_successes(store: ExperienceStore) -> None:
    for _ in range(3):
        await _fail(store, QUERY)
    await _succeed(store, QUERY, "math_calculate")
    await _succeed(store, QUERY, "math_calculate")
    await _succeed(store, QUERY, "web_search")

    pattern = (await ErrorPatternAnalyzer(store).detect_patterns())[0]

    assert pattern.best_tool == "math_calculate"
    assert "math_calculate" in pattern.correction
    assert "2/3" in pattern.correction


@pytest.mark.asyncio
async def test_patterns_are_cached_until_invalidated(store: ExperienceStore) -> None:
    for _ in range(3):
        await _fail(store, QUERY)
    analyzer = ErrorPatternAnalyzer(store, ttl_seconds=300)
    first = await analyzer.get_patterns()

    for _ in range(3):
        await _fail(store, "translate hello into japanese", error="timeout after 30s")

    assert len(await analyzer.get_patterns()) == len(first) == 1
    analyzer.invalidate()
    assert len(await analyzer.get_patterns()) == 2


@pytest.mark.asyncio
async def test_suggest_correction_matches_known_pattern(store: ExperienceStore) -> None:
    for _ in range(5):
        await _fail(store, QUERY)
    analyzer = ErrorPatternAnalyzer(store)
    pattern = (await analyzer.detect_patterns())[0]

    suggestion = await analyzer.suggest_correction(QUERY, ERROR)

    assert suggestion.id == pattern.id


@pytest.mark.asyncio
async def test_suggest_correction_falls_back_to_ad_hoc(store: ExperienceStore) -> None:
    for _ in range(5):
        await _fail(store, QUERY)
    analyzer = ErrorPatternAnalyzer(store)

    suggestion = await analyzer.suggest_correction("tell me a joke", "something else broke")

    assert suggestion.id.startswith("adhoc_")
    assert suggestion.confidence == pytest.approx(0.3)
    assert suggestion.correction == NO_CORRECTION


@pytest.mark.asyncio
async def test_low_confidence_patterns_are_not_suggested(store: ExperienceStore) -> None:
    for _ in range(3):
        await _fail(store, QUERY)
    # 0.6 * 0.3 + 0.4 * 1.0 = 0.58, below the 0.6 acceptance threshold
    analyzer = ErrorPatternAnalyzer(store, min_confidence=0.6)

    suggestion = await analyzer.suggest_correction(QUERY, ERROR)

    assert suggestion.id.startswith("adhoc_")


@pytest.mark.asyncio
async def test_pattern_stats(store: ExperienceStore) -> None:
    for _ in range(4):
        await _fail(store, QUERY)
    analyzer = ErrorPatternAnalyzer(store)
    await analyzer.detect_patterns()

    stats = analyzer.get_pattern_stats()

    assert stats["total_patterns"] == 1
    assert stats["total_occurrences"] == 4
    assert stats["last_scan"] is not None


def test_confidence_formula() -> None:
    assert pattern_confidence(20, 1.0) == pytest.approx(1.0)
    assert pattern_confidence(5, 0.5) == pytest.approx(0.5)


def test_cluster_similarity_mixes_error_type_and_tool() -> None:
    members = [
        Experience(query="q", success=False, error="e", error_type="timeout", tool_called="a"),
        Experience(query="q", success=False, error="e", error_type="timeout", tool_called="b"),
    ]
    # error type agreement 1.0, tool agreement 0.5
    assert cluster_similarity(members) == pytest.approx(0.75)
