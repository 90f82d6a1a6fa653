from __future__ import annotations

from pathlib import Path

import pytest

from learnloop.vector import VectorDocument, VectorStore


def _doc(doc_id: str, embedding: list[float], **metadata) -> VectorDocument:
    return VectorDocument(id=doc_id, content=f"content of {doc_id}", embedding=embedding, metadata=metadata)


def test_search_orders_by_cosine_similarity() -> None:
    store = VectorStore()
    store.add(_doc("x", [1.0, 0.0]))
    store.add(_doc("diag", [1.0, 1.0]))
    store.add(_doc("y", [0.0, 1.0]))

    results = store.search([1.0, 0.1], top_k=2)

    assert [r.id for r in results] == ["x", "diag"]
    assert results[0].score > results[1].score


def test_search_applies_threshold_and_filters() -> None:
    store = VectorStore()
    store.add(_doc("a", [1.0, 0.0], category="conversation"))
    store.add(_doc("b", [1.0, 0.0], category="experience"))
    store.add(_doc("c", [0.0, 1.0], category="experience"))

    results = store.search([1.0, 0.0], min_score=0.5, where={"category": "experience"})

    assert [r.id for r in results] == ["b"]


def test_dimension_mismatch_is_rejected() -> None:
    store = VectorStore()
    store.add(_doc("a", [1.0, 0.0]))
    with pytest.raises(ValueError):
        store.add(_doc("b", [1.0, 0.0, 0.0]))


def test_same_id_replaces_document() -> None:
    store = VectorStore()
    store.add(_doc("a", [1.0, 0.0], version=1))
    store.add(_doc("a", [0.0, 1.0], version=2))

    assert len(store) == 1
    assert store.get("a").metadata["version"] == 2
    assert store.search([0.0, 1.0], top_k=1)[0].id == "a"


def test_scan_is_newest_first() -> None:
    store = VectorStore()
    store.add(_doc("old", [1.0], timestamp="2024-01-01T00:00:00"))
    store.add(_doc("new", [1.0], timestamp="2024-06-01T00:00:00"))

    assert [d.id for d in store.scan()] == ["new", "old"]
    assert [d.id for d in store.scan(limit=1)] == ["new"]


def test_delete_where_and_count() -> None:
    store = VectorStore()
    store.add(_doc("a", [1.0], category="conversation"))
    store.add(_doc("b", [1.0], category="experience"))

    assert store.delete_where({"category": "conversation"}) == 1
    assert store.count() == 1
    assert store.count({"category": "experience"}) == 1
    assert store.delete("b") is True
    assert store.delete("b") is False


def test_persistence_round_trip(tmp_path: Path) -> None:
    store = VectorStore(tmp_path)
    store.add(_doc("a", [0.6, 0.8], category="experience"))

    reloaded = VectorStore(tmp_path)

    assert len(reloaded) == 1
    assert reloaded.get("a").metadata == {"category": "experience"}
    assert reloaded.search([0.6, 0.8], top_k=1)[0].score == pytest.approx(1.0)
