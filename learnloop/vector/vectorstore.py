"""
Vector Store
============

A small file-backed vector index with cosine similarity search.

Documents live in memory in a numpy matrix for search, and are written
to two files when a storage path is given:
- documents.json: document content and metadata
- embeddings.npy: the embedding matrix, one row per document

Without a storage path the store is purely in-memory, which is what the
tests use.

Cosine Similarity:
    cos(A, B) = (A · B) / (||A|| * ||B||)
    - 1 means identical direction (most similar)
    - 0 means unrelated

Metadata filters (`where`) match by equality on top-level keys; a filter
value of None is ignored.
"""

import json
import threading
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

import numpy as np

from learnloop.utils.logger import Logger

logger = Logger("VectorStore")


@dataclass
class VectorDocument:
    """
    A document stored in the vector store.

    Attributes:
        id: Unique identifier for the document
        content: The original text content
        embedding: The vector embedding
        metadata: Flat payload (category, role, timestamp, ...)
        score: Similarity score (set during search)
    """
    id: str
    content: str
    embedding: list[float]
    metadata: dict[str, Any] = field(default_factory=dict)
    score: float | None = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "content": self.content,
            "metadata": self.metadata,
        }


def _matches(metadata: dict[str, Any], where: dict[str, Any] | None) -> bool:
    if not where:
        return True
    return all(metadata.get(k) == v for k, v in where.items() if v is not None)


class VectorStore:
    """
    Vector store with cosine similarity search.

    Example:
        store = VectorStore(Path("data/vectorstore"))

        store.add(VectorDocument(
            id="exp_123",
            content="What is 2 + 2?",
            embedding=[0.1, -0.2, ...],
            metadata={"category": "experience", "success": True}
        ))

        results = store.search(query_vector, top_k=5, min_score=0.5,
                               where={"category": "experience"})
    """

    def __init__(self, storage_path: Path | None = None):
        """
        Initialize the vector store.

        Args:
            storage_path: Directory for the data files, None for in-memory only
        """
        self.storage_path = storage_path
        self._documents: dict[str, VectorDocument] = {}
        self._ids: list[str] = []
        self._embeddings: np.ndarray | None = None
        self._lock = threading.RLock()

        if storage_path is not None:
            storage_path.mkdir(parents=True, exist_ok=True)
            self._load()

        logger.info(f"Vector store initialized with {len(self._documents)} documents")

    @property
    def documents_file(self) -> Path | None:
        return self.storage_path / "documents.json" if self.storage_path else None

    @property
    def embeddings_file(self) -> Path | None:
        return self.storage_path / "embeddings.npy" if self.storage_path else None

    def _load(self) -> None:
        if not self.documents_file or not self.documents_file.exists():
            return

        try:
            with open(self.documents_file) as f:
                docs_data = json.load(f)

            embeddings = None
            if self.embeddings_file.exists():
                embeddings = np.load(self.embeddings_file)

            for i, data in enumerate(docs_data):
                vector = embeddings[i].tolist() if embeddings is not None else []
                self._documents[data["id"]] = VectorDocument(
                    id=data["id"],
                    content=data["content"],
                    embedding=vector,
                    metadata=data.get("metadata", {}),
                )
            self._rebuild()
            logger.debug(f"Loaded {len(self._documents)} documents from disk")

        except (OSError, ValueError, KeyError, IndexError) as e:
            logger.error("Error loading vector store, starting empty", e)
            self._documents = {}
            self._rebuild()

    def _save(self) -> None:
        if not self.storage_path:
            return

        try:
            docs_list = [self._documents[doc_id].to_dict() for doc_id in self._ids]
            with open(self.documents_file, "w") as f:
                json.dump(docs_list, f, default=str)

            if self._embeddings is not None:
                np.save(self.embeddings_file, self._embeddings)

        except OSError as e:
            logger.error("Error saving vector store", e)

    def _rebuild(self) -> None:
        """Rebuild the embedding matrix from the documents dict."""
        self._ids = list(self._documents.keys())
        if not self._ids:
            self._embeddings = None
            return
        self._embeddings = np.array(
            [self._documents[doc_id].embedding for doc_id in self._ids],
            dtype=float
        )

    def add(self, document: VectorDocument, persist: bool = True) -> None:
        """
        Add a document. A document with the same ID is replaced.

        Raises:
            ValueError: If the embedding dimension differs from stored ones
        """
        embedding = np.array(document.embedding, dtype=float)

        with self._lock:
            if self._embeddings is not None and embedding.shape[0] != self._embeddings.shape[1]:
                raise ValueError(
                    f"Embedding dimension {embedding.shape[0]} does not match "
                    f"store dimension {self._embeddings.shape[1]}"
                )

            if document.id in self._documents:
                self._documents[document.id] = document
                self._embeddings[self._ids.index(document.id)] = embedding
            else:
                self._documents[document.id] = document
                self._ids.append(document.id)
                if self._embeddings is None:
                    self._embeddings = embedding.reshape(1, -1)
                else:
                    self._embeddings = np.vstack([self._embeddings, embedding])

            if persist:
                self._save()

    def search(
        self,
        query_vector: list[float],
        top_k: int = 10,
        min_score: float = 0.0,
        where: dict[str, Any] | None = None
    ) -> list[VectorDocument]:
        """
        Find the documents most similar to a query vector.

        Args:
            query_vector: The query embedding
            top_k: Number of results to return
            min_score: Drop results with cosine similarity below this
            where: Optional metadata equality filters

        Returns:
            Copies of the matching documents with `score` set, best first
        """
        with self._lock:
            if self._embeddings is None or not self._ids:
                return []

            query = np.array(query_vector, dtype=float)
            query_norm = np.linalg.norm(query)
            if query_norm == 0:
                return []

            doc_norms = np.linalg.norm(self._embeddings, axis=1)
            doc_norms = np.where(doc_norms == 0, 1, doc_norms)
            similarities = np.dot(self._embeddings, query) / (doc_norms * query_norm)

            results: list[tuple[VectorDocument, float]] = []
            for i, doc_id in enumerate(self._ids):
                score = float(similarities[i])
                if score < min_score:
                    continue
                doc = self._documents[doc_id]
                if _matches(doc.metadata, where):
                    results.append((doc, score))

        results.sort(key=lambda x: x[1], reverse=True)
        return [replace(doc, score=score) for doc, score in results[:top_k]]

    def scan(
        self,
        where: dict[str, Any] | None = None,
        limit: int = 0,
        order_by: str = "timestamp"
    ) -> list[VectorDocument]:
        """
        Documents matching a filter, newest first by a metadata field.

        Args:
            where: Optional metadata equality filters
            limit: Maximum documents, 0 for all
            order_by: Metadata key holding a sortable timestamp
        """
        with self._lock:
            docs = [d for d in self._documents.values() if _matches(d.metadata, where)]

        docs.sort(key=lambda d: str(d.metadata.get(order_by, "")), reverse=True)
        return docs[:limit] if limit > 0 else docs

    def get(self, doc_id: str) -> VectorDocument | None:
        return self._documents.get(doc_id)

    def delete(self, doc_id: str) -> bool:
        """Delete a document by ID. Returns True if it existed."""
        with self._lock:
            if doc_id not in self._documents:
                return False
            del self._documents[doc_id]
            self._rebuild()
            self._save()
            return True

    def delete_where(self, where: dict[str, Any]) -> int:
        """Delete every document matching a filter. Returns the count."""
        with self._lock:
            doomed = [d.id for d in self._documents.values() if _matches(d.metadata, where)]
            for doc_id in doomed:
                del self._documents[doc_id]
            if doomed:
                self._rebuild()
                self._save()
            return len(doomed)

    def clear(self) -> None:
        with self._lock:
            self._documents.clear()
            self._rebuild()
            self._save()
        logger.info("Vector store cleared")

    def count(self, where: dict[str, Any] | None = None) -> int:
        with self._lock:
            return sum(1 for d in self._documents.values() if _matches(d.metadata, where))

    def __len__(self) -> int:
        return len(self._documents)
