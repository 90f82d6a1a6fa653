"""
Long-Term (Semantic) Memory
===========================

The two-tier memory: a BufferMemory for recency plus an embedded vector
index for retrieval by meaning.

    add(turn)
       │
       ├──► recency buffer (always)
       │
       └──► embed + index (non-empty content only)

    search_semantic(query)
       │
       ▼
    nearest neighbours (3x over-fetch, score ≥ min_score)
       │
       ▼
    re-rank by similarity × recency boost
        < 1 hour old   × 1.5
        < 24 hours old × 1.2
        older          × 1.0

The same index also stores documents for other components (experience
records), separated by a "category" metadata field. Conversation turns
use category "conversation"; clear() only removes those.

Failure semantics:
    Embedding or index failures never fail a memory call. Writes keep
    the turn in the recency buffer; searches fall back to recent turns.
"""

import asyncio
import uuid
from datetime import datetime
from typing import Any

from learnloop.memory.short_term import BufferMemory, Message
from learnloop.vector.embeddings import Embedder
from learnloop.vector.vectorstore import VectorDocument, VectorStore
from learnloop.utils.logger import Logger

logger = Logger("VectorMemory")

CONVERSATION_CATEGORY = "conversation"


def recency_boost(timestamp: datetime, now: datetime | None = None) -> float:
    """Multiplier favouring fresh matches over equally similar old ones."""
    now = now or datetime.now()
    age_seconds = (now - timestamp).total_seconds()
    if age_seconds < 3600:
        return 1.5
    if age_seconds < 86400:
        return 1.2
    return 1.0


class VectorMemory:
    """
    Recency buffer plus semantic index behind one memory interface.

    Satisfies Memory, SemanticMemory and DocumentStore.

    Example:
        memory = VectorMemory(
            embedder=EmbeddingGenerator(api_key="sk-..."),
            store=VectorStore(Path("data/vectorstore")),
        )

        await memory.add(Message(role="user", content="My server runs Ubuntu"))

        related = await memory.search_semantic("which OS do I use?", limit=3)
        context = await memory.get_history_with_context("which OS?", 10, 5)
    """

    def __init__(
        self,
        embedder: Embedder,
        store: VectorStore | None = None,
        buffer: BufferMemory | None = None,
        min_score: float = 0.5
    ):
        self.embedder = embedder
        self.store = store or VectorStore()
        self.buffer = buffer or BufferMemory()
        self.min_score = min_score

    # ==========================================================================
    # Memory interface
    # ==========================================================================

    async def add(self, message: Message) -> None:
        """Buffer the turn, then embed and index it if it has content."""
        await self.buffer.add(message)

        if not message.content.strip():
            return

        metadata: dict[str, Any] = {
            "category": CONVERSATION_CATEGORY,
            "role": message.role,
            "timestamp": message.timestamp.isoformat(),
            "message": message.to_dict(),
        }
        try:
            await self.add_document(f"msg_{uuid.uuid4().hex}", message.content, metadata)
        except Exception as e:
            logger.warning(f"Turn kept in buffer only, indexing failed: {e}")

    async def get_history(self, limit: int = 0) -> list[Message]:
        return await self.buffer.get_history(limit)

    async def clear(self) -> None:
        """Clear the buffer and the indexed conversation turns."""
        await self.buffer.clear()
        removed = await asyncio.to_thread(
            self.store.delete_where, {"category": CONVERSATION_CATEGORY}
        )
        logger.info(f"Cleared memory ({removed} indexed turns)")

    def size(self) -> int:
        return self.buffer.size()

    # ==========================================================================
    # Semantic capability
    # ==========================================================================

    async def search_semantic(self, query: str, limit: int = 5) -> list[Message]:
        """
        Turns most related to the query, fresher turns first among equals.

        Falls back to the most recent buffered turns if the embedding or
        index call fails.
        """
        if limit <= 0:
            return []

        try:
            docs = await self.search_documents(
                query,
                limit=limit * 3,
                min_score=self.min_score,
                where={"category": CONVERSATION_CATEGORY},
            )
        except Exception as e:
            logger.warning(f"Semantic search failed, using recent turns: {e}")
            return await self.buffer.get_history(limit)

        now = datetime.now()
        ranked: list[tuple[float, Message]] = []
        for doc in docs:
            message = Message.from_dict(doc.metadata["message"])
            message.metadata = {**message.metadata, "similarity": doc.score}
            ranked.append(((doc.score or 0.0) * recency_boost(message.timestamp, now), message))

        ranked.sort(key=lambda item: (item[0], item[1].timestamp), reverse=True)
        return [message for _, message in ranked[:limit]]

    async def get_history_with_context(
        self,
        query: str,
        recent_limit: int = 10,
        semantic_limit: int = 5
    ) -> list[Message]:
        """
        Recent turns first, then related older turns not already included.
        """
        recent = await self.buffer.get_history(recent_limit)
        related = await self.search_semantic(query, semantic_limit)

        seen = {m.key() for m in recent}
        merged = list(recent)
        for message in related:
            if message.key() not in seen:
                seen.add(message.key())
                merged.append(message)
        return merged

    # ==========================================================================
    # Document capability
    # ==========================================================================

    async def add_document(self, doc_id: str, content: str, metadata: dict[str, Any]) -> None:
        """Embed and index a document. Raises on embedding or index failure."""
        embedding = await self.embedder.embed(content)
        document = VectorDocument(
            id=doc_id,
            content=content,
            embedding=list(embedding),
            metadata=metadata,
        )
        await asyncio.to_thread(self.store.add, document)

    async def search_documents(
        self,
        query: str,
        limit: int = 10,
        min_score: float = 0.0,
        where: dict[str, Any] | None = None
    ) -> list[VectorDocument]:
        embedding = await self.embedder.embed(query)
        return await asyncio.to_thread(
            self.store.search, list(embedding), limit, min_score, where
        )

    async def list_documents(
        self,
        where: dict[str, Any] | None = None,
        limit: int = 0
    ) -> list[VectorDocument]:
        return await asyncio.to_thread(self.store.scan, where, limit)

    def stats(self) -> dict[str, Any]:
        return {
            "type": "vector",
            "buffer_size": self.buffer.size(),
            "buffer_max_size": self.buffer.max_size,
            "indexed_turns": self.store.count({"category": CONVERSATION_CATEGORY}),
            "total_documents": len(self.store),
        }
