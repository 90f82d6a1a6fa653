"""
Memory Interfaces
=================

The contracts every memory implementation and its optional capabilities
satisfy. Components check capabilities with isinstance() against these
protocols instead of looking at concrete classes:

    if isinstance(memory, SemanticMemory):
        related = await memory.search_semantic(query, limit=3)

    if isinstance(memory, DocumentStore):
        store = ExperienceStore(memory)
"""

from typing import Any, Protocol, runtime_checkable

from learnloop.memory.short_term import Message
from learnloop.vector.vectorstore import VectorDocument


@runtime_checkable
class Memory(Protocol):
    """Ordered conversation storage."""

    async def add(self, message: Message) -> None: ...

    async def get_history(self, limit: int = 0) -> list[Message]: ...

    async def clear(self) -> None: ...

    def size(self) -> int: ...


@runtime_checkable
class SemanticMemory(Memory, Protocol):
    """Memory that can also retrieve turns by meaning."""

    async def search_semantic(self, query: str, limit: int = 5) -> list[Message]: ...

    async def get_history_with_context(
        self,
        query: str,
        recent_limit: int = 10,
        semantic_limit: int = 5
    ) -> list[Message]: ...


@runtime_checkable
class DocumentStore(Protocol):
    """
    Persistent, embedded document storage.

    This is the backing the ExperienceStore writes through. Documents
    carry flat metadata that `where` filters match by equality.
    """

    async def add_document(self, doc_id: str, content: str, metadata: dict[str, Any]) -> None: ...

    async def search_documents(
        self,
        query: str,
        limit: int = 10,
        min_score: float = 0.0,
        where: dict[str, Any] | None = None
    ) -> list[VectorDocument]: ...

    async def list_documents(
        self,
        where: dict[str, Any] | None = None,
        limit: int = 0
    ) -> list[VectorDocument]: ...
