"""
Memory System
=============

Two tiers behind one interface:

1. RECENCY: BufferMemory, a bounded FIFO of the latest turns (in RAM)
2. SEMANTIC: VectorMemory, which adds an embedded index on top of a
   BufferMemory so older turns can be found by meaning

Components depend on the protocols in memory.base, and discover the
optional capabilities with isinstance():

    Memory          add / get_history / clear / size
    SemanticMemory  + search_semantic / get_history_with_context
    DocumentStore   add_document / search_documents / list_documents

Usage:
    from learnloop.memory import BufferMemory, Message

    memory = BufferMemory(max_size=50)
    await memory.add(Message(role="user", content="Hello!"))
    history = await memory.get_history()
"""

from learnloop.memory.short_term import BufferMemory, Message, ReadWriteLock
from learnloop.memory.base import DocumentStore, Memory, SemanticMemory
from learnloop.memory.long_term import VectorMemory, recency_boost

__all__ = [
    "BufferMemory",
    "DocumentStore",
    "Memory",
    "Message",
    "ReadWriteLock",
    "SemanticMemory",
    "VectorMemory",
    "recency_boost",
]
