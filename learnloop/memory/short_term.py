"""
Short-Term Memory
=================

The recency tier: a bounded, ordered buffer of conversation turns.

- Lives only in RAM (cleared on restart)
- Keeps the most recent max_size turns, evicting the oldest first
- get_history(0) returns everything buffered, get_history(n) the last n

Several chat calls on one agent may run at once, in threads or in
interleaved tasks, so every access goes through a reader/writer lock:
readers share it, a writer holds it alone, and waiting writers are not
starved by a stream of readers.
"""

import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterator

from learnloop.tools import ToolCall


@dataclass
class Message:
    """
    A single conversation turn.

    Attributes:
        role: Who produced the turn ("system", "user", "assistant", "tool")
        content: The turn text
        tool_calls: Calls requested by an assistant turn
        tool_call_id: For tool turns, the call this result answers
        timestamp: When the turn was created
        metadata: Optional extra data (strategy, intent, correction flags)
    """
    role: str
    content: str
    tool_calls: list[ToolCall] = field(default_factory=list)
    tool_call_id: str | None = None
    timestamp: datetime = field(default_factory=datetime.now)
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        """Serializable form, used for persistence payloads."""
        data: dict[str, Any] = {
            "role": self.role,
            "content": self.content,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.tool_calls:
            data["tool_calls"] = [tc.to_dict() for tc in self.tool_calls]
        if self.tool_call_id:
            data["tool_call_id"] = self.tool_call_id
        if self.metadata:
            data["metadata"] = self.metadata
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Message":
        timestamp = data.get("timestamp")
        return cls(
            role=data["role"],
            content=data.get("content", ""),
            tool_calls=[ToolCall.from_dict(tc) for tc in data.get("tool_calls") or []],
            tool_call_id=data.get("tool_call_id"),
            timestamp=datetime.fromisoformat(timestamp) if timestamp else datetime.now(),
            metadata=dict(data.get("metadata") or {}),
        )

    def key(self) -> str:
        """Identity used when merging turns from different tiers."""
        return f"{self.role}:{self.content}"


class ReadWriteLock:
    """
    A writer-preferring reader/writer lock.

    Example:
        lock = ReadWriteLock()
        with lock.read():
            ...
        with lock.write():
            ...
    """

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._waiting_writers = 0

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._waiting_writers:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            self._waiting_writers += 1
            while self._writer or self._readers:
                self._cond.wait()
            self._waiting_writers -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class BufferMemory:
    """
    Fixed-capacity conversation buffer with FIFO eviction.

    Attributes:
        max_size: Maximum turns kept (default 100)

    Example:
        memory = BufferMemory(max_size=3)

        for text in ["A", "B", "C", "D"]:
            await memory.add(Message(role="user", content=text))

        [m.content for m in await memory.get_history()]  # ["B", "C", "D"]
    """

    def __init__(self, max_size: int = 100):
        if max_size <= 0:
            max_size = 100
        self.max_size = max_size
        self._messages: list[Message] = []
        self._lock = ReadWriteLock()

    async def add(self, message: Message) -> None:
        """Append a turn, evicting the oldest turns beyond max_size."""
        with self._lock.write():
            self._messages.append(message)
            if len(self._messages) > self.max_size:
                self._messages = self._messages[-self.max_size:]

    async def get_history(self, limit: int = 0) -> list[Message]:
        """
        Buffered turns in chronological order.

        Args:
            limit: Return only the last `limit` turns; 0 or less returns all
        """
        with self._lock.read():
            if limit <= 0 or limit >= len(self._messages):
                return list(self._messages)
            return self._messages[-limit:]

    async def clear(self) -> None:
        with self._lock.write():
            self._messages = []

    def size(self) -> int:
        with self._lock.read():
            return len(self._messages)

    def set_max_size(self, max_size: int) -> None:
        """Change the capacity, trimming the oldest turns if it shrank."""
        if max_size <= 0:
            return
        with self._lock.write():
            self.max_size = max_size
            if len(self._messages) > max_size:
                self._messages = self._messages[-max_size:]

    def stats(self) -> dict[str, Any]:
        return {"type": "buffer", "size": self.size(), "max_size": self.max_size}
