"""
Experience Store
================

An append-only log of completed agent interactions, the raw material
the tool selector and the error pattern analyzer learn from.

One Experience is written per finished chat call (successful or not).
Records are stored through a DocumentStore (normally the VectorMemory
index) with the query text embedded, so they can be found three ways:

    by similarity   ExperienceFilters(query="what is 12 * 7")
    by outcome      ExperienceFilters(success=False)
    by recency      ExperienceFilters()            newest first

Equality filters (intent, tool, success, ...) are pushed down to the
store as metadata filters; time, confidence and feedback filters are
applied afterwards.

Degraded mode:
    Without a DocumentStore the store is unavailable: record() returns
    False and logs a warning, queries return nothing. Backing store
    errors are raised as LearningError so callers can tell a lost write
    from an empty result.
"""

import json
import uuid
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime
from typing import Any

from learnloop.errors import LearningError
from learnloop.memory.base import DocumentStore
from learnloop.vector.vectorstore import VectorDocument
from learnloop.utils.logger import Logger

logger = Logger("ExperienceStore")

EXPERIENCE_CATEGORY = "experience"

FEEDBACK_NEGATIVE = -1
FEEDBACK_NEUTRAL = 0
FEEDBACK_POSITIVE = 1


def new_experience_id() -> str:
    return f"exp_{uuid.uuid4().hex}"


@dataclass(frozen=True)
class Experience:
    """
    One completed interaction and its outcome.

    Attributes:
        id: Unique identifier
        timestamp: When the call completed
        query: The user's message
        response: The final answer ("" on failure)
        success: Whether the call produced an answer
        error: Error text, non-empty exactly when success is False
        error_type: Coarse classification of the error (see classify_error)
        intent: Detected intent of the query
        reasoning_mode: Strategy that produced the answer
        tool_called: First tool of the last tool-calling turn, if any
        arguments: Arguments of that tool call
        latency_ms: Wall-clock duration of the call
        confidence: Reflection confidence, or 1.0/0.0 when not reflected
        was_reflected: Whether reflection ran
        was_corrected: Whether reflection replaced the answer
        conversation_id: Conversation the call belongs to
        tokens_used: Tokens reported by the provider, if any
        metadata: Free-form extra data
        user_feedback: -1, 0 or 1 once the user rated the answer
        correction: Answer the user said would have been right
    """
    query: str
    success: bool
    id: str = field(default_factory=new_experience_id)
    timestamp: datetime = field(default_factory=datetime.now)
    response: str = ""
    error: str = ""
    error_type: str = ""
    intent: str = ""
    reasoning_mode: str = ""
    tool_called: str = ""
    arguments: dict[str, Any] = field(default_factory=dict)
    latency_ms: int = 0
    confidence: float = 0.0
    was_reflected: bool = False
    was_corrected: bool = False
    conversation_id: str = ""
    tokens_used: int = 0
    metadata: dict[str, Any] = field(default_factory=dict)
    user_feedback: int | None = None
    correction: str = ""

    def validate(self) -> None:
        """
        Raises:
            ValueError: If the record breaks an outcome invariant
        """
        if not self.id:
            raise ValueError("experience ID is required")
        if not self.success and not self.error:
            raise ValueError("failed experience must carry an error")
        if self.success and self.error:
            raise ValueError("successful experience must not carry an error")
        if self.latency_ms < 0:
            raise ValueError("latency_ms must be >= 0")
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError("confidence must be within [0, 1]")
        if self.user_feedback not in (None, FEEDBACK_NEGATIVE, FEEDBACK_NEUTRAL, FEEDBACK_POSITIVE):
            raise ValueError("user_feedback must be -1, 0 or 1")

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Experience":
        values = dict(data)
        values["timestamp"] = datetime.fromisoformat(values["timestamp"])
        known = cls.__dataclass_fields__.keys()
        return cls(**{k: v for k, v in values.items() if k in known})


@dataclass
class ExperienceFilters:
    """
    Criteria for ExperienceStore.query().

    With `query` set, results are ranked by similarity (best first) and
    `limit` defaults to 10. Without it, results are newest first and a
    limit of 0 means no limit.
    """
    query: str = ""
    min_similarity: float = 0.0
    success: bool | None = None
    intent: str = ""
    reasoning_mode: str = ""
    conversation_id: str = ""
    tool_used: str = ""
    error_type: str = ""
    start_time: datetime | None = None
    end_time: datetime | None = None
    min_confidence: float = 0.0
    with_feedback: bool = False
    limit: int = 0
    offset: int = 0

    def where(self) -> dict[str, Any]:
        """Equality filters the backing store can apply itself."""
        where: dict[str, Any] = {"category": EXPERIENCE_CATEGORY}
        if self.success is not None:
            where["success"] = self.success
        if self.intent:
            where["intent"] = self.intent
        if self.reasoning_mode:
            where["reasoning_mode"] = self.reasoning_mode
        if self.conversation_id:
            where["conversation_id"] = self.conversation_id
        if self.tool_used:
            where["tool_called"] = self.tool_used
        if self.error_type:
            where["error_type"] = self.error_type
        return where

    def matches(self, exp: Experience) -> bool:
        """Filters applied after retrieval."""
        if self.start_time and exp.timestamp < self.start_time:
            return False
        if self.end_time and exp.timestamp > self.end_time:
            return False
        if exp.confidence < self.min_confidence:
            return False
        if self.with_feedback and exp.user_feedback is None:
            return False
        return True


class ExperienceStore:
    """
    Records and retrieves Experiences.

    Example:
        store = ExperienceStore(vector_memory)

        await store.record(Experience(query="2 + 2?", success=True, response="4"))

        failures = await store.get_all_failures(limit=100)
        similar = await store.query(ExperienceFilters(
            query="add two numbers", min_similarity=0.75, success=True
        ))
    """

    def __init__(self, backing: DocumentStore | None):
        if backing is not None and not isinstance(backing, DocumentStore):
            logger.warning(
                f"{type(backing).__name__} cannot store documents, experiences will not persist"
            )
            backing = None
        self.backing = backing
        self._warned = False

    @property
    def available(self) -> bool:
        """False when running without persistence."""
        return self.backing is not None

    def _warn_unavailable(self) -> None:
        if not self._warned:
            logger.warning("No persistent backing store, experiences are not recorded")
            self._warned = True

    async def record(self, experience: Experience) -> bool:
        """
        Store an experience.

        Returns:
            True if stored, False when running without persistence

        Raises:
            LearningError: If the record is invalid or the write failed
        """
        try:
            experience.validate()
        except ValueError as e:
            raise LearningError(f"invalid experience: {e}") from e

        if self.backing is None:
            self._warn_unavailable()
            return False

        metadata = {
            "category": EXPERIENCE_CATEGORY,
            "exp_id": experience.id,
            "timestamp": experience.timestamp.isoformat(),
            "intent": experience.intent,
            "reasoning_mode": experience.reasoning_mode,
            "conversation_id": experience.conversation_id,
            "success": experience.success,
            "tool_called": experience.tool_called,
            "error_type": experience.error_type,
            "experience": json.dumps(experience.to_dict(), default=str),
        }
        # The query text is what similarity searches are made against
        content = experience.query or experience.error or experience.id

        try:
            await self.backing.add_document(experience.id, content, metadata)
        except Exception as e:
            raise LearningError(f"failed to store experience: {e}") from e

        logger.debug(f"Recorded experience {experience.id} (success={experience.success})")
        return True

    async def query(self, filters: ExperienceFilters | None = None) -> list[Experience]:
        """
        Experiences matching the filters.

        Raises:
            LearningError: If the backing store could not be read
        """
        filters = filters or ExperienceFilters()
        if self.backing is None:
            return []

        try:
            if filters.query:
                limit = filters.limit or 10
                docs = await self.backing.search_documents(
                    filters.query,
                    limit=(limit + filters.offset) * 3,
                    min_score=filters.min_similarity,
                    where=filters.where(),
                )
            else:
                limit = filters.limit
                docs = await self.backing.list_documents(where=filters.where())
        except Exception as e:
            raise LearningError(f"experience query failed: {e}") from e

        results = [exp for exp in self._decode(docs) if filters.matches(exp)]
        results = results[filters.offset:]
        if limit > 0:
            results = results[:limit]
        return results

    async def get(self, experience_id: str) -> Experience | None:
        matches = await self._list({"category": EXPERIENCE_CATEGORY, "exp_id": experience_id})
        return matches[0] if matches else None

    async def get_all_failures(self, limit: int = 500) -> list[Experience]:
        """The most recent failed experiences, newest first."""
        return await self.query(ExperienceFilters(success=False, limit=limit))

    async def count(self) -> int:
        return len(await self._list({"category": EXPERIENCE_CATEGORY}))

    async def add_feedback(
        self,
        experience_id: str,
        rating: int,
        correction: str = ""
    ) -> Experience:
        """
        Attach user feedback to a stored experience.

        The outcome fields are never changed; the record is re-written
        with the feedback fields set.

        Raises:
            LearningError: If the experience does not exist or the write failed
        """
        experience = await self.get(experience_id)
        if experience is None:
            raise LearningError(f"experience {experience_id} not found")

        revised = replace(experience, user_feedback=rating, correction=correction)
        await self.record(revised)
        return revised

    async def _list(self, where: dict[str, Any]) -> list[Experience]:
        if self.backing is None:
            return []
        try:
            docs = await self.backing.list_documents(where=where)
        except Exception as e:
            raise LearningError(f"experience query failed: {e}") from e
        return self._decode(docs)

    def _decode(self, docs: list[VectorDocument]) -> list[Experience]:
        experiences = []
        for doc in docs:
            try:
                experiences.append(Experience.from_dict(json.loads(doc.metadata["experience"])))
            except (KeyError, TypeError, ValueError) as e:
                logger.debug(f"Skipping unreadable experience {doc.id}: {e}")
        return experiences
