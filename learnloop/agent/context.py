"""
Context Assembly
================

Assembles what the LLM sees on each call:
- System prompt (configured persona)
- Related earlier conversation (semantic memory only)
- Conversation history
- Tool definitions

The history comes from the recency tier. When the memory can also search
by meaning, turns related to the current query that are no longer in the
recent window are summarized into the system prompt:

    ## Relevant earlier conversation
    - user: My server runs Ubuntu 22.04
    - assistant: Noted, I'll keep that in mind.

A failing semantic lookup never fails assembly; the prompt is built
without the section. Tool turns whose assistant turn was already evicted
from the recency tier are left out of the history.
"""

from dataclasses import dataclass, field

from learnloop.memory.base import Memory, SemanticMemory
from learnloop.memory.short_term import Message
from learnloop.providers.base import ChatOptions
from learnloop.tools import ToolRegistry
from learnloop.utils.logger import Logger

logger = Logger("Context")


def _drop_orphan_tool_turns(history: list[Message]) -> list[Message]:
    """
    Skip tool turns at the start of the window.

    Eviction from the recency tier can remove an assistant turn while
    keeping the tool results that answered it; a tool turn must follow
    the assistant turn that requested it.
    """
    start = 0
    while start < len(history) and history[start].role == "tool":
        start += 1
    if start:
        logger.debug(f"Dropped {start} tool turn(s) without their assistant turn")
    return history[start:]


@dataclass
class AssembledContext:
    """
    The fully assembled context for the LLM.

    Attributes:
        system_message: The system prompt with any related context
        messages: Conversation history, oldest first
        tools: Tool definitions for the request
        related: Earlier turns pulled in by semantic search
    """
    system_message: str
    messages: list[Message]
    tools: list[dict] = field(default_factory=list)
    related: list[Message] = field(default_factory=list)

    def to_options(self, temperature: float, max_tokens: int, with_tools: bool = True) -> ChatOptions:
        return ChatOptions(
            system_prompt=self.system_message,
            temperature=temperature,
            max_tokens=max_tokens,
            tools=list(self.tools) if with_tools else [],
        )


class ContextAssembler:
    """
    Assembles context for LLM requests.

    Example:
        assembler = ContextAssembler(memory, registry, system_prompt="You are helpful.")

        context = await assembler.assemble("What OS does my server run?")
        response = await provider.chat(
            context.messages,
            context.to_options(temperature=0.7, max_tokens=2000)
        )
    """

    def __init__(
        self,
        memory: Memory,
        registry: ToolRegistry | None = None,
        system_prompt: str = "",
        semantic_limit: int = 3
    ):
        self.memory = memory
        self.registry = registry
        self.system_prompt = system_prompt
        self.semantic_limit = semantic_limit

    async def assemble(self, query: str) -> AssembledContext:
        """
        Build the context for a query already appended to memory.

        Args:
            query: The current user message (used for semantic lookup)
        """
        history = _drop_orphan_tool_turns(await self.memory.get_history())
        related = await self._related(query, history)

        return AssembledContext(
            system_message=self._build_system_message(related),
            messages=history,
            tools=self.registry.definitions() if self.registry else [],
            related=related,
        )

    async def _related(self, query: str, history: list[Message]) -> list[Message]:
        if self.semantic_limit <= 0 or not isinstance(self.memory, SemanticMemory):
            return []

        try:
            matches = await self.memory.search_semantic(query, self.semantic_limit + len(history))
        except Exception as e:
            logger.warning(f"Semantic context unavailable: {e}")
            return []

        seen = {m.key() for m in history}
        related = []
        for message in matches:
            if message.key() not in seen and message.role in ("user", "assistant"):
                seen.add(message.key())
                related.append(message)
            if len(related) >= self.semantic_limit:
                break

        if related:
            logger.debug(f"Added {len(related)} related earlier turns")
        return related

    def _build_system_message(self, related: list[Message]) -> str:
        sections = [self.system_prompt.strip()]

        if related:
            lines = ["## Relevant earlier conversation"]
            for message in related:
                lines.append(f"- {message.role}: {message.content[:200]}")
            sections.append("\n".join(lines))

        return "\n\n".join(s for s in sections if s)
