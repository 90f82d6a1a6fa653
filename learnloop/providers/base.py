"""
Provider types: request options, responses, stream chunks and the
LLMProvider protocol.
"""

from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Protocol, runtime_checkable

from learnloop.memory.short_term import Message
from learnloop.tools import ToolCall


@dataclass
class ChatOptions:
    """
    Per-request generation options.

    Attributes:
        system_prompt: Prepended as a system turn when set
        temperature: Sampling temperature
        max_tokens: Completion token limit
        tools: Tool definitions (name, description, parameters)
    """
    system_prompt: str = ""
    temperature: float = 0.7
    max_tokens: int = 2000
    tools: list[dict] = field(default_factory=list)


@dataclass
class LLMResponse:
    """A complete model reply."""
    content: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)


@dataclass
class StreamChunk:
    """A piece of a streamed reply."""
    content: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    done: bool = False
    metadata: dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class LLMProvider(Protocol):
    """The language model capability the agent depends on."""

    async def chat(self, messages: list[Message], options: ChatOptions) -> LLMResponse: ...

    def stream(self, messages: list[Message], options: ChatOptions) -> AsyncIterator[StreamChunk]: ...


