"""
LLM Providers
=============

The agent talks to a language model only through the LLMProvider
protocol:

    chat(messages, options)   -> LLMResponse (content, tool_calls, metadata)
    stream(messages, options) -> async iterator of StreamChunk

Streaming providers yield text as it arrives and deliver any requested
tool calls, fully assembled, on the final chunk (done=True).

OpenAIProvider is the bundled implementation. Anything else with the
same two methods works, including the scripted stubs used in tests.
"""

from learnloop.providers.base import ChatOptions, LLMProvider, LLMResponse, StreamChunk
from learnloop.providers.openai_provider import OpenAIProvider

__all__ = [
    "ChatOptions",
    "LLMProvider",
    "LLMResponse",
    "OpenAIProvider",
    "StreamChunk",
]
