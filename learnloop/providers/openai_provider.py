"""
OpenAI Provider
===============

LLMProvider implementation on top of the official async OpenAI client.

Responsibilities:
1. Convert conversation turns to OpenAI chat messages
2. Attach tool definitions in OpenAI's function-calling format
3. Parse tool calls (JSON arguments) out of responses
4. Reassemble streamed tool-call fragments into complete calls
"""

import json
from typing import Any, AsyncIterator

from openai import AsyncOpenAI

from learnloop.memory.short_term import Message
from learnloop.providers.base import ChatOptions, LLMResponse, StreamChunk
from learnloop.tools import ToolCall
from learnloop.utils.logger import Logger

logger = Logger("OpenAI")


def _parse_arguments(raw: str | None) -> dict[str, Any]:
    if not raw:
        return {}
    try:
        arguments = json.loads(raw)
    except json.JSONDecodeError as e:
        logger.error(f"Failed to parse tool arguments: {e}")
        return {}
    return arguments if isinstance(arguments, dict) else {"value": arguments}


def to_openai_message(message: Message) -> dict:
    """Format one turn the way the chat completions API expects."""
    if message.role == "tool":
        return {
            "role": "tool",
            "tool_call_id": message.tool_call_id or "",
            "content": message.content,
        }

    data: dict[str, Any] = {"role": message.role, "content": message.content}
    if message.role == "assistant" and message.tool_calls:
        data["content"] = message.content or None
        data["tool_calls"] = [
            {
                "id": tc.id,
                "type": "function",
                "function": {
                    "name": tc.name,
                    "arguments": json.dumps(tc.arguments),
                },
            }
            for tc in message.tool_calls
        ]
    return data


class OpenAIProvider:
    """
    Chat completions through OpenAI (or an OpenAI-compatible endpoint).

    Example:
        provider = OpenAIProvider(api_key="sk-...", model="gpt-4o-mini")

        response = await provider.chat(
            [Message(role="user", content="What is 2 + 2?")],
            ChatOptions(system_prompt="You are terse.")
        )
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str = "gpt-4o-mini",
        base_url: str | None = None,
        client: AsyncOpenAI | None = None
    ):
        """
        Raises:
            ValueError: If neither a client nor an API key is provided
        """
        if client is None:
            if not api_key:
                raise ValueError(
                    "Missing OpenAI API key.\n"
                    "Please set OPENAI_API_KEY in your .env file."
                )
            client = AsyncOpenAI(api_key=api_key, base_url=base_url)

        self.client = client
        self.model = model
        logger.info(f"OpenAI provider initialized with model: {model}")

    def _build_request(self, messages: list[Message], options: ChatOptions) -> dict[str, Any]:
        payload = [to_openai_message(m) for m in messages]
        if options.system_prompt and not (payload and payload[0]["role"] == "system"):
            payload.insert(0, {"role": "system", "content": options.system_prompt})

        request: dict[str, Any] = {
            "model": self.model,
            "messages": payload,
            "temperature": options.temperature,
            "max_tokens": options.max_tokens,
        }
        if options.tools:
            request["tools"] = [{"type": "function", "function": t} for t in options.tools]
            request["tool_choice"] = "auto"
        return request

    async def chat(self, messages: list[Message], options: ChatOptions) -> LLMResponse:
        response = await self.client.chat.completions.create(
            **self._build_request(messages, options)
        )

        choice = response.choices[0]
        tool_calls = [
            ToolCall(
                id=tc.id,
                name=tc.function.name,
                arguments=_parse_arguments(tc.function.arguments),
            )
            for tc in choice.message.tool_calls or []
        ]

        metadata: dict[str, Any] = {"model": response.model, "finish_reason": choice.finish_reason}
        if response.usage:
            metadata["tokens_used"] = response.usage.total_tokens

        return LLMResponse(
            content=choice.message.content or "",
            tool_calls=tool_calls,
            metadata=metadata,
        )

    async def stream(self, messages: list[Message], options: ChatOptions) -> AsyncIterator[StreamChunk]:
        stream = await self.client.chat.completions.create(
            **self._build_request(messages, options),
            stream=True,
        )

        # Tool calls arrive as fragments keyed by index
        partial: dict[int, dict[str, str]] = {}
        finish_reason = None

        async for chunk in stream:
            if not chunk.choices:
                continue
            choice = chunk.choices[0]
            delta = choice.delta

            if delta.content:
                yield StreamChunk(content=delta.content)

            for fragment in delta.tool_calls or []:
                entry = partial.setdefault(fragment.index, {"id": "", "name": "", "arguments": ""})
                if fragment.id:
                    entry["id"] = fragment.id
                if fragment.function and fragment.function.name:
                    entry["name"] += fragment.function.name
                if fragment.function and fragment.function.arguments:
                    entry["arguments"] += fragment.function.arguments

            if choice.finish_reason:
                finish_reason = choice.finish_reason

        tool_calls = [
            ToolCall(
                id=entry["id"],
                name=entry["name"],
                arguments=_parse_arguments(entry["arguments"]),
            )
            for _, entry in sorted(partial.items())
        ]
        yield StreamChunk(
            tool_calls=tool_calls,
            done=True,
            metadata={"finish_reason": finish_reason},
        )
