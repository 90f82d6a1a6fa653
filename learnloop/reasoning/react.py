"""
Tool Loop (ReAct)
=================

The bounded think → act → observe loop.

    ┌──► LLM call (with tool definitions)
    │         │
    │    tool calls? ── no ──► final answer
    │         │
    │        yes
    │         ▼
    │    assistant turn with the calls → memory
    │    execute each call, in order   → one tool turn each → memory
    └─────────┘

At most max_iterations LLM calls are made; running out without a final
answer raises MaxIterationsError. Every turn the loop produces is
written to memory as it happens and also returned in LoopResult.turns.

ReActStrategy runs the same loop with instructions that push the model
to reason, use tools and then answer.
"""

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from learnloop.errors import MaxIterationsError, ProviderError, ReasoningError
from learnloop.memory.base import Memory
from learnloop.memory.short_term import Message
from learnloop.providers.base import ChatOptions, LLMProvider, LLMResponse
from learnloop.utils.logger import Logger, log_iteration

if TYPE_CHECKING:
    from learnloop.agent.tools_executor import ToolExecutor

logger = Logger("Agent").child("Loop")

REACT_INSTRUCTIONS = (
    "Work in cycles of thought and action. When you need information or a "
    "computation, call one of the available tools and wait for its result. "
    "When you have everything you need, reply with the final answer and no "
    "tool calls."
)


@dataclass
class LoopResult:
    answer: str
    turns: list[Message] = field(default_factory=list)
    iterations: int = 0
    tokens_used: int = 0

    def last_tool_call(self):
        """First call of the most recent assistant turn that requested tools."""
        for turn in reversed(self.turns):
            if turn.role == "assistant" and turn.tool_calls:
                return turn.tool_calls[0]
        return None


async def call_provider(provider: LLMProvider, messages: list[Message], options: ChatOptions) -> LLMResponse:
    """Call the provider, reporting any failure as ProviderError."""
    try:
        return await provider.chat(messages, options)
    except ProviderError:
        raise
    except Exception as e:
        raise ProviderError(f"LLM call failed: {e}", e) from e


class ToolLoop:
    """
    Example:
        loop = ToolLoop(provider, ToolExecutor(registry), memory, max_iterations=10)
        result = await loop.run(history, options)
        print(result.answer, result.iterations)
    """

    def __init__(
        self,
        provider: LLMProvider,
        executor: "ToolExecutor",
        memory: Memory,
        max_iterations: int = 10
    ):
        self.provider = provider
        self.executor = executor
        self.memory = memory
        self.max_iterations = max_iterations

    async def run(
        self,
        messages: list[Message],
        options: ChatOptions,
        first_response: LLMResponse | None = None
    ) -> LoopResult:
        """
        Drive the loop until the model answers without tool calls.

        Args:
            messages: Conversation so far; extended in place
            options: Request options, including tool definitions
            first_response: A response already obtained for `messages`,
                counted as the first iteration

        Raises:
            ProviderError: If an LLM call failed
            MaxIterationsError: If max_iterations calls produced no answer
        """
        result = LoopResult(answer="")

        for iteration in range(1, self.max_iterations + 1):
            log_iteration(logger, iteration, self.max_iterations)
            result.iterations = iteration

            if iteration == 1 and first_response is not None:
                response = first_response
            else:
                response = await call_provider(self.provider, messages, options)
                result.tokens_used += int(response.metadata.get("tokens_used", 0) or 0)

            if not response.tool_calls:
                result.answer = response.content
                return result

            assistant = Message(
                role="assistant",
                content=response.content,
                tool_calls=list(response.tool_calls),
            )
            await self._append(assistant, messages, result)

            for outcome in await self.executor.execute_all(response.tool_calls):
                await self._append(outcome.to_message(), messages, result)

        logger.warning(f"No final answer after {self.max_iterations} iterations")
        raise MaxIterationsError(self.max_iterations)

    async def _append(self, message: Message, messages: list[Message], result: LoopResult) -> None:
        await self.memory.add(message)
        messages.append(message)
        result.turns.append(message)


class ReActStrategy:
    """The tool loop with reason-then-act instructions."""

    def __init__(self, loop: ToolLoop):
        self.loop = loop

    async def run(self, messages: list[Message], options: ChatOptions) -> LoopResult:
        """
        Raises:
            ProviderError: If an LLM call failed
            MaxIterationsError: If the loop ran out of iterations
            ReasoningError: If the loop ended with an empty answer
        """
        react_options = ChatOptions(
            system_prompt=f"{options.system_prompt}\n\n{REACT_INSTRUCTIONS}".strip(),
            temperature=options.temperature,
            max_tokens=options.max_tokens,
            tools=options.tools,
        )
        result = await self.loop.run(messages, react_options)
        if not result.answer.strip():
            raise ReasoningError("tool loop finished without an answer")
        return result
