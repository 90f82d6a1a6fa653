"""
Chain-of-Thought
================

One LLM call, no tools, asked to reason in numbered steps:

    Step 1: ...
    Step 2: ...
    Answer: ...

The reply is parsed into steps and a final answer. A reply without any
step, with more than max_steps steps, or without an answer is a
ReasoningError, which the Agent answers by falling back to the simple
strategy.
"""

import re
from dataclasses import dataclass, field

from learnloop.errors import ProviderError, ReasoningError
from learnloop.memory.short_term import Message
from learnloop.providers.base import ChatOptions, LLMProvider
from learnloop.utils.logger import Logger

logger = Logger("Agent").child("CoT")

_STEP = re.compile(r"^\s*\**step\s+(\d+)\**\s*[:.)]\s*(.+)$", re.IGNORECASE)
_ANSWER = re.compile(r"^\s*\**(?:final\s+)?answer\**\s*:\s*(.+)$", re.IGNORECASE)

COT_INSTRUCTIONS = (
    "Think through the problem step by step before answering.\n"
    "Write each reasoning step on its own line as 'Step N: ...'.\n"
    "Finish with a single line 'Answer: ...' containing the final answer."
)


@dataclass
class ReasoningStep:
    number: int
    thought: str


@dataclass
class ChainOfThoughtResult:
    answer: str
    steps: list[ReasoningStep] = field(default_factory=list)
    tokens_used: int = 0


class ChainOfThought:
    """
    Example:
        cot = ChainOfThought(provider, max_steps=10)
        result = await cot.reason(history, options)
        print(len(result.steps), result.answer)
    """

    def __init__(self, provider: LLMProvider, max_steps: int = 10):
        self.provider = provider
        self.max_steps = max_steps

    async def reason(self, history: list[Message], options: ChatOptions) -> ChainOfThoughtResult:
        """
        Reason over the conversation, whose last turn is the question.

        Raises:
            ProviderError: If the LLM call failed
            ReasoningError: If the reply could not be parsed
        """
        cot_options = ChatOptions(
            system_prompt=f"{options.system_prompt}\n\n{COT_INSTRUCTIONS}".strip(),
            temperature=options.temperature,
            max_tokens=options.max_tokens,
        )

        try:
            response = await self.provider.chat(history, cot_options)
        except ProviderError:
            raise
        except Exception as e:
            raise ProviderError(f"LLM call failed: {e}", e) from e

        result = self.parse(response.content)
        result.tokens_used = int(response.metadata.get("tokens_used", 0) or 0)
        logger.debug(f"Reasoned in {len(result.steps)} steps")
        return result

    def parse(self, content: str) -> ChainOfThoughtResult:
        steps: list[ReasoningStep] = []
        answer = ""

        for line in content.splitlines():
            step = _STEP.match(line)
            if step:
                steps.append(ReasoningStep(int(step.group(1)), step.group(2).strip()))
                continue
            final = _ANSWER.match(line)
            if final:
                answer = final.group(1).strip()

        if not steps:
            raise ReasoningError("no reasoning steps found in response")
        if len(steps) > self.max_steps:
            raise ReasoningError(f"reasoning exceeded {self.max_steps} steps")
        if not answer:
            raise ReasoningError("no final answer found in response")

        return ChainOfThoughtResult(answer=answer, steps=steps)
