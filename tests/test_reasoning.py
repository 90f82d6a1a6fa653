from __future__ import annotations

import pytest

from learnloop.agent.tools_executor import ToolExecutor
from learnloop.errors import MaxIterationsError, ProviderError, ReasoningError, ReflectionError
from learnloop.memory import BufferMemory, Message
from learnloop.providers import ChatOptions, LLMResponse
from learnloop.reasoning import ChainOfThought, ReflectionResult, Reflector, ToolLoop, Verification
from learnloop.tools import ToolRegistry, ToolResult
from tests.stubs import StubProvider, make_tool, tool_response


def _question(text: str = "What is 6 * 7?") -> list[Message]:
    return [Message(role="user", content=text)]


# ==============================================================================
# Chain-of-thought
# ==============================================================================

@pytest.mark.asyncio
async def test_cot_parses_steps_and_answer() -> None:
    provider = StubProvider([LLMResponse(
        content="Step 1: Six sevens.\nStep 2: 6 * 7 = 42.\nAnswer: 42",
        metadata={"tokens_used": 30},
    )])

    result = await ChainOfThought(provider).reason(_question(), ChatOptions(system_prompt="Be brief."))

    assert result.answer == "42"
    assert [s.number for s in result.steps] == [1, 2]
    assert result.tokens_used == 30
    _, options = provider.calls[0]
    assert options.tools == []
    assert options.system_prompt.startswith("Be brief.")


@pytest.mark.parametrize(
    "content",
    [
        "The answer is 42.",
        "Step 1: think hard.",
        "\n".join(f"Step {i}: more" for i in range(1, 5)) + "\nAnswer: 42",
    ],
)
def test_cot_rejects_malformed_reasoning(content: str) -> None:
    with pytest.raises(ReasoningError):
        ChainOfThought(StubProvider(), max_steps=3).parse(content)


@pytest.mark.asyncio
async def test_cot_wraps_provider_failures() -> None:
    provider = StubProvider([RuntimeError("connection reset")])
    with pytest.raises(ProviderError):
        await ChainOfThought(provider).reason(_question(), ChatOptions())


# ==============================================================================
# Tool loop
# ==============================================================================

@pytest.mark.asyncio
async def test_tool_calls_run_in_order_and_are_remembered() -> None:
    order: list[str] = []
    registry = ToolRegistry([
        make_tool("first", lambda p: order.append("first") or "one"),
        make_tool("second", lambda p: order.append("second") or "two"),
    ])
    provider = StubProvider([
        tool_response(("first", {}), ("second", {})),
        LLMResponse(content="done"),
    ])
    memory = BufferMemory()
    loop = ToolLoop(provider, ToolExecutor(registry), memory, max_iterations=5)

    result = await loop.run(_question(), ChatOptions(tools=registry.definitions()))

    assert result.answer == "done"
    assert result.iterations == 2
    assert order == ["first", "second"]
    roles = [m.role for m in await memory.get_history()]
    assert roles == ["assistant", "tool", "tool"]
    second_call_messages, _ = provider.calls[1]
    assert [m.content for m in second_call_messages if m.role == "tool"] == ["one", "two"]
    assert result.last_tool_call().name == "first"


@pytest.mark.asyncio
async def test_tool_loop_stops_at_max_iterations() -> None:
    registry = ToolRegistry([make_tool("ping", lambda p: "pong")])
    provider = StubProvider(default=tool_response(("ping", {})))
    loop = ToolLoop(provider, ToolExecutor(registry), BufferMemory(), max_iterations=3)

    with pytest.raises(MaxIterationsError) as info:
        await loop.run(_question(), ChatOptions())

    assert str(info.value) == "max iterations (3) reached"
    assert len(provider.calls) == 3


@pytest.mark.asyncio
async def test_first_response_counts_as_first_iteration() -> None:
    registry = ToolRegistry([make_tool("ping", lambda p: "pong")])
    provider = StubProvider([LLMResponse(content="pong received")])
    loop = ToolLoop(provider, ToolExecutor(registry), BufferMemory(), max_iterations=2)

    result = await loop.run(_question(), ChatOptions(), first_response=tool_response(("ping", {})))

    assert result.answer == "pong received"
    assert result.iterations == 2
    assert len(provider.calls) == 1


# ==============================================================================
# Reflection
# ==============================================================================

def test_reflection_confidence_formula() -> None:
    result = ReflectionResult(
        confidence=0.0,
        initial_answer="a",
        final_answer="a",
        concerns=["c1", "c2"],
        verifications=[Verification("fact_check", True), Verification("calculation_verify", False)],
    )
    # 1/2 passed, minus 0.05 per concern
    assert Reflector.confidence(result) == pytest.approx(0.4)


@pytest.mark.asyncio
async def test_no_concerns_means_high_confidence() -> None:
    provider = StubProvider([LLMResponse(content="No concerns identified")])

    result = await Reflector(provider).reflect("What is 2 + 2?", "4")

    assert result.confidence == pytest.approx(0.95)
    assert result.was_corrected is False
    assert len(provider.calls) == 1


@pytest.mark.asyncio
async def test_failed_calculation_check_produces_correction() -> None:
    registry = ToolRegistry([make_tool("math_calculate", lambda p: ToolResult(success=True, data={"result": 345}))])
    provider = StubProvider([
        LLMResponse(content="1. The calculation result may be wrong"),
        LLMResponse(content="15 * 23 = 345"),
    ])

    result = await Reflector(provider, registry, threshold=0.7).reflect("What is 15 * 23?", "15 * 23 = 335")

    assert [v.method for v in result.verifications] == ["calculation_verify"]
    assert result.verifications[0].passed is False
    assert result.confidence < 0.7
    assert result.was_corrected is True
    assert result.final_answer == "15 * 23 = 345"


@pytest.mark.asyncio
async def test_concern_failure_raises_reflection_error() -> None:
    with pytest.raises(ReflectionError):
        await Reflector(StubProvider([RuntimeError("down")])).reflect("q", "a")
