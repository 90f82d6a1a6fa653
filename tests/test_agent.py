from __future__ import annotations

import asyncio

import pytest

from learnloop.agent import Agent
from learnloop.errors import MaxIterationsError, ProviderError
from learnloop.learning import Experience, ExperienceFilters
from learnloop.memory import BufferMemory, Message
from learnloop.providers import LLMResponse, StreamChunk
from learnloop.tools import ToolCall, ToolRegistry
from learnloop.utils.config import AgentConfig
from tests.stubs import StubProvider, StubReflector, make_tool, make_vector_memory, tool_response


def _agent(provider: StubProvider, *, tools=(), memory=None, reflector=None, **config) -> Agent:
    config.setdefault("enable_reflection", False)
    return Agent(
        provider=provider,
        registry=ToolRegistry(list(tools)),
        memory=memory if memory is not None else make_vector_memory(),
        config=AgentConfig(**config),
        reflector=reflector,
    )


async def _experiences(agent: Agent) -> list[Experience]:
    await agent.flush_learning()
    return await agent.experience_store.query(ExperienceFilters())


def _ping():
    return make_tool("ping", lambda params: "pong")


# ==============================================================================
# Tool loop
# ==============================================================================

@pytest.mark.asyncio
async def test_failing_tool_does_not_abort_the_loop() -> None:
    divide = make_tool("divide", lambda p: p["a"] / p["b"])
    provider = StubProvider([
        tool_response(("divide", {"a": 1, "b": 0})),
        LLMResponse(content="Dividing by zero is undefined."),
    ])
    agent = _agent(provider, tools=[divide])

    answer = await agent.chat("What is 1 / 0?")

    assert answer == "Dividing by zero is undefined."
    observed, _ = provider.calls[1]
    assert observed[-1].role == "tool"
    assert observed[-1].content.startswith("Error:")
    assert "division by zero" in observed[-1].content

    history = await agent.get_history()
    assert [m.role for m in history] == ["user", "assistant", "tool", "assistant"]

    [exp] = await _experiences(agent)
    assert exp.success is True
    assert exp.tool_called == "divide"
    assert exp.arguments == {"a": 1, "b": 0}
    assert exp.intent == "calculation"
    assert exp.reasoning_mode == "tool_use"
    assert exp.confidence == 1.0
    await agent.aclose()


@pytest.mark.asyncio
async def test_simple_strategy_enters_tool_loop_on_tool_calls() -> None:
    provider = StubProvider([tool_response(("ping", {})), LLMResponse(content="pong!")])
    agent = _agent(provider, tools=[_ping()])

    answer = await agent.chat("hello there")

    assert answer == "pong!"
    _, options = provider.calls[0]
    assert [t["name"] for t in options.tools] == ["ping"]
    [exp] = await _experiences(agent)
    assert exp.reasoning_mode == "simple"
    assert exp.tool_called == "ping"
    await agent.aclose()


@pytest.mark.asyncio
async def test_max_iterations_is_fatal_and_recorded() -> None:
    provider = StubProvider(default=tool_response(("ping", {})))
    agent = _agent(provider, tools=[_ping()], max_iterations=3)

    with pytest.raises(MaxIterationsError, match=r"max iterations \(3\) reached"):
        await agent.chat("hello there")

    assert len(provider.calls) == 3
    [exp] = await _experiences(agent)
    assert exp.success is False
    assert exp.error == "max iterations (3) reached"
    assert exp.error_type == "max_iterations"
    assert exp.confidence == 0.0
    await agent.aclose()


@pytest.mark.asyncio
async def test_provider_error_is_raised_and_recorded() -> None:
    provider = StubProvider([RuntimeError("503 Service Unavailable")])
    agent = _agent(provider)

    with pytest.raises(ProviderError):
        await agent.chat("hello there")

    [exp] = await _experiences(agent)
    assert exp.success is False
    assert exp.error_type == "provider_error"
    assert "503" in exp.error
    await agent.aclose()


@pytest.mark.asyncio
async def test_cancelled_call_records_nothing() -> None:
    provider = StubProvider(hang=True)
    agent = _agent(provider)

    task = asyncio.create_task(agent.chat("hello there"))
    await provider.started.wait()
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task
    assert await _experiences(agent) == []
    await agent.aclose()


# ==============================================================================
# Strategies
# ==============================================================================

@pytest.mark.asyncio
async def test_chain_of_thought_answer() -> None:
    provider = StubProvider([LLMResponse(content="Step 1: Light scatters.\nAnswer: Rayleigh scattering")])
    agent = _agent(provider)

    answer = await agent.chat("Why is the sky blue?")

    assert answer == "Rayleigh scattering"
    [exp] = await _experiences(agent)
    assert exp.reasoning_mode == "cot"
    assert exp.metadata["reasoning_steps"] == 1
    await agent.aclose()


@pytest.mark.asyncio
async def test_chain_of_thought_failure_falls_back_to_simple() -> None:
    provider = StubProvider([
        LLMResponse(content="Because of scattering."),
        LLMResponse(content="Rayleigh scattering makes it blue."),
    ])
    agent = _agent(provider)

    answer = await agent.chat("Why is the sky blue?")

    assert answer == "Rayleigh scattering makes it blue."
    [exp] = await _experiences(agent)
    assert exp.reasoning_mode == "simple"
    assert exp.metadata["fallback_from"] == "cot"
    await agent.aclose()


# ==============================================================================
# Reflection
# ==============================================================================

@pytest.mark.asyncio
async def test_low_confidence_correction_replaces_answer() -> None:
    provider = StubProvider([LLMResponse(content="15 * 23 = 335")])
    reflector = StubReflector(0.5, "15 * 23 = 345", threshold=0.7)
    agent = _agent(provider, reflector=reflector)

    answer = await agent.chat("Tell me fifteen times twenty three")

    assert answer == "15 * 23 = 345"
    contents = [m.content for m in await agent.get_history()]
    assert "[CORRECTED via reflection] 15 * 23 = 345" in contents
    assert contents[-1] == "15 * 23 = 345"

    [exp] = await _experiences(agent)
    assert exp.was_reflected and exp.was_corrected
    assert exp.confidence == pytest.approx(0.5)
    await agent.aclose()


@pytest.mark.asyncio
async def test_high_confidence_keeps_answer() -> None:
    provider = StubProvider([LLMResponse(content="Paris")])
    agent = _agent(provider, reflector=StubReflector(0.9, "Lyon", threshold=0.7))

    answer = await agent.chat("Capital of France?")

    assert answer == "Paris"
    assert not any(m.content.startswith("[CORRECTED") for m in await agent.get_history())
    await agent.aclose()


@pytest.mark.asyncio
async def test_reflection_failure_keeps_unreflected_answer() -> None:
    provider = StubProvider([LLMResponse(content="Paris")])
    agent = _agent(provider, reflector=StubReflector(0.1, "Lyon", error=RuntimeError("reviewer down")))

    answer = await agent.chat("Capital of France?")

    assert answer == "Paris"
    [exp] = await _experiences(agent)
    assert exp.was_reflected is False
    await agent.aclose()


# ==============================================================================
# Streaming
# ==============================================================================

@pytest.mark.asyncio
async def test_stream_executes_tool_calls_like_chat() -> None:
    provider = StubProvider(streams=[
        [StreamChunk(content="Let me check. "), StreamChunk(done=True, tool_calls=[ToolCall("call_1", "ping")])],
        [StreamChunk(content="Got "), StreamChunk(content="pong"), StreamChunk(done=True)],
    ])
    agent = _agent(provider, tools=[_ping()])

    chunks = [chunk async for chunk in agent.chat_stream("ping the server")]

    assert "".join(chunks) == "Let me check. Got pong"
    history = await agent.get_history()
    assert [m.role for m in history] == ["user", "assistant", "tool", "assistant"]
    assert history[1].tool_calls[0].name == "ping"
    assert history[2].content == "pong"
    assert history[-1].content == "Got pong"
    observed, _ = provider.stream_calls[1]
    assert observed[-1].role == "tool"

    [exp] = await _experiences(agent)
    assert exp.reasoning_mode == "stream"
    assert exp.tool_called == "ping"
    await agent.aclose()


@pytest.mark.asyncio
async def test_stream_respects_max_iterations() -> None:
    looping = [StreamChunk(done=True, tool_calls=[ToolCall("call_1", "ping")])]
    provider = StubProvider(streams=[looping, looping])
    agent = _agent(provider, tools=[_ping()], max_iterations=2)

    with pytest.raises(MaxIterationsError):
        async for _ in agent.chat_stream("ping the server"):
            pass

    [exp] = await _experiences(agent)
    assert exp.error_type == "max_iterations"
    await agent.aclose()


@pytest.mark.asyncio
async def test_abandoned_stream_closes_provider_stream() -> None:
    provider = StubProvider(streams=[
        [StreamChunk(content="one "), StreamChunk(content="two "), StreamChunk(done=True)],
    ])
    agent = _agent(provider)

    stream = agent.chat_stream("hello there")
    assert await stream.__anext__() == "one "
    await stream.aclose()

    assert provider.closed_streams == 1
    assert await _experiences(agent) == []
    await agent.aclose()


@pytest.mark.asyncio
async def test_failing_stream_is_closed_and_raised() -> None:
    provider = StubProvider(streams=[[StreamChunk(content="partial "), RuntimeError("connection reset")]])
    agent = _agent(provider)

    with pytest.raises(ProviderError):
        async for _ in agent.chat_stream("hello there"):
            pass

    assert provider.closed_streams == 1
    [exp] = await _experiences(agent)
    assert exp.error_type == "provider_error"
    await agent.aclose()


# ==============================================================================
# Memory and context
# ==============================================================================

@pytest.mark.asyncio
async def test_related_earlier_turns_reach_the_prompt() -> None:
    memory = make_vector_memory(buffer_size=2)
    await memory.add(Message(role="user", content="my server runs ubuntu linux"))
    await memory.add(Message(role="assistant", content="Noted."))
    await memory.add(Message(role="user", content="nice weather today"))
    provider = StubProvider([LLMResponse(content="Ubuntu.")])
    agent = _agent(provider, memory=memory)

    await agent.chat("does my server run ubuntu linux")

    messages, options = provider.calls[0]
    assert "Relevant earlier conversation" in options.system_prompt
    assert "my server runs ubuntu linux" in options.system_prompt
    assert [m.content for m in messages] == ["nice weather today", "does my server run ubuntu linux"]
    await agent.aclose()


@pytest.mark.asyncio
async def test_evicted_tool_exchange_is_not_sent_half() -> None:
    memory = BufferMemory(max_size=3)
    await memory.add(Message(role="user", content="ping it"))
    await memory.add(Message(role="assistant", content="", tool_calls=[ToolCall("call_1", "ping")]))
    await memory.add(Message(role="tool", content="pong", tool_call_id="call_1"))
    await memory.add(Message(role="assistant", content="It answered pong."))
    provider = StubProvider()
    agent = _agent(provider, memory=memory)

    assert await agent.chat("hello") == "ok"

    messages, _ = provider.calls[0]
    assert [m.role for m in messages] == ["assistant", "user"]
    await agent.aclose()


@pytest.mark.asyncio
async def test_reset_starts_a_new_conversation() -> None:
    agent = _agent(StubProvider())
    await agent.chat("hello there")
    conversation_id = agent.conversation_id

    await agent.reset()

    assert await agent.get_history() == []
    assert agent.conversation_id != conversation_id
    await agent.aclose()


@pytest.mark.asyncio
async def test_concurrent_chats_share_memory_safely() -> None:
    agent = _agent(StubProvider(), memory=BufferMemory())

    answers = await asyncio.gather(*(agent.chat(f"hello {i}") for i in range(5)))

    assert answers == ["ok"] * 5
    assert len(await agent.get_history()) == 10
    await agent.aclose()


@pytest.mark.asyncio
async def test_buffer_memory_runs_without_learning() -> None:
    agent = _agent(StubProvider(), memory=BufferMemory())

    assert await agent.chat("hello there") == "ok"

    assert agent.learning_enabled is False
    report = await agent.get_learning_report()
    assert report.total_experiences == 0
    await agent.aclose()


# ==============================================================================
# Learning surface
# ==============================================================================

@pytest.mark.asyncio
async def test_learning_report_and_feedback() -> None:
    agent = _agent(StubProvider())
    await agent.chat("hello there")
    await agent.chat("good morning")
    await agent.flush_learning()

    report = await agent.get_learning_report()
    assert report.total_experiences == 2
    assert report.learning_stage == "exploring"
    assert report.overall_success_rate == 1.0
    assert report.knowledge_areas == {"conversation": 2}

    assert await agent.give_feedback(agent.last_experience_id, 1) is True
    stored = await agent.experience_store.get(agent.last_experience_id)
    assert stored.user_feedback == 1
    assert await agent.give_feedback("exp_missing", -1) is False
    await agent.aclose()


@pytest.mark.asyncio
async def test_tool_recommendation_detects_intent() -> None:
    agent = _agent(StubProvider(), tools=[make_tool("math_calculate", lambda p: 0)])

    rec = await agent.get_tool_recommendation("what is 3 * 9")

    assert rec.tool_name == "math_calculate"
    assert rec.is_exploration is True
    assert await agent.get_tool_stats("math_calculate", "calculation") is None
    await agent.aclose()


def test_status_snapshot() -> None:
    agent = _agent(StubProvider(), tools=[_ping()])
    agent.add_tool(make_tool("clock", lambda p: "12:00"))

    status = agent.status()

    assert status["tools"]["names"] == ["ping", "clock"]
    assert status["memory"]["type"] == "vector"
    assert status["memory"]["supports_search"] is True
    assert status["learning"]["enabled"] is True
    assert status["reasoning"]["reflection_available"] is False
    assert agent.remove_tool("clock") is True
    assert agent.tool_count() == 1
