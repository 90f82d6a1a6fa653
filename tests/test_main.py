from __future__ import annotations

import pytest

from learnloop.main import create_agent, create_memory
from learnloop.memory import BufferMemory, VectorMemory
from learnloop.providers import OpenAIProvider
from learnloop.utils.config import get_config, reset_config
from tests.stubs import StubEmbedder, StubProvider, make_tool

_VARS = ("OPENAI_API_KEY", "OPENAI_MODEL", "MEMORY_SEMANTIC", "MEMORY_DIR", "AGENT_MAX_ITERATIONS", "LOG_LEVEL")


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    for name in _VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("MEMORY_DIR", str(tmp_path / "vectors"))
    reset_config()
    yield
    reset_config()


def test_memory_without_key_is_a_buffer() -> None:
    assert isinstance(create_memory(get_config()), BufferMemory)


def test_memory_with_embedder_is_semantic(tmp_path) -> None:
    memory = create_memory(get_config(), embedder=StubEmbedder())

    assert isinstance(memory, VectorMemory)
    assert (tmp_path / "vectors").is_dir()


def test_semantic_memory_can_be_switched_off(monkeypatch) -> None:
    monkeypatch.setenv("MEMORY_SEMANTIC", "false")

    assert isinstance(create_memory(get_config(), embedder=StubEmbedder()), BufferMemory)


def test_agent_from_environment(monkeypatch) -> None:
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    monkeypatch.setenv("OPENAI_MODEL", "gpt-4o")
    monkeypatch.setenv("AGENT_MAX_ITERATIONS", "4")

    agent = create_agent(embedder=StubEmbedder(), tools=[make_tool("ping", lambda p: "pong")])

    assert isinstance(agent.provider, OpenAIProvider)
    assert agent.provider.model == "gpt-4o"
    assert agent.config.max_iterations == 4
    assert agent.registry.names() == ["ping"]
    assert agent.learning_enabled is True


def test_agent_needs_a_key_or_a_provider() -> None:
    with pytest.raises(ValueError, match="OPENAI_API_KEY"):
        create_agent()


@pytest.mark.asyncio
async def test_created_agent_answers() -> None:
    agent = create_agent(provider=StubProvider())

    assert await agent.chat("hello there") == "ok"
    assert agent.learning_enabled is False
    await agent.aclose()
