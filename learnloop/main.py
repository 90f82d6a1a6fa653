"""
LearnLoop - Agent Wiring
========================

Builds a ready-to-use Agent from configuration. It:
1. Loads configuration (environment and .env)
2. Applies the configured log level
3. Creates the memory (semantic when enabled, else a recency buffer)
4. Creates the OpenAI provider
5. Creates the agent with its learning components

Usage:
    from learnloop.main import create_agent

    agent = create_agent(tools=[calculator])
    answer = await agent.chat("What is 15 * 23?")
    await agent.aclose()

Every collaborator can be passed in instead, which is how tests build
agents without network access.
"""

from learnloop.agent import Agent
from learnloop.memory import BufferMemory, Memory, VectorMemory
from learnloop.providers import LLMProvider, OpenAIProvider
from learnloop.tools import Tool, ToolRegistry
from learnloop.utils.config import Config, get_config
from learnloop.utils.logger import Logger, set_level
from learnloop.vector import Embedder, EmbeddingGenerator, VectorStore

main_logger = Logger("Main")


def create_memory(config: Config, embedder: Embedder | None = None) -> Memory:
    """
    Create the configured memory.

    Semantic memory needs an embedder; without one (and without an
    OpenAI key to build one) a plain recency buffer is used.
    """
    buffer = BufferMemory(max_size=config.memory.buffer_size)
    if not config.memory.semantic:
        return buffer

    if embedder is None:
        if not config.openai.api_key:
            main_logger.warning("No OPENAI_API_KEY, using buffer memory without semantic search")
            return buffer
        embedder = EmbeddingGenerator(
            api_key=config.openai.api_key,
            model=config.openai.embedding_model,
            base_url=config.openai.base_url,
        )

    return VectorMemory(
        embedder=embedder,
        store=VectorStore(config.memory.directory),
        buffer=buffer,
        min_score=config.memory.min_score,
    )


def create_agent(
    config: Config | None = None,
    provider: LLMProvider | None = None,
    embedder: Embedder | None = None,
    tools: list[Tool] | None = None,
    memory: Memory | None = None
) -> Agent:
    """
    Create an agent from configuration.

    Args:
        config: Configuration (loaded from the environment if omitted)
        provider: Language model (an OpenAIProvider if omitted)
        embedder: Embedder for semantic memory
        tools: Tools to register
        memory: Memory to use instead of the configured one

    Raises:
        ValueError: If no provider is given and OPENAI_API_KEY is not set
    """
    config = config or get_config()
    set_level(config.log_level)

    main_logger.info("Initializing memory system...")
    if memory is None:
        memory = create_memory(config, embedder)

    if provider is None:
        main_logger.info(f"Creating OpenAI provider ({config.openai.model})...")
        provider = OpenAIProvider(
            api_key=config.openai.api_key,
            model=config.openai.model,
            base_url=config.openai.base_url,
        )

    main_logger.info("Creating agent...")
    return Agent(
        provider=provider,
        registry=ToolRegistry(tools),
        memory=memory,
        config=config.agent,
        learning_config=config.learning,
    )
