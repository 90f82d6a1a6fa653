"""
Configuration Management
========================

Centralized configuration for the agent core. Every tunable value lives
here, read from the environment (and a .env file if present), typed, and
given a default.

Each section is a frozen dataclass whose fields carry the defaults, so a
component can also be configured directly in code or tests:

    AgentConfig(max_iterations=3, enable_reflection=False)

Usage:
    from learnloop.utils.config import get_config

    config = get_config()
    print(config.agent.max_iterations)
    print(config.learning.exploration_rate)
"""

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv


def _optional(name: str, default: str) -> str:
    """Get an optional environment variable with a default."""
    return os.getenv(name, default)


def _optional_int(name: str, default: int) -> int:
    """Get an optional integer environment variable."""
    value = os.getenv(name)
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        print(f"Warning: {name} is not a valid integer, using default: {default}")
        return default


def _optional_float(name: str, default: float) -> float:
    """Get an optional float environment variable."""
    value = os.getenv(name)
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        print(f"Warning: {name} is not a valid number, using default: {default}")
        return default


def _optional_bool(name: str, default: bool) -> bool:
    """True if the variable is 'true' (case-insensitive), the default if unset."""
    value = os.getenv(name)
    if not value:
        return default
    return value.lower() == "true"


# ==============================================================================
# Configuration Dataclasses
# ==============================================================================

@dataclass(frozen=True)
class OpenAIConfig:
    """OpenAI API configuration."""
    api_key: str | None = None                      # sk-... API key
    model: str = "gpt-4o-mini"                      # Model for chat completions
    embedding_model: str = "text-embedding-3-small" # Model for embeddings
    base_url: str | None = None                     # Compatible endpoint, if any


@dataclass(frozen=True)
class AgentConfig:
    """Conversation loop configuration."""
    system_prompt: str = "You are a helpful AI assistant."
    temperature: float = 0.7
    max_tokens: int = 2000
    max_iterations: int = 10        # LLM calls per tool loop
    enable_reflection: bool = True
    min_confidence: float = 0.7     # Reflection threshold
    enable_learning: bool = True
    cot_max_steps: int = 10
    semantic_context_limit: int = 3 # Related earlier turns in the prompt, 0 = off


@dataclass(frozen=True)
class MemoryConfig:
    """Memory system configuration."""
    buffer_size: int = 100
    directory: Path = Path("data/vectorstore")
    semantic: bool = True
    min_score: float = 0.5


@dataclass(frozen=True)
class LearningConfig:
    """Tool selection, error pattern and experience recording configuration."""
    exploration_rate: float = 0.1
    min_sample_size: int = 3
    success_weight: float = 0.7
    latency_weight: float = 0.3
    max_untried_tools: int = 3      # Never-used tools offered to exploration
    min_cluster_size: int = 3
    similarity_threshold: float = 0.75
    pattern_min_confidence: float = 0.6
    pattern_ttl_seconds: int = 300
    max_failures: int = 500
    max_patterns: int = 100
    recorder_queue_size: int = 100
    recorder_workers: int = 2
    recorder_policy: str = "drop_newest"  # drop_newest | drop_oldest | block


@dataclass(frozen=True)
class Config:
    """
    Root configuration object.

        config = get_config()
        config.agent.max_iterations
        config.learning.exploration_rate
    """
    openai: OpenAIConfig = field(default_factory=OpenAIConfig)
    agent: AgentConfig = field(default_factory=AgentConfig)
    memory: MemoryConfig = field(default_factory=MemoryConfig)
    learning: LearningConfig = field(default_factory=LearningConfig)
    log_level: str = "info"


def load_config() -> Config:
    """
    Load all configuration from the environment.

    Loads .env first, then builds every section. Nothing is required at
    load time: the OpenAI key is checked by the components that use it.
    """
    load_dotenv()

    agent_defaults = AgentConfig()
    learning_defaults = LearningConfig()

    return Config(
        openai=OpenAIConfig(
            api_key=os.getenv("OPENAI_API_KEY"),
            model=_optional("OPENAI_MODEL", "gpt-4o-mini"),
            embedding_model=_optional("OPENAI_EMBEDDING_MODEL", "text-embedding-3-small"),
            base_url=os.getenv("OPENAI_BASE_URL"),
        ),
        agent=AgentConfig(
            system_prompt=_optional("AGENT_SYSTEM_PROMPT", agent_defaults.system_prompt),
            temperature=_optional_float("AGENT_TEMPERATURE", agent_defaults.temperature),
            max_tokens=_optional_int("AGENT_MAX_TOKENS", agent_defaults.max_tokens),
            max_iterations=_optional_int("AGENT_MAX_ITERATIONS", agent_defaults.max_iterations),
            enable_reflection=_optional_bool("AGENT_ENABLE_REFLECTION", True),
            min_confidence=_optional_float("AGENT_MIN_CONFIDENCE", agent_defaults.min_confidence),
            enable_learning=_optional_bool("AGENT_ENABLE_LEARNING", True),
            cot_max_steps=_optional_int("AGENT_COT_MAX_STEPS", agent_defaults.cot_max_steps),
            semantic_context_limit=_optional_int(
                "AGENT_SEMANTIC_CONTEXT_LIMIT", agent_defaults.semantic_context_limit
            ),
        ),
        memory=MemoryConfig(
            buffer_size=_optional_int("MEMORY_BUFFER_SIZE", 100),
            directory=Path(_optional("MEMORY_DIR", "data/vectorstore")),
            semantic=_optional_bool("MEMORY_SEMANTIC", True),
            min_score=_optional_float("MEMORY_MIN_SCORE", 0.5),
        ),
        learning=LearningConfig(
            exploration_rate=_optional_float(
                "LEARNING_EXPLORATION_RATE", learning_defaults.exploration_rate
            ),
            min_sample_size=_optional_int(
                "LEARNING_MIN_SAMPLE_SIZE", learning_defaults.min_sample_size
            ),
            success_weight=_optional_float(
                "LEARNING_SUCCESS_WEIGHT", learning_defaults.success_weight
            ),
            latency_weight=_optional_float(
                "LEARNING_LATENCY_WEIGHT", learning_defaults.latency_weight
            ),
            max_untried_tools=_optional_int(
                "LEARNING_MAX_UNTRIED_TOOLS", learning_defaults.max_untried_tools
            ),
            min_cluster_size=_optional_int(
                "LEARNING_MIN_CLUSTER_SIZE", learning_defaults.min_cluster_size
            ),
            similarity_threshold=_optional_float(
                "LEARNING_SIMILARITY_THRESHOLD", learning_defaults.similarity_threshold
            ),
            pattern_min_confidence=_optional_float(
                "LEARNING_PATTERN_MIN_CONFIDENCE", learning_defaults.pattern_min_confidence
            ),
            pattern_ttl_seconds=_optional_int(
                "LEARNING_PATTERN_TTL_SECONDS", learning_defaults.pattern_ttl_seconds
            ),
            max_failures=_optional_int("LEARNING_MAX_FAILURES", learning_defaults.max_failures),
            max_patterns=_optional_int("LEARNING_MAX_PATTERNS", learning_defaults.max_patterns),
            recorder_queue_size=_optional_int(
                "LEARNING_RECORDER_QUEUE_SIZE", learning_defaults.recorder_queue_size
            ),
            recorder_workers=_optional_int(
                "LEARNING_RECORDER_WORKERS", learning_defaults.recorder_workers
            ),
            recorder_policy=_optional("LEARNING_RECORDER_POLICY", learning_defaults.recorder_policy),
        ),
        log_level=_optional("LOG_LEVEL", "info"),
    )


# ==============================================================================
# Singleton
# ==============================================================================

_config_instance: Config | None = None


def get_config() -> Config:
    """Get the configuration, loading it on first access."""
    global _config_instance
    if _config_instance is None:
        _config_instance = load_config()
    return _config_instance


def reset_config() -> None:
    """Forget the cached configuration so the next get_config() reloads it."""
    global _config_instance
    _config_instance = None
