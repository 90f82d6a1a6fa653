"""
Utilities Module
================

Common utilities shared across the package:
- logger: Context-aware logging with levels and colors
- config: Centralized configuration management
"""

from learnloop.utils.logger import Logger, LogLevel, logger, set_level
from learnloop.utils.config import (
    AgentConfig,
    Config,
    LearningConfig,
    MemoryConfig,
    OpenAIConfig,
    get_config,
    load_config,
    reset_config,
)

__all__ = [
    "Logger",
    "LogLevel",
    "logger",
    "set_level",
    "AgentConfig",
    "Config",
    "LearningConfig",
    "MemoryConfig",
    "OpenAIConfig",
    "get_config",
    "load_config",
    "reset_config",
]
