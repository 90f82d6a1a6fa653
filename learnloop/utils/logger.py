"""
Logger Utility
==============

Context-aware, color-coded logging for the agent core.

Every component owns a module-level logger named after itself, and
nested operations derive child loggers so a trace reads like a path:

    [2025-01-31T10:30:00] [INFO] [Agent] Strategy: tool_use (intent=calculation)
    [2025-01-31T10:30:01] [DEBUG] [Agent:Reflection] 2 concerns identified

The minimum level comes from the LOG_LEVEL environment variable and can
be overridden at runtime with set_level().

Usage:
    from learnloop.utils.logger import Logger

    logger = Logger("Memory")
    logger.info("Buffer trimmed", {"size": 100})

    reflection_logger = logger.child("Reflection")
    reflection_logger.debug("Verifying claim")
"""

import json
import os
import sys
from datetime import datetime
from enum import IntEnum
from typing import Any


class LogLevel(IntEnum):
    """Log levels, ordered by severity."""
    DEBUG = 10
    INFO = 20
    WARNING = 30
    ERROR = 40


class Colors:
    """ANSI escape codes for colored terminal output."""
    RESET = "\033[0m"
    DEBUG = "\033[36m"    # Cyan
    INFO = "\033[32m"     # Green
    WARNING = "\033[33m"  # Yellow
    ERROR = "\033[31m"    # Red
    DIM = "\033[2m"


_LEVEL_NAMES = {
    "DEBUG": LogLevel.DEBUG,
    "INFO": LogLevel.INFO,
    "WARNING": LogLevel.WARNING,
    "WARN": LogLevel.WARNING,
    "ERROR": LogLevel.ERROR,
}

# Process-wide override set via set_level(); None means "read LOG_LEVEL"
_level_override: LogLevel | None = None


def parse_level(value: str | None, default: LogLevel = LogLevel.INFO) -> LogLevel:
    """Parse a level name such as "debug" or "WARN"."""
    if not value:
        return default
    return _LEVEL_NAMES.get(value.upper(), default)


def set_level(level: LogLevel | str | None) -> None:
    """
    Override the minimum level for every logger.

    Args:
        level: A LogLevel, a level name, or None to go back to LOG_LEVEL
    """
    global _level_override
    if level is None or isinstance(level, LogLevel):
        _level_override = level
    else:
        _level_override = parse_level(level)


def _current_level() -> LogLevel:
    if _level_override is not None:
        return _level_override
    return parse_level(os.getenv("LOG_LEVEL"))


class Logger:
    """
    A context-aware logger with colored output.

    Example:
        logger = Logger("ToolSelector")
        logger.info("Recommending tool", {"intent": "calculation"})

        child = logger.child("Stats")
        child.debug("Computed stats")   # [ToolSelector:Stats]
    """

    def __init__(self, context: str = ""):
        self.context = context

    def child(self, child_context: str) -> "Logger":
        """Create a logger whose context is nested under this one."""
        new_context = f"{self.context}:{child_context}" if self.context else child_context
        return Logger(new_context)

    def is_enabled(self, level: LogLevel) -> bool:
        return level >= _current_level()

    def _format_message(self, level: str, message: str, color: str) -> str:
        timestamp = datetime.now().isoformat(timespec="seconds")
        context_str = f"[{self.context}] " if self.context else ""

        return (
            f"{Colors.DIM}[{timestamp}]{Colors.RESET} "
            f"{color}[{level}]{Colors.RESET} "
            f"{context_str}{message}"
        )

    def _log(
        self,
        level: LogLevel,
        level_name: str,
        color: str,
        message: str,
        data: dict[str, Any] | None = None
    ) -> None:
        if not self.is_enabled(level):
            return

        stream = sys.stderr if level >= LogLevel.ERROR else sys.stdout
        print(self._format_message(level_name, message, color), file=stream)

        if data:
            data_str = json.dumps(data, indent=2, default=str)
            print(f"{Colors.DIM}{data_str}{Colors.RESET}", file=stream)

    def debug(self, message: str, data: dict[str, Any] | None = None) -> None:
        """Log a debug message. Only shown when LOG_LEVEL=DEBUG."""
        self._log(LogLevel.DEBUG, "DEBUG", Colors.DEBUG, message, data)

    def info(self, message: str, data: dict[str, Any] | None = None) -> None:
        """Log an info message."""
        self._log(LogLevel.INFO, "INFO", Colors.INFO, message, data)

    def warning(self, message: str, data: dict[str, Any] | None = None) -> None:
        """Log a warning: something degraded but the call continues."""
        self._log(LogLevel.WARNING, "WARN", Colors.WARNING, message, data)

    def error(self, message: str, error: BaseException | None = None) -> None:
        """
        Log an error message.

        Args:
            message: The error message
            error: Optional exception to include details from
        """
        data = None
        if error:
            data = {
                "error_type": type(error).__name__,
                "error_message": str(error),
            }
        self._log(LogLevel.ERROR, "ERROR", Colors.ERROR, message, data)


# ==============================================================================
# Agent Trace Helpers
# ==============================================================================
# Short, uniform lines for the steps of a chat call. Long values are
# truncated so a trace stays readable at INFO level.

def _truncate(text: str, limit: int = 100) -> str:
    text = text.replace("\n", " ")
    return text if len(text) <= limit else text[:limit] + "..."


def log_user_message(logger: Logger, message: str) -> None:
    logger.info(f"User: {_truncate(message)}")


def log_iteration(logger: Logger, iteration: int, max_iterations: int) -> None:
    logger.debug(f"Iteration {iteration}/{max_iterations}")


def log_tool_call(logger: Logger, tool_name: str, arguments: dict[str, Any]) -> None:
    logger.info(f"Calling tool: {tool_name}", {"arguments": arguments} if arguments else None)


def log_tool_result(logger: Logger, tool_name: str, success: bool, content: str) -> None:
    if success:
        logger.debug(f"Tool {tool_name} returned: {_truncate(content)}")
    else:
        logger.warning(f"Tool {tool_name} failed: {_truncate(content)}")


def log_response(logger: Logger, response: str) -> None:
    logger.info(f"Answer ({len(response)} chars): {_truncate(response)}")


# Default logger for code that has no better context
logger = Logger("LearnLoop")
