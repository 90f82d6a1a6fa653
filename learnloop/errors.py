"""
Agent Errors
============

Exception taxonomy for the orchestration loop.

How each error is treated by the Agent:

    ProviderError        -> surfaced to the caller, the call aborts
    ToolExecutionError   -> converted into an error-bearing tool result turn
    ReasoningError       -> the call falls back to the simple strategy
    ReflectionError      -> the unreflected answer is returned
    MaxIterationsError   -> surfaced to the caller, the call aborts
    LearningError        -> logged, never surfaced

Cancellation is not part of this hierarchy: it is asyncio.CancelledError,
raised by the event loop when the calling task is cancelled or times out.
"""


class AgentError(Exception):
    """Base class for all errors raised by the agent core."""


class ProviderError(AgentError):
    """The LLM provider call failed."""

    def __init__(self, message: str, cause: Exception | None = None):
        super().__init__(message)
        self.cause = cause


class ToolExecutionError(AgentError):
    """A tool failed while executing."""

    def __init__(self, tool_name: str, message: str):
        super().__init__(message)
        self.tool_name = tool_name


class ReasoningError(AgentError):
    """A reasoning strategy could not produce an answer."""


class ReflectionError(AgentError):
    """The reflection pass failed."""


class MaxIterationsError(AgentError):
    """The tool loop ran out of iterations without a final answer."""

    def __init__(self, max_iterations: int):
        super().__init__(f"max iterations ({max_iterations}) reached")
        self.max_iterations = max_iterations


class LearningError(AgentError):
    """The learning subsystem could not read or write experiences."""


def classify_error(error: BaseException | str) -> str:
    """
    Map an exception or error message to a coarse error type.

    The error type is stored on each failed Experience and is what
    error pattern clustering groups by.
    """
    if isinstance(error, MaxIterationsError):
        return "max_iterations"
    if isinstance(error, ProviderError):
        return "provider_error"
    if isinstance(error, TimeoutError):
        return "timeout"

    message = str(error).lower()
    if not message:
        return "unknown"
    if "max iterations" in message:
        return "max_iterations"
    if "timeout" in message or "timed out" in message:
        return "timeout"
    if "not found" in message and "tool" in message:
        return "tool_not_found"
    if "invalid" in message or "argument" in message or "parameter" in message:
        return "invalid_arguments"
    if "rate limit" in message or "status" in message or "api" in message:
        return "api_error"
    if isinstance(error, ToolExecutionError) or "tool" in message:
        return "tool_error"
    return "unknown"
