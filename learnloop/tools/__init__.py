"""
Tools System
============

Tools are functions the model can ask the agent to call.

Each tool has a name, a description and a JSON Schema for its parameters.
The model picks tools from those definitions; the agent executes the
requested calls and feeds the results back as tool turns.

How Tools Work:
1. The agent attaches tool definitions to the LLM request
2. The model answers with one or more ToolCalls
3. The registry executes each call and returns a ToolResult
4. The result becomes a tool turn the model sees on its next call

Registries are plain objects handed to the Agent at construction time;
there is no process-wide registry.

This module provides:
- Tool dataclass for defining tools
- ToolCall for calls requested by the model
- ToolResult for standardized responses
- ToolRegistry for managing the tools of one agent
"""

import json
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from learnloop.errors import ToolExecutionError
from learnloop.utils.logger import Logger

logger = Logger("Tools")


@dataclass
class ToolCall:
    """
    A tool call requested by the model.

    Attributes:
        id: The tool call ID (matches the tool result turn)
        name: The tool name
        arguments: Parsed arguments dict
    """
    id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "arguments": self.arguments}

    @classmethod
    def from_dict(cls, data: dict) -> "ToolCall":
        return cls(
            id=data.get("id", ""),
            name=data.get("name", ""),
            arguments=data.get("arguments") or {},
        )


@dataclass
class ToolResult:
    """
    Standardized result from tool execution.

    Attributes:
        success: Whether the tool executed successfully
        data: The result data (varies by tool)
        error: Error message if success is False
    """
    success: bool
    data: Any = None
    error: str | None = None

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "data": self.data,
            "error": self.error
        }

    def to_message(self) -> str:
        """Format as tool turn content for the LLM."""
        if self.success:
            if isinstance(self.data, str):
                return self.data
            return json.dumps(self.data, default=str)
        return f"Error: {self.error}"


ToolFunction = Callable[[dict], Awaitable[Any]]


@dataclass
class Tool:
    """
    Definition of a tool.

    The execute function receives the parsed arguments. It may return a
    ToolResult, or any other value which is treated as successful data.
    Raising an exception marks the call as failed.

    Example:
        async def calculate(params: dict) -> ToolResult:
            a, b = params["a"], params["b"]
            return ToolResult(success=True, data={"result": a / b})

        tool = Tool(
            name="math_calculate",
            description="Divide two numbers",
            parameters={
                "type": "object",
                "properties": {
                    "a": {"type": "number"},
                    "b": {"type": "number"}
                },
                "required": ["a", "b"]
            },
            execute=calculate
        )
    """
    name: str
    description: str
    parameters: dict
    execute: ToolFunction

    def to_definition(self) -> dict:
        """Provider-neutral definition: name, description, parameters."""
        return {
            "name": self.name,
            "description": self.description,
            "parameters": self.parameters,
        }


class ToolRegistry:
    """
    Registry of the tools available to one agent.

    Example:
        registry = ToolRegistry([calculator, web_search])

        registry.names()              # ["math_calculate", "web_search"]
        definitions = registry.definitions()
        result = await registry.execute("math_calculate", {"a": 1, "b": 2})
    """

    def __init__(self, tools: list[Tool] | None = None):
        self._tools: dict[str, Tool] = {}
        for tool in tools or []:
            self.register(tool)

    def register(self, tool: Tool) -> None:
        """
        Register a tool.

        Raises:
            ValueError: If a tool with this name already exists
        """
        if tool.name in self._tools:
            raise ValueError(f"Tool '{tool.name}' is already registered")

        self._tools[tool.name] = tool
        logger.debug(f"Registered tool: {tool.name}")

    def unregister(self, name: str) -> bool:
        """Remove a tool. Returns True if it was registered."""
        return self._tools.pop(name, None) is not None

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def has(self, name: str) -> bool:
        return name in self._tools

    def get_all(self) -> list[Tool]:
        return list(self._tools.values())

    def names(self) -> list[str]:
        return list(self._tools.keys())

    def definitions(self) -> list[dict]:
        """Definitions of every tool, in registration order."""
        return [tool.to_definition() for tool in self._tools.values()]

    def __len__(self) -> int:
        return len(self._tools)

    async def execute(self, name: str, params: dict) -> ToolResult:
        """
        Execute a tool by name.

        Never raises for tool failures: an unknown tool or an exception
        inside the tool becomes a failed ToolResult. Cancellation still
        propagates.
        """
        tool = self.get(name)
        if not tool:
            return ToolResult(success=False, error=f"Tool '{name}' not found")

        try:
            result = await tool.execute(params)
        except ToolExecutionError as e:
            logger.warning(f"Tool {name} reported an error: {e}")
            return ToolResult(success=False, error=str(e))
        except Exception as e:
            logger.error(f"Tool execution failed: {name}", e)
            return ToolResult(success=False, error=str(e) or type(e).__name__)

        if isinstance(result, ToolResult):
            return result
        return ToolResult(success=True, data=result)


__all__ = [
    "Tool",
    "ToolCall",
    "ToolFunction",
    "ToolResult",
    "ToolRegistry",
]
