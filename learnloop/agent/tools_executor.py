"""
Tool Executor
=============

Executes the tool calls the model requested and turns each outcome into
a tool turn for the next LLM call.

Calls from one model turn run strictly one after another, in the order
the model listed them, so the tool turns appear in the order the model
expects. A failing call is not an exception here: it becomes a tool turn
whose content starts with "Error:" and the loop carries on.
"""

from dataclasses import dataclass

from learnloop.memory.short_term import Message
from learnloop.tools import ToolCall, ToolRegistry, ToolResult
from learnloop.utils.logger import Logger, log_tool_call, log_tool_result

logger = Logger("ToolExecutor")


@dataclass
class ToolCallResult:
    """
    Result of executing one tool call.

    Attributes:
        tool_call_id: The original tool call ID
        name: The tool name
        result: The tool result
    """
    tool_call_id: str
    name: str
    result: ToolResult

    def to_message(self) -> Message:
        """The tool turn carrying this result."""
        return Message(
            role="tool",
            content=self.result.to_message(),
            tool_call_id=self.tool_call_id,
            metadata={"tool": self.name, "success": self.result.success},
        )


class ToolExecutor:
    """
    Runs tool calls through a registry.

    Example:
        executor = ToolExecutor(registry)

        results = await executor.execute_all(response.tool_calls)
        for result in results:
            await memory.add(result.to_message())
    """

    def __init__(self, registry: ToolRegistry):
        self.registry = registry

    async def execute_one(self, tool_call: ToolCall) -> ToolCallResult:
        log_tool_call(logger, tool_call.name, tool_call.arguments)

        result = await self.registry.execute(tool_call.name, tool_call.arguments)
        log_tool_result(logger, tool_call.name, result.success, result.to_message())

        return ToolCallResult(
            tool_call_id=tool_call.id,
            name=tool_call.name,
            result=result
        )

    async def execute_all(self, tool_calls: list[ToolCall]) -> list[ToolCallResult]:
        """Execute calls sequentially, in request order."""
        results = []
        for tool_call in tool_calls:
            results.append(await self.execute_one(tool_call))
        return results

    def get_available_tools(self) -> list[str]:
        return self.registry.names()

    def has_tool(self, name: str) -> bool:
        return self.registry.has(name)
