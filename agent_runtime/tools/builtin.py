"""Built-in control tools: transfer, loop exit, and stop_streaming."""

from typing import TYPE_CHECKING, Any

from agent_runtime.tools.registry import BaseTool, ToolKind

if TYPE_CHECKING:
    from agent_runtime.callback_context import ToolContext

TRANSFER_TO_AGENT_TOOL_NAME = "transfer_to_agent"
STOP_STREAMING_TOOL_NAME = "stop_streaming"


class TransferToAgentTool(BaseTool):
    """Record a hand-off target; the turn loop performs the transfer."""

    name = TRANSFER_TO_AGENT_TOOL_NAME
    description = (
        "Transfer the question to another agent. This tool hands off control to another "
        "agent when it is more suitable to answer the user question according to the "
        "agent description."
    )

    def __init__(self, agent_names: list[str] | None = None):
        self.agent_names = list(agent_names or [])

    def get_declaration(self) -> dict[str, Any]:
        agent_name: dict[str, Any] = {"type": "string", "description": "the agent name to transfer to."}
        if self.agent_names:
            agent_name["enum"] = self.agent_names
        return {
            "name": self.name,
            "description": self.description,
            "parameters": {
                "type": "object",
                "properties": {"agent_name": agent_name},
                "required": ["agent_name"],
            },
        }

    async def run_async(self, *, args: dict[str, Any], tool_context: "ToolContext") -> Any:
        tool_context.actions.transfer_to_agent = args.get("agent_name")
        return "Transfer queued"


class ExitLoopTool(BaseTool):
    """Stop the enclosing loop agent."""

    name = "exit_loop"
    description = "Exits the loop.\n\nCall this function only when you are instructed to do so."

    async def run_async(self, *, args: dict[str, Any], tool_context: "ToolContext") -> Any:
        tool_context.actions.escalate = True
        tool_context.actions.skip_summarization = True
        return ""


class StopStreamingTool(BaseTool):
    """Stop a running streaming tool; only meaningful in live mode."""

    name = STOP_STREAMING_TOOL_NAME
    description = "Stop the streaming function with the given name."
    kind = ToolKind.CONTROL

    def get_declaration(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "parameters": {
                "type": "object",
                "properties": {"function_name": {"type": "string"}},
                "required": ["function_name"],
            },
        }

    async def run_async(self, *, args: dict[str, Any], tool_context: "ToolContext") -> Any:
        return {
            "error": "stop_streaming should be handled in live mode. "
            "This method should not be called directly."
        }
