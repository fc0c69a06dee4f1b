"""Tools available to agents."""

from agent_runtime.tools.builtin import (
    STOP_STREAMING_TOOL_NAME,
    TRANSFER_TO_AGENT_TOOL_NAME,
    ExitLoopTool,
    StopStreamingTool,
    TransferToAgentTool,
)
from agent_runtime.tools.confirmation import ToolConfirmation, parse_confirmation_response
from agent_runtime.tools.function_tool import FunctionTool, build_parameters_schema
from agent_runtime.tools.registry import (
    BaseTool,
    ToolKind,
    ToolRegistry,
)

__all__ = [
    "BaseTool",
    "ExitLoopTool",
    "FunctionTool",
    "STOP_STREAMING_TOOL_NAME",
    "StopStreamingTool",
    "TRANSFER_TO_AGENT_TOOL_NAME",
    "ToolConfirmation",
    "ToolKind",
    "ToolRegistry",
    "TransferToAgentTool",
    "build_parameters_schema",
    "parse_confirmation_response",
]
