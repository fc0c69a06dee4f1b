"""Tool registry and base tool class."""

import enum
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, AsyncIterator, Iterator

from agent_runtime.exceptions import ToolExecutionError, ToolNotFoundError
from agent_runtime.logging import get_logger

if TYPE_CHECKING:
    from agent_runtime.callback_context import ToolContext
    from agent_runtime.invocation_context import InvocationContext
    from agent_runtime.llm import LlmRequest

log = get_logger(__name__)


class ToolKind(enum.Enum):
    """How the live executor dispatches a tool."""

    SIMPLE = "simple"
    # Produces an async sequence of values; started as a background task in live mode.
    STREAMING = "streaming"
    # Handled by the executor itself (e.g. stop_streaming).
    CONTROL = "control"


class BaseTool(ABC):
    """Base class for all tools."""

    name: str = ""
    description: str = ""
    is_long_running: bool = False
    kind: ToolKind = ToolKind.SIMPLE

    def get_declaration(self) -> dict[str, Any] | None:
        """Get the function declaration sent to the model.

        Returns:
            ``{"name", "description", "parameters"}`` or None for tools the
            model should not see.
        """
        return {
            "name": self.name,
            "description": self.description,
            "parameters": {"type": "object", "properties": {}},
        }

    @abstractmethod
    async def run_async(self, *, args: dict[str, Any], tool_context: "ToolContext") -> Any:
        """Execute the tool.

        Args:
            args: Arguments from the model's function call
            tool_context: Per-call context; side effects go to ``tool_context.actions``

        Returns:
            Any value; non-dict values are wrapped as ``{"result": value}``.
        """

    def call_live(
        self,
        *,
        args: dict[str, Any],
        tool_context: "ToolContext",
        invocation_context: "InvocationContext",
    ) -> AsyncIterator[Any]:
        """Produce values over time; only streaming tools implement this."""
        raise ToolExecutionError(self.name, "Live calls are not supported by this tool")

    async def process_llm_request(self, *, tool_context: "ToolContext", llm_request: "LlmRequest") -> None:
        """Make this tool available on the outgoing request."""
        llm_request.append_tools([self])


class ToolRegistry:
    """Registry for managing available tools."""

    def __init__(self, tools: list[BaseTool] | None = None):
        self._tools: dict[str, BaseTool] = {}
        self._kinds: dict[str, ToolKind] = {}
        for tool in tools or []:
            self.register(tool)

    def register(self, tool: BaseTool) -> None:
        """Register a tool; its kind is fixed from here on.

        Args:
            tool: Tool instance to register
        """
        if not tool.name:
            raise ValueError("Tool must have a name")

        log.debug("Registering tool", tool=tool.name, kind=tool.kind.value)
        self._tools[tool.name] = tool
        self._kinds[tool.name] = tool.kind

    def has_tool(self, name: str) -> bool:
        """Return whether a tool name is currently registered."""
        return name in self._tools

    def get(self, name: str) -> BaseTool:
        """Get a tool by name.

        Raises:
            ToolNotFoundError: If the tool is not registered
        """
        tool = self._tools.get(name)
        if tool is None:
            raise ToolNotFoundError(name)
        return tool

    def kind_of(self, name: str) -> ToolKind:
        if name not in self._kinds:
            raise ToolNotFoundError(name)
        return self._kinds[name]

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    def __iter__(self) -> Iterator[BaseTool]:
        return iter(list(self._tools.values()))

