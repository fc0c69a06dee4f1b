"""Plugins: process-wide hooks that run before agent-level callbacks."""

from typing import TYPE_CHECKING, Any, Optional

from agent_runtime.logging import get_logger

if TYPE_CHECKING:
    from agent_runtime.agents.base_agent import BaseAgent
    from agent_runtime.callback_context import CallbackContext, ToolContext
    from agent_runtime.events import Event
    from agent_runtime.invocation_context import InvocationContext
    from agent_runtime.llm import LlmRequest, LlmResponse
    from agent_runtime.tools.registry import BaseTool
    from agent_runtime.types import Content

log = get_logger(__name__)


class BasePlugin:
    """Base class for plugins.

    Every hook is a no-op returning None, which means "no override".
    Subclasses override only the hooks they care about.
    """

    def __init__(self, name: str):
        self.name = name

    async def on_user_message_callback(
        self,
        *,
        invocation_context: "InvocationContext",
        user_message: "Content",
    ) -> Optional["Content"]:
        return None

    async def before_run_callback(
        self, *, invocation_context: "InvocationContext"
    ) -> Optional["Content"]:
        return None

    async def on_event_callback(
        self,
        *,
        invocation_context: "InvocationContext",
        event: "Event",
    ) -> Optional["Event"]:
        return None

    async def after_run_callback(self, *, invocation_context: "InvocationContext") -> None:
        return None

    async def before_agent_callback(
        self,
        *,
        agent: "BaseAgent",
        callback_context: "CallbackContext",
    ) -> Optional["Content"]:
        return None

    async def after_agent_callback(
        self,
        *,
        agent: "BaseAgent",
        callback_context: "CallbackContext",
    ) -> Optional["Content"]:
        return None

    async def before_model_callback(
        self,
        *,
        callback_context: "CallbackContext",
        llm_request: "LlmRequest",
    ) -> Optional["LlmResponse"]:
        return None

    async def after_model_callback(
        self,
        *,
        callback_context: "CallbackContext",
        llm_response: "LlmResponse",
    ) -> Optional["LlmResponse"]:
        return None

    async def on_model_error_callback(
        self,
        *,
        callback_context: "CallbackContext",
        llm_request: "LlmRequest",
        error: Exception,
    ) -> Optional["LlmResponse"]:
        return None

    async def before_tool_callback(
        self,
        *,
        tool: "BaseTool",
        args: dict[str, Any],
        tool_context: "ToolContext",
    ) -> dict[str, Any] | None:
        return None

    async def after_tool_callback(
        self,
        *,
        tool: "BaseTool",
        args: dict[str, Any],
        tool_context: "ToolContext",
        tool_response: Any,
    ) -> dict[str, Any] | None:
        return None

    async def on_tool_error_callback(
        self,
        *,
        tool: "BaseTool",
        args: dict[str, Any],
        tool_context: "ToolContext",
        error: Exception,
    ) -> dict[str, Any] | None:
        return None


class PluginManager:
    """Registry of plugins, run in registration order with early exit."""

    def __init__(self, plugins: list[BasePlugin] | None = None):
        self.plugins: list[BasePlugin] = []
        for plugin in plugins or []:
            self.register_plugin(plugin)

    def register_plugin(self, plugin: BasePlugin) -> None:
        """Register a plugin.

        Raises:
            ValueError: If a plugin with the same name is already registered.
        """
        if any(existing.name == plugin.name for existing in self.plugins):
            raise ValueError(f"Plugin with name '{plugin.name}' already registered.")
        self.plugins.append(plugin)
        log.debug("Registered plugin", plugin=plugin.name)

    def get_plugin(self, plugin_name: str) -> BasePlugin | None:
        for plugin in self.plugins:
            if plugin.name == plugin_name:
                return plugin
        return None

    async def _run_callbacks(self, callback_name: str, **kwargs: Any) -> Any:
        """Run ``callback_name`` on every plugin until one returns non-None."""
        for plugin in self.plugins:
            callback = getattr(plugin, callback_name)
            try:
                result = await callback(**kwargs)
            except Exception as e:
                message = (
                    f"Error in plugin '{plugin.name}' during '{callback_name}' callback: {e}"
                )
                log.error("Plugin callback failed", plugin=plugin.name, callback=callback_name, error=str(e))
                raise RuntimeError(message) from e
            if result is not None:
                log.debug("Plugin returned override", plugin=plugin.name, callback=callback_name)
                return result
        return None

    async def run_on_user_message_callback(self, **kwargs: Any) -> Any:
        return await self._run_callbacks("on_user_message_callback", **kwargs)

    async def run_before_run_callback(self, **kwargs: Any) -> Any:
        return await self._run_callbacks("before_run_callback", **kwargs)

    async def run_on_event_callback(self, **kwargs: Any) -> Any:
        return await self._run_callbacks("on_event_callback", **kwargs)

    async def run_after_run_callback(self, **kwargs: Any) -> None:
        await self._run_callbacks("after_run_callback", **kwargs)

    async def run_before_agent_callback(self, **kwargs: Any) -> Any:
        return await self._run_callbacks("before_agent_callback", **kwargs)

    async def run_after_agent_callback(self, **kwargs: Any) -> Any:
        return await self._run_callbacks("after_agent_callback", **kwargs)

    async def run_before_model_callback(self, **kwargs: Any) -> Any:
        return await self._run_callbacks("before_model_callback", **kwargs)

    async def run_after_model_callback(self, **kwargs: Any) -> Any:
        return await self._run_callbacks("after_model_callback", **kwargs)

    async def run_on_model_error_callback(self, **kwargs: Any) -> Any:
        return await self._run_callbacks("on_model_error_callback", **kwargs)

    async def run_before_tool_callback(self, **kwargs: Any) -> Any:
        return await self._run_callbacks("before_tool_callback", **kwargs)

    async def run_after_tool_callback(self, **kwargs: Any) -> Any:
        return await self._run_callbacks("after_tool_callback", **kwargs)

    async def run_on_tool_error_callback(self, **kwargs: Any) -> Any:
        return await self._run_callbacks("on_tool_error_callback", **kwargs)
