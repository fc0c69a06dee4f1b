"""LLM-backed agent."""

import inspect
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from agent_runtime.agents.agent_live_mixin import AgentLiveMixin
from agent_runtime.agents.agent_model_mixin import AgentModelMixin
from agent_runtime.agents.agent_tool_loop_mixin import AgentToolLoopMixin
from agent_runtime.agents.base_agent import BaseAgent
from agent_runtime.llm import BaseLlm, GenerateContentConfig, LLMRegistry
from agent_runtime.logging import get_logger
from agent_runtime.override_chain import Callback, normalize_callbacks
from agent_runtime.planners import BasePlanner, BuiltInPlanner
from agent_runtime.tools.function_tool import FunctionTool
from agent_runtime.tools.registry import BaseTool
from agent_runtime.types import Content

if TYPE_CHECKING:
    from agent_runtime.callback_context import ReadonlyContext
    from agent_runtime.code_executors.base import BaseCodeExecutor
    from agent_runtime.request_processors import BaseLlmRequestProcessor
    from agent_runtime.response_processors import BaseLlmResponseProcessor

log = get_logger(__name__)

InstructionProvider = Callable[["ReadonlyContext"], str | Awaitable[str]]
ToolUnion = BaseTool | Callable[..., Any]


class LlmAgent(AgentModelMixin, AgentToolLoopMixin, AgentLiveMixin, BaseAgent):
    """Agent that answers through a model and the tools it is given."""

    def __init__(
        self,
        name: str,
        model: str | BaseLlm = "",
        instruction: str | InstructionProvider = "",
        global_instruction: str | InstructionProvider = "",
        static_instruction: Content | None = None,
        tools: list[ToolUnion] | None = None,
        generate_content_config: GenerateContentConfig | None = None,
        disallow_transfer_to_parent: bool = False,
        disallow_transfer_to_peers: bool = False,
        include_contents: str = "default",
        output_schema: Any = None,
        output_key: str | None = None,
        planner: BasePlanner | None = None,
        code_executor: "BaseCodeExecutor | None" = None,
        before_model_callback: Callback | list[Callback] | None = None,
        after_model_callback: Callback | list[Callback] | None = None,
        on_model_error_callback: Callback | list[Callback] | None = None,
        before_tool_callback: Callback | list[Callback] | None = None,
        after_tool_callback: Callback | list[Callback] | None = None,
        on_tool_error_callback: Callback | list[Callback] | None = None,
        request_processors: list["BaseLlmRequestProcessor"] | None = None,
        response_processors: list["BaseLlmResponseProcessor"] | None = None,
        **kwargs: Any,
    ):
        """Initialize the agent.

        Args:
            name: Agent name, unique in the tree
            model: Model name or provider instance; empty inherits from the
                nearest LLM ancestor
            instruction: Agent instruction, or a provider called with a
                ReadonlyContext
            global_instruction: Instruction applied to every agent in the
                tree; only read from the root agent
            static_instruction: Sent verbatim, never state-injected
            tools: Tools or plain callables (wrapped in FunctionTool)
            include_contents: ``"default"`` for full history, ``"none"`` for
                the current turn only
            output_key: Session state key for the final response text
            request_processors: Override the default request pipeline
            response_processors: Override the default response pipeline
        """
        super().__init__(name, **kwargs)
        self.model = model
        self.instruction = instruction
        self.global_instruction = global_instruction
        self.static_instruction = static_instruction
        self.tools: list[ToolUnion] = list(tools or [])
        self.generate_content_config = generate_content_config or GenerateContentConfig()
        self.disallow_transfer_to_parent = disallow_transfer_to_parent
        self.disallow_transfer_to_peers = disallow_transfer_to_peers
        if include_contents not in ("default", "none"):
            raise ValueError(f"include_contents must be 'default' or 'none', got {include_contents!r}")
        self.include_contents = include_contents
        self.output_schema = output_schema
        self.output_key = output_key
        self.planner = planner
        self.code_executor = code_executor
        self.before_model_callback = before_model_callback
        self.after_model_callback = after_model_callback
        self.on_model_error_callback = on_model_error_callback
        self.before_tool_callback = before_tool_callback
        self.after_tool_callback = after_tool_callback
        self.on_tool_error_callback = on_tool_error_callback

        self._validate_generate_content_config()
        self._validate_output_schema()
        self._check_planner_thinking_config()

        if request_processors is None:
            from agent_runtime.request_processors import default_request_processors

            request_processors = default_request_processors(self)
        if response_processors is None:
            from agent_runtime.response_processors import default_response_processors

            response_processors = default_response_processors()
        self.request_processors = request_processors
        self.response_processors = response_processors

    def _validate_generate_content_config(self) -> None:
        config = self.generate_content_config
        if config.tools:
            raise ValueError("All tools must be set via LlmAgent.tools.")
        if config.system_instruction:
            raise ValueError("System instruction must be set via LlmAgent.instruction.")
        if config.response_schema is not None:
            raise ValueError("Response schema must be set via LlmAgent.output_schema.")

    def _validate_output_schema(self) -> None:
        if self.output_schema is None:
            return
        if not self.disallow_transfer_to_parent or not self.disallow_transfer_to_peers:
            log.warning(
                "Invalid config: output_schema cannot co-exist with agent transfer; transfer is disabled",
                agent=self.name,
            )
            self.disallow_transfer_to_parent = True
            self.disallow_transfer_to_peers = True
        if self.sub_agents:
            raise ValueError(
                f"Invalid config for agent {self.name}: if output_schema is set, sub_agents must be empty."
            )
        if self.tools:
            raise ValueError(
                f"Invalid config for agent {self.name}: if output_schema is set, tools must be empty."
            )

    def _check_planner_thinking_config(self) -> None:
        if isinstance(self.planner, BuiltInPlanner) and self.generate_content_config.thinking_config:
            log.warning(
                "Both the planner and generate_content_config set a thinking config; the planner's wins",
                agent=self.name,
            )

    @property
    def canonical_model(self) -> BaseLlm:
        """The model to call; inherited from the nearest LLM ancestor when unset."""
        if isinstance(self.model, BaseLlm):
            return self.model
        if self.model:
            return LLMRegistry.new_llm(self.model)
        ancestor = self.parent_agent
        while ancestor is not None:
            if isinstance(ancestor, LlmAgent):
                return ancestor.canonical_model
            ancestor = ancestor.parent_agent
        raise ValueError(f"No model found for {self.name}.")

    @staticmethod
    async def _resolve_instruction(
        instruction: str | InstructionProvider,
        readonly_context: "ReadonlyContext",
    ) -> tuple[str, bool]:
        # Provider output is used as-is; only plain strings get state injection.
        if isinstance(instruction, str):
            return instruction, True
        result = instruction(readonly_context)
        if inspect.isawaitable(result):
            result = await result
        return result, False

    async def canonical_instruction(self, readonly_context: "ReadonlyContext") -> tuple[str, bool]:
        """Return ``(instruction, needs_state_injection)``."""
        return await self._resolve_instruction(self.instruction, readonly_context)

    async def canonical_global_instruction(self, readonly_context: "ReadonlyContext") -> tuple[str, bool]:
        """Return ``(global_instruction, needs_state_injection)``."""
        return await self._resolve_instruction(self.global_instruction, readonly_context)

    async def canonical_tools(self, readonly_context: "ReadonlyContext | None" = None) -> list[BaseTool]:
        """Tools with plain callables wrapped as FunctionTool."""
        resolved: list[BaseTool] = []
        for tool in self.tools:
            if isinstance(tool, BaseTool):
                resolved.append(tool)
            else:
                resolved.append(FunctionTool(tool))
        return resolved

    @property
    def canonical_before_model_callbacks(self) -> list[Callback]:
        return normalize_callbacks(self.before_model_callback)

    @property
    def canonical_after_model_callbacks(self) -> list[Callback]:
        return normalize_callbacks(self.after_model_callback)

    @property
    def canonical_on_model_error_callbacks(self) -> list[Callback]:
        return normalize_callbacks(self.on_model_error_callback)

    @property
    def canonical_before_tool_callbacks(self) -> list[Callback]:
        return normalize_callbacks(self.before_tool_callback)

    @property
    def canonical_after_tool_callbacks(self) -> list[Callback]:
        return normalize_callbacks(self.after_tool_callback)

    @property
    def canonical_on_tool_error_callbacks(self) -> list[Callback]:
        return normalize_callbacks(self.on_tool_error_callback)
