"""Wrap plain Python callables as tools."""

import inspect
import typing
from typing import TYPE_CHECKING, Any, AsyncIterator, Callable

from agent_runtime.logging import get_logger
from agent_runtime.tools.registry import BaseTool, ToolKind

if TYPE_CHECKING:
    from agent_runtime.callback_context import ToolContext
    from agent_runtime.invocation_context import InvocationContext

log = get_logger(__name__)

# Parameters filled in by the runtime, never by the model.
_INJECTED_PARAMS = {"tool_context", "invocation_context", "input_stream"}

_JSON_TYPES: dict[Any, str] = {
    str: "string",
    int: "integer",
    float: "number",
    bool: "boolean",
    list: "array",
    dict: "object",
}


def _schema_for_annotation(annotation: Any) -> dict[str, Any]:
    if annotation is inspect.Parameter.empty:
        return {}
    origin = typing.get_origin(annotation) or annotation
    if origin in _JSON_TYPES:
        return {"type": _JSON_TYPES[origin]}
    # Optional[X] / X | None
    args = [arg for arg in typing.get_args(annotation) if arg is not type(None)]
    if len(args) == 1:
        return _schema_for_annotation(args[0])
    return {}


def build_parameters_schema(func: Callable[..., Any]) -> dict[str, Any]:
    """Derive a JSON schema for ``func``'s model-facing parameters."""
    properties: dict[str, Any] = {}
    required: list[str] = []
    for name, param in inspect.signature(func).parameters.items():
        if name in _INJECTED_PARAMS or param.kind in (param.VAR_POSITIONAL, param.VAR_KEYWORD):
            continue
        properties[name] = _schema_for_annotation(param.annotation)
        if param.default is inspect.Parameter.empty:
            required.append(name)
    schema: dict[str, Any] = {"type": "object", "properties": properties}
    if required:
        schema["required"] = required
    return schema


class FunctionTool(BaseTool):
    """A tool backed by a function, coroutine function, or async generator.

    Async generator functions are streaming tools: in live mode every value
    they yield is forwarded to the model as it arrives.
    """

    def __init__(
        self,
        func: Callable[..., Any],
        name: str | None = None,
        description: str | None = None,
        is_long_running: bool = False,
        parameters: dict[str, Any] | None = None,
        require_confirmation: bool | Callable[..., Any] = False,
    ):
        self.func = func
        self.name = name or func.__name__
        self.description = description if description is not None else inspect.cleandoc(func.__doc__ or "")
        self.is_long_running = is_long_running
        self.parameters = parameters if parameters is not None else build_parameters_schema(func)
        self.require_confirmation = require_confirmation
        self.kind = ToolKind.STREAMING if inspect.isasyncgenfunction(func) else ToolKind.SIMPLE
        self._signature = inspect.signature(func)

    @property
    def accepts_input_stream(self) -> bool:
        return "input_stream" in self._signature.parameters

    def get_declaration(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "parameters": self.parameters,
        }

    def _prepare_kwargs(self, args: dict[str, Any], **injected: Any) -> dict[str, Any]:
        params = self._signature.parameters
        accepts_any = any(p.kind == p.VAR_KEYWORD for p in params.values())
        kwargs = {
            key: value
            for key, value in args.items()
            if accepts_any or (key in params and key not in _INJECTED_PARAMS)
        }
        for key, value in injected.items():
            if key in params:
                kwargs[key] = value
        return kwargs

    def _missing_mandatory_args(self, kwargs: dict[str, Any]) -> list[str]:
        return [
            name
            for name, param in self._signature.parameters.items()
            if name not in _INJECTED_PARAMS
            and param.kind not in (param.VAR_POSITIONAL, param.VAR_KEYWORD)
            and param.default is inspect.Parameter.empty
            and name not in kwargs
        ]

    async def _needs_confirmation(self, args: dict[str, Any], tool_context: "ToolContext") -> bool:
        if callable(self.require_confirmation):
            result = self.require_confirmation(**args)
            if inspect.isawaitable(result):
                result = await result
            return bool(result)
        return bool(self.require_confirmation)

    async def run_async(self, *, args: dict[str, Any], tool_context: "ToolContext") -> Any:
        kwargs = self._prepare_kwargs(args, tool_context=tool_context)
        missing = self._missing_mandatory_args(kwargs)
        if missing:
            missing_str = "\n".join(missing)
            return {
                "error": (
                    f"Invoking `{self.name}()` failed as the following mandatory input "
                    f"parameters are not present:\n{missing_str}\nYou could retry calling "
                    "this tool, but it is IMPORTANT for you to provide all the mandatory parameters."
                )
            }

        if await self._needs_confirmation(args, tool_context):
            if tool_context.tool_confirmation is None:
                tool_context.request_confirmation(
                    hint=f"Please approve or reject the tool call {self.name}() by "
                    "responding with a FunctionResponse with an expected ToolConfirmation payload."
                )
                return {"error": "This tool call requires confirmation, please approve or reject."}
            if not tool_context.tool_confirmation.confirmed:
                return {"error": "This tool call is rejected."}

        if self.kind is ToolKind.STREAMING:
            # Outside live mode a streaming function is drained into a list.
            return [item async for item in self.func(**kwargs)]

        result = self.func(**kwargs)
        if inspect.isawaitable(result):
            result = await result
        return result

    async def call_live(
        self,
        *,
        args: dict[str, Any],
        tool_context: "ToolContext",
        invocation_context: "InvocationContext",
    ) -> AsyncIterator[Any]:
        injected: dict[str, Any] = {"tool_context": tool_context}
        if self.accepts_input_stream:
            async with invocation_context.active_streaming_tools.lock:
                entry = invocation_context.active_streaming_tools.get(self.name)
            injected["input_stream"] = entry.stream if entry else None
        kwargs = self._prepare_kwargs(args, **injected)
        if self.kind is ToolKind.STREAMING:
            async for item in self.func(**kwargs):
                yield item
            return
        result = self.func(**kwargs)
        if inspect.isawaitable(result):
            result = await result
        yield result
