"""Tool invocation engine: run function calls and build response events."""

import asyncio
import uuid
from typing import TYPE_CHECKING, Any, Sequence

from agent_runtime.callback_context import ToolContext
from agent_runtime.events import Event, merge_event_actions
from agent_runtime.exceptions import ToolNotFoundError
from agent_runtime.logging import get_logger
from agent_runtime.override_chain import Callback, OverrideChain
from agent_runtime.tools.confirmation import ToolConfirmation
from agent_runtime.tools.registry import BaseTool, ToolRegistry
from agent_runtime.types import Content, FunctionCall, FunctionResponse, Part

if TYPE_CHECKING:
    from agent_runtime.invocation_context import InvocationContext

log = get_logger(__name__)

AF_FUNCTION_CALL_ID_PREFIX = "adk-"
REQUEST_EUC_FUNCTION_CALL_NAME = "adk_request_credential"
REQUEST_CONFIRMATION_FUNCTION_CALL_NAME = "adk_request_confirmation"


def generate_client_function_call_id() -> str:
    return f"{AF_FUNCTION_CALL_ID_PREFIX}{uuid.uuid4()}"


def populate_client_function_call_id(model_response_event: Event) -> None:
    """Give every function call without an id a generated one."""
    for function_call in model_response_event.get_function_calls():
        if not function_call.id:
            function_call.id = generate_client_function_call_id()


def remove_client_function_call_id(content: Content | None) -> None:
    """Strip generated ids before the content is sent back to the model."""
    if not content:
        return
    for part in content.parts:
        if part.function_call and part.function_call.id and part.function_call.id.startswith(
            AF_FUNCTION_CALL_ID_PREFIX
        ):
            part.function_call.id = None
        if part.function_response and part.function_response.id and part.function_response.id.startswith(
            AF_FUNCTION_CALL_ID_PREFIX
        ):
            part.function_response.id = None


def get_long_running_function_calls(
    function_calls: Sequence[FunctionCall],
    tools: ToolRegistry,
) -> set[str]:
    """Ids of the calls that target long-running tools."""
    long_running_ids: set[str] = set()
    for function_call in function_calls:
        if function_call.id and function_call.name in tools and tools.get(function_call.name).is_long_running:
            long_running_ids.add(function_call.id)
    return long_running_ids


def generate_auth_event(ctx: "InvocationContext", function_response_event: Event) -> Event | None:
    """Build the credential-request event for pending auth configs, if any."""
    requested = function_response_event.actions.requested_auth_configs
    if not requested:
        return None

    parts: list[Part] = []
    long_running_ids: set[str] = set()
    for function_call_id, auth_config in requested.items():
        request_call = FunctionCall(
            name=REQUEST_EUC_FUNCTION_CALL_NAME,
            args={"function_call_id": function_call_id, "auth_config": auth_config},
            id=generate_client_function_call_id(),
        )
        long_running_ids.add(request_call.id)
        parts.append(Part(function_call=request_call))

    role = function_response_event.content.role if function_response_event.content else "model"
    return Event(
        invocation_id=ctx.invocation_id,
        author=ctx.agent.name,
        branch=ctx.branch,
        content=Content(role=role, parts=parts),
        long_running_tool_ids=long_running_ids,
    )


def generate_request_confirmation_event(
    ctx: "InvocationContext",
    function_call_event: Event,
    function_response_event: Event,
) -> Event | None:
    """Build the confirmation-request event for pending confirmations, if any."""
    requested = function_response_event.actions.requested_tool_confirmations
    if not requested:
        return None

    calls_by_id = {call.id: call for call in function_call_event.get_function_calls()}
    parts: list[Part] = []
    long_running_ids: set[str] = set()
    for function_call_id, confirmation in requested.items():
        original = calls_by_id.get(function_call_id)
        if original is None:
            continue
        if isinstance(confirmation, ToolConfirmation):
            confirmation = confirmation.model_dump()
        request_call = FunctionCall(
            name=REQUEST_CONFIRMATION_FUNCTION_CALL_NAME,
            args={
                "originalFunctionCall": {
                    "name": original.name,
                    "args": original.args,
                    "id": original.id,
                },
                "toolConfirmation": confirmation,
            },
            id=generate_client_function_call_id(),
        )
        long_running_ids.add(request_call.id)
        parts.append(Part(function_call=request_call))

    if not parts:
        return None
    role = function_response_event.content.role if function_response_event.content else "model"
    return Event(
        invocation_id=ctx.invocation_id,
        author=ctx.agent.name,
        branch=ctx.branch,
        content=Content(role=role, parts=parts),
        long_running_tool_ids=long_running_ids,
    )


def build_function_response_event(
    ctx: "InvocationContext",
    tool: BaseTool,
    function_call: FunctionCall,
    response: Any,
    tool_context: ToolContext,
) -> Event:
    """Wrap a tool result into a function-response event."""
    if not isinstance(response, dict):
        response = {"result": response}
    part = Part(
        function_response=FunctionResponse(name=tool.name, response=response, id=function_call.id)
    )
    return Event(
        invocation_id=ctx.invocation_id,
        author=ctx.agent.name,
        content=Content(role="user", parts=[part]),
        actions=tool_context.actions,
        branch=ctx.branch,
    )


def build_not_found_event(ctx: "InvocationContext", function_call: FunctionCall, error: ToolNotFoundError) -> Event:
    part = Part(
        function_response=FunctionResponse(
            name=function_call.name,
            response={"error": str(error)},
            id=function_call.id,
        )
    )
    return Event(
        invocation_id=ctx.invocation_id,
        author=ctx.agent.name,
        content=Content(role="user", parts=[part]),
        branch=ctx.branch,
    )


async def execute_single_function_call_async(
    ctx: "InvocationContext",
    function_call: FunctionCall,
    tools: ToolRegistry,
    before_tool_callbacks: Sequence[Callback] = (),
    after_tool_callbacks: Sequence[Callback] = (),
    on_tool_error_callbacks: Sequence[Callback] = (),
    tool_confirmation: ToolConfirmation | None = None,
) -> Event | None:
    """Run one function call through the before/run/error/after chains.

    Returns:
        The function-response event, or None for a long-running tool that
        returned nothing yet.

    Raises:
        ToolNotFoundError: If the tool is not registered.
    """
    tool = tools.get(function_call.name)
    tool_context = ToolContext(
        ctx,
        function_call_id=function_call.id,
        tool_confirmation=tool_confirmation,
    )
    args = dict(function_call.args or {})
    plugin_manager = ctx.plugin_manager
    log.debug("Executing tool", tool=tool.name, function_call_id=function_call.id)

    before_chain: OverrideChain[Any] = OverrideChain(
        plugin_manager.run_before_tool_callback, before_tool_callbacks
    )
    response = await before_chain.run(tool=tool, args=args, tool_context=tool_context)
    response_error: str | None = None

    if response is None:
        try:
            response = await tool.run_async(args=args, tool_context=tool_context)
        except Exception as e:
            error_chain: OverrideChain[Any] = OverrideChain(
                plugin_manager.run_on_tool_error_callback, on_tool_error_callbacks
            )
            response = await error_chain.run(tool=tool, args=args, tool_context=tool_context, error=e)
            if response is None:
                log.warning("Tool execution failed", tool=tool.name, function_call_id=function_call.id, error=str(e))
                response_error = str(e)

    after_chain: OverrideChain[Any] = OverrideChain(
        plugin_manager.run_after_tool_callback, after_tool_callbacks
    )
    altered = await after_chain.run(
        tool=tool,
        args=args,
        tool_context=tool_context,
        tool_response=response,
    )
    if altered is not None:
        response = altered

    if tool.is_long_running and not response:
        log.debug("Long-running tool returned no result yet", tool=tool.name)
        return None

    if response_error is not None:
        response = {"error": response_error}

    log.info("Tool executed", tool=tool.name, function_call_id=function_call.id)
    return build_function_response_event(ctx, tool, function_call, response, tool_context)


async def _execute_contained(
    ctx: "InvocationContext",
    function_call: FunctionCall,
    tools: ToolRegistry,
    before_tool_callbacks: Sequence[Callback],
    after_tool_callbacks: Sequence[Callback],
    on_tool_error_callbacks: Sequence[Callback],
    tool_confirmation: ToolConfirmation | None,
) -> Event | None:
    try:
        return await execute_single_function_call_async(
            ctx,
            function_call,
            tools,
            before_tool_callbacks,
            after_tool_callbacks,
            on_tool_error_callbacks,
            tool_confirmation,
        )
    except ToolNotFoundError as e:
        log.error("Tool not found", tool=function_call.name, function_call_id=function_call.id)
        return build_not_found_event(ctx, function_call, e)


async def handle_function_call_list(
    ctx: "InvocationContext",
    function_calls: Sequence[FunctionCall],
    tools: ToolRegistry,
    before_tool_callbacks: Sequence[Callback] = (),
    after_tool_callbacks: Sequence[Callback] = (),
    on_tool_error_callbacks: Sequence[Callback] = (),
    filters: set[str] | None = None,
    tool_confirmation_dict: dict[str, ToolConfirmation] | None = None,
) -> Event | None:
    """Run the calls concurrently and merge their response events.

    Args:
        filters: When given, only calls whose id is in this set run.
        tool_confirmation_dict: Confirmation payloads keyed by call id.

    Returns:
        The merged response event, or None when no call produced one.
    """
    selected = [call for call in function_calls if filters is None or call.id in filters]
    confirmations = tool_confirmation_dict or {}

    results = await asyncio.gather(*(
        _execute_contained(
            ctx,
            call,
            tools,
            before_tool_callbacks,
            after_tool_callbacks,
            on_tool_error_callbacks,
            confirmations.get(call.id) if call.id else None,
        )
        for call in selected
    ))
    events = [event for event in results if event is not None]
    if not events:
        return None

    merged = merge_parallel_function_response_events(events)
    if len(events) > 1:
        log.debug("Merged tool responses", count=len(events), event_id=merged.id)
    return merged


async def handle_function_calls_async(
    ctx: "InvocationContext",
    function_call_event: Event,
    tools: ToolRegistry,
    before_tool_callbacks: Sequence[Callback] = (),
    after_tool_callbacks: Sequence[Callback] = (),
    on_tool_error_callbacks: Sequence[Callback] = (),
    filters: set[str] | None = None,
    tool_confirmation_dict: dict[str, ToolConfirmation] | None = None,
) -> Event | None:
    """Run every function call of ``function_call_event``."""
    return await handle_function_call_list(
        ctx,
        function_call_event.get_function_calls(),
        tools,
        before_tool_callbacks,
        after_tool_callbacks,
        on_tool_error_callbacks,
        filters,
        tool_confirmation_dict,
    )


def merge_parallel_function_response_events(function_response_events: list[Event]) -> Event:
    """Merge response events: parts concatenated, actions merged, metadata from the first."""
    if not function_response_events:
        raise ValueError("No function response events provided.")
    if len(function_response_events) == 1:
        return function_response_events[0]

    parts: list[Part] = []
    for event in function_response_events:
        if event.content:
            parts.extend(event.content.parts)

    base = function_response_events[0]
    return Event(
        invocation_id=base.invocation_id,
        author=base.author,
        branch=base.branch,
        content=Content(role="user", parts=parts),
        actions=merge_event_actions(event.actions for event in function_response_events),
        timestamp=base.timestamp,
    )
