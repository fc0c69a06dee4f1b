"""Live-mode tool execution and the active streaming tool registry."""

import asyncio
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Sequence

from agent_runtime.callback_context import ToolContext
from agent_runtime.cancellation import CancellationToken, StreamingLock
from agent_runtime.events import Event
from agent_runtime.exceptions import ToolNotFoundError
from agent_runtime.functions import (
    build_function_response_event,
    build_not_found_event,
    merge_parallel_function_response_events,
)
from agent_runtime.live_request_queue import LiveRequestQueue
from agent_runtime.logging import get_logger
from agent_runtime.override_chain import Callback, OverrideChain
from agent_runtime.tools.builtin import STOP_STREAMING_TOOL_NAME
from agent_runtime.tools.registry import BaseTool, ToolKind, ToolRegistry
from agent_runtime.types import Content, FunctionCall

if TYPE_CHECKING:
    from agent_runtime.invocation_context import InvocationContext

log = get_logger(__name__)

PENDING_STATUS = "The function is running asynchronously and the results are pending."


@dataclass
class ActiveStreamingTool:
    """A running streaming tool and the handles needed to stop it."""

    cancel_token: CancellationToken
    task: asyncio.Task[Any] | None = None
    # Realtime input forwarded to tools that accept an input stream.
    stream: LiveRequestQueue | None = None


class ActiveStreamingTools:
    """Name -> running streaming tool, guarded by ``lock``.

    Callers must hold ``lock`` around every read-modify-write.
    """

    def __init__(self) -> None:
        self.lock = StreamingLock()
        self._tools: dict[str, ActiveStreamingTool] = {}

    def get(self, name: str) -> ActiveStreamingTool | None:
        return self._tools.get(name)

    def set(self, name: str, entry: ActiveStreamingTool) -> None:
        self._tools[name] = entry

    def pop(self, name: str) -> ActiveStreamingTool | None:
        return self._tools.pop(name, None)

    def drain(self) -> list[tuple[str, ActiveStreamingTool]]:
        """Remove and return every entry."""
        entries = list(self._tools.items())
        self._tools.clear()
        return entries

    def items(self) -> list[tuple[str, ActiveStreamingTool]]:
        return list(self._tools.items())

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)


async def cancel_task(task: asyncio.Task[Any] | None) -> None:
    """Cancel task and await it to avoid pending task warnings."""
    if task is None:
        return
    if task.done():
        if not task.cancelled() and task.exception() is not None:
            log.warning("Task failed before cancellation", task=task.get_name(), error=str(task.exception()))
        return
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass
    except Exception as e:
        log.debug("Cancelled task raised", task=task.get_name(), error=str(e))


async def handle_function_calls_live(
    ctx: "InvocationContext",
    function_call_event: Event,
    tools: ToolRegistry,
    before_tool_callbacks: Sequence[Callback] = (),
    after_tool_callbacks: Sequence[Callback] = (),
) -> Event | None:
    """Run the calls of one live model turn sequentially."""
    events: list[Event] = []
    for function_call in function_call_event.get_function_calls():
        try:
            event = await execute_single_function_call_live(
                ctx,
                function_call,
                tools,
                before_tool_callbacks,
                after_tool_callbacks,
            )
        except ToolNotFoundError as e:
            log.error("Tool not found", tool=function_call.name, function_call_id=function_call.id)
            event = build_not_found_event(ctx, function_call, e)
        if event is not None:
            events.append(event)

    if not events:
        return None
    return merge_parallel_function_response_events(events)


async def execute_single_function_call_live(
    ctx: "InvocationContext",
    function_call: FunctionCall,
    tools: ToolRegistry,
    before_tool_callbacks: Sequence[Callback] = (),
    after_tool_callbacks: Sequence[Callback] = (),
) -> Event | None:
    """Live counterpart of the single-call executor.

    Only agent callbacks run here; plugins are not consulted.
    """
    tool = tools.get(function_call.name)
    tool_context = ToolContext(ctx, function_call_id=function_call.id)
    args = dict(function_call.args or {})

    before_chain: OverrideChain[Any] = OverrideChain(None, before_tool_callbacks)
    response = await before_chain.run(tool=tool, args=args, tool_context=tool_context)
    if response is None:
        response = await _dispatch_live(ctx, tool, tools.kind_of(tool.name), function_call, args, tool_context)

    if response is not None and not isinstance(response, dict):
        response = {"result": response}

    after_chain: OverrideChain[Any] = OverrideChain(None, after_tool_callbacks)
    altered = await after_chain.run(
        tool=tool,
        args=args,
        tool_context=tool_context,
        tool_response=response,
    )
    if altered is not None:
        response = altered

    if tool.is_long_running and not response:
        return None

    return build_function_response_event(ctx, tool, function_call, response, tool_context)


async def _dispatch_live(
    ctx: "InvocationContext",
    tool: BaseTool,
    kind: ToolKind,
    function_call: FunctionCall,
    args: dict[str, Any],
    tool_context: ToolContext,
) -> Any:
    if kind is ToolKind.CONTROL and function_call.name == STOP_STREAMING_TOOL_NAME and "function_name" in args:
        return await handle_stop_streaming(ctx, args["function_name"])
    if kind is ToolKind.STREAMING:
        return await start_streaming_tool(ctx, tool, tool_context, args)
    return await tool.run_async(args=args, tool_context=tool_context)


async def handle_stop_streaming(ctx: "InvocationContext", function_name: str) -> dict[str, str]:
    """Stop the named streaming tool; never raises for unknown names."""
    registry = ctx.active_streaming_tools

    async with registry.lock:
        entry = registry.get(function_name)

    if entry is None or entry.task is None:
        log.debug("No active streaming tool to stop", tool=function_name)
        return {"status": f"No active streaming function named {function_name} found"}

    entry.cancel_token.cancel()
    timeout = ctx.run_config.stop_streaming_timeout
    done, _ = await asyncio.wait({entry.task}, timeout=timeout)
    if not done:
        log.warning("Streaming tool did not stop in time", tool=function_name, timeout=timeout)
        entry.task.cancel()

    async with registry.lock:
        if registry.get(function_name) is entry:
            registry.pop(function_name)

    log.info("Stopped streaming tool", tool=function_name)
    return {"status": f"Successfully stopped streaming function {function_name}"}


async def start_streaming_tool(
    ctx: "InvocationContext",
    tool: BaseTool,
    tool_context: ToolContext,
    args: dict[str, Any],
) -> dict[str, str]:
    """Start ``tool`` in the background and return a pending status."""
    registry = ctx.active_streaming_tools
    cancel_token = CancellationToken()
    stream = LiveRequestQueue() if getattr(tool, "accepts_input_stream", False) else None
    entry = ActiveStreamingTool(cancel_token=cancel_token, stream=stream)

    async def run_stream() -> None:
        try:
            async for result in tool.call_live(
                args=args,
                tool_context=tool_context,
                invocation_context=ctx,
            ):
                if cancel_token.cancelled:
                    break
                if ctx.live_request_queue is not None:
                    ctx.live_request_queue.send_content(
                        Content.user_text(f"Function {tool.name} returned: {result}")
                    )
        except asyncio.CancelledError:
            log.info("Streaming tool cancelled", tool=tool.name)
            raise
        except Exception as e:
            log.error("Streaming tool failed", tool=tool.name, error=str(e))

    async with registry.lock:
        if tool.name in registry:
            log.warning("Replacing active streaming tool", tool=tool.name)
        registry.set(tool.name, entry)
        entry.task = asyncio.create_task(run_stream(), name=f"streaming-tool-{tool.name}")

    log.info("Started streaming tool", tool=tool.name)
    return {"status": PENDING_STATUS}


async def cancel_all_streaming_tools(ctx: "InvocationContext") -> None:
    """Cancel and forget every active streaming tool of the invocation."""
    registry = ctx.active_streaming_tools
    async with registry.lock:
        entries = registry.drain()

    for name, entry in entries:
        entry.cancel_token.cancel()
        if entry.stream is not None:
            entry.stream.close()
        await cancel_task(entry.task)
        log.debug("Cancelled streaming tool", tool=name)
