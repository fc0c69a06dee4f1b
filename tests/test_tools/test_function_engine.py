import asyncio

import pytest

from agent_runtime.agents.base_agent import BaseAgent
from agent_runtime.events import Event
from agent_runtime.functions import (
    REQUEST_CONFIRMATION_FUNCTION_CALL_NAME,
    generate_request_confirmation_event,
    get_long_running_function_calls,
    handle_function_call_list,
    handle_function_calls_async,
    populate_client_function_call_id,
    remove_client_function_call_id,
)
from agent_runtime.invocation_context import InvocationContext
from agent_runtime.plugins import BasePlugin, PluginManager
from agent_runtime.session import Session
from agent_runtime.tools.confirmation import ToolConfirmation
from agent_runtime.tools.function_tool import FunctionTool
from agent_runtime.tools.registry import BaseTool, ToolRegistry
from agent_runtime.types import Content, FunctionCall, Part


class EchoTool(BaseTool):
    name = "echo"
    description = "Echo the input"

    def __init__(self, delay: float = 0.0):
        self.delay = delay
        self.calls: list[dict] = []

    async def run_async(self, *, args, tool_context):
        self.calls.append(args)
        await asyncio.sleep(self.delay)
        tool_context.state["echoed"] = args.get("text")
        return args.get("text")


class CounterTool(BaseTool):
    name = "counter"

    async def run_async(self, *, args, tool_context):
        tool_context.state["counted"] = True
        return {"count": 3}


class BrokenTool(BaseTool):
    name = "broken"

    async def run_async(self, *, args, tool_context):
        raise ValueError("disk on fire")


class PendingTool(BaseTool):
    name = "pending"
    is_long_running = True

    async def run_async(self, *, args, tool_context):
        return None


class Fatal(BaseException):
    pass


class FatalTool(BaseTool):
    name = "fatal"

    async def run_async(self, *, args, tool_context):
        raise Fatal()


class OverridePlugin(BasePlugin):
    async def before_tool_callback(self, *, tool, args, tool_context):
        return {"from": "plugin"}


def make_ctx(plugins=None) -> InvocationContext:
    session = Session(id="s1", app_name="app", user_id="u1")
    return InvocationContext(
        session=session,
        agent=BaseAgent("root"),
        plugin_manager=PluginManager(plugins),
    )


def call_event(*calls: FunctionCall) -> Event:
    return Event(
        author="root",
        content=Content(role="model", parts=[Part(function_call=call) for call in calls]),
    )


@pytest.mark.asyncio
async def test_parallel_calls_merge_parts_and_actions():
    ctx = make_ctx()
    slow_echo = EchoTool(delay=0.01)
    tools = ToolRegistry([slow_echo, CounterTool()])
    event = call_event(
        FunctionCall(name="echo", args={"text": "hi"}, id="c1"),
        FunctionCall(name="counter", args={}, id="c2"),
    )

    result = await handle_function_calls_async(ctx, event, tools)

    responses = result.get_function_responses()
    assert [r.id for r in responses] == ["c1", "c2"]
    assert responses[0].response == {"result": "hi"}
    assert responses[1].response == {"count": 3}
    assert result.content.role == "user"
    assert result.actions.state_delta == {"echoed": "hi", "counted": True}
    assert result.author == "root"


@pytest.mark.asyncio
async def test_missing_tool_only_fails_its_own_call():
    ctx = make_ctx()
    tools = ToolRegistry([CounterTool()])
    event = call_event(
        FunctionCall(name="nope", args={}, id="c1"),
        FunctionCall(name="counter", args={}, id="c2"),
    )

    result = await handle_function_calls_async(ctx, event, tools)

    responses = {r.id: r.response for r in result.get_function_responses()}
    assert responses["c1"] == {"error": "Function nope is not found in the tools registry."}
    assert responses["c2"] == {"count": 3}


@pytest.mark.asyncio
async def test_tool_error_goes_through_error_callbacks():
    ctx = make_ctx()
    tools = ToolRegistry([BrokenTool()])
    seen: list[str] = []

    def on_error(tool, args, tool_context, error):
        seen.append(str(error))
        return {"recovered": True}

    result = await handle_function_calls_async(
        ctx,
        call_event(FunctionCall(name="broken", id="c1")),
        tools,
        on_tool_error_callbacks=[on_error],
    )

    assert seen == ["disk on fire"]
    assert result.get_function_responses()[0].response == {"recovered": True}


@pytest.mark.asyncio
async def test_unrecovered_tool_error_becomes_error_response():
    ctx = make_ctx()
    tools = ToolRegistry([BrokenTool()])

    result = await handle_function_calls_async(ctx, call_event(FunctionCall(name="broken", id="c1")), tools)

    assert result.get_function_responses()[0].response == {"error": "disk on fire"}


@pytest.mark.asyncio
async def test_non_exception_errors_propagate():
    ctx = make_ctx()
    tools = ToolRegistry([FatalTool()])

    with pytest.raises(Fatal):
        await handle_function_calls_async(ctx, call_event(FunctionCall(name="fatal", id="c1")), tools)


@pytest.mark.asyncio
async def test_before_callback_skips_tool_and_after_callback_rewrites():
    ctx = make_ctx()
    echo = EchoTool()
    tools = ToolRegistry([echo])

    def before(tool, args, tool_context):
        return {"short": "circuit"}

    async def after(tool, args, tool_context, tool_response):
        return {**tool_response, "after": True}

    result = await handle_function_calls_async(
        ctx,
        call_event(FunctionCall(name="echo", args={"text": "x"}, id="c1")),
        tools,
        before_tool_callbacks=[before],
        after_tool_callbacks=[after],
    )

    assert echo.calls == []
    assert result.get_function_responses()[0].response == {"short": "circuit", "after": True}


@pytest.mark.asyncio
async def test_plugin_before_tool_wins_over_agent_callbacks():
    ctx = make_ctx([OverridePlugin("override")])
    tools = ToolRegistry([EchoTool()])

    def before(tool, args, tool_context):
        return {"from": "agent"}

    result = await handle_function_calls_async(
        ctx,
        call_event(FunctionCall(name="echo", args={"text": "x"}, id="c1")),
        tools,
        before_tool_callbacks=[before],
    )

    assert result.get_function_responses()[0].response == {"from": "plugin"}


@pytest.mark.asyncio
async def test_long_running_tool_without_result_yields_nothing():
    ctx = make_ctx()
    tools = ToolRegistry([PendingTool()])
    calls = [FunctionCall(name="pending", id="c1"), FunctionCall(name="other", id="c2")]

    assert get_long_running_function_calls(calls, tools) == {"c1"}
    assert await handle_function_calls_async(ctx, call_event(calls[0]), tools) is None


@pytest.mark.asyncio
async def test_filters_limit_which_calls_run():
    ctx = make_ctx()
    echo = EchoTool()
    tools = ToolRegistry([echo])
    calls = [
        FunctionCall(name="echo", args={"text": "a"}, id="c1"),
        FunctionCall(name="echo", args={"text": "b"}, id="c2"),
    ]

    result = await handle_function_call_list(ctx, calls, tools, filters={"c2"})

    assert echo.calls == [{"text": "b"}]
    assert [r.id for r in result.get_function_responses()] == ["c2"]


@pytest.mark.asyncio
async def test_confirmation_request_round_trip():
    ctx = make_ctx()

    def delete_file(path: str) -> str:
        return f"deleted {path}"

    tools = ToolRegistry([FunctionTool(delete_file, require_confirmation=True)])
    model_event = call_event(FunctionCall(name="delete_file", args={"path": "/tmp/x"}, id="c1"))

    response_event = await handle_function_calls_async(ctx, model_event, tools)

    assert response_event.get_function_responses()[0].response == {
        "error": "This tool call requires confirmation, please approve or reject."
    }
    assert "c1" in response_event.actions.requested_tool_confirmations

    request_event = generate_request_confirmation_event(ctx, model_event, response_event)
    request_call = request_event.get_function_calls()[0]
    assert request_call.name == REQUEST_CONFIRMATION_FUNCTION_CALL_NAME
    assert request_call.args["originalFunctionCall"] == {"name": "delete_file", "args": {"path": "/tmp/x"}, "id": "c1"}
    assert request_event.long_running_tool_ids == {request_call.id}

    confirmed = await handle_function_call_list(
        ctx,
        model_event.get_function_calls(),
        tools,
        tool_confirmation_dict={"c1": ToolConfirmation(confirmed=True)},
    )
    assert confirmed.get_function_responses()[0].response == {"result": "deleted /tmp/x"}


def test_client_function_call_ids_are_generated_and_stripped():
    event = call_event(FunctionCall(name="a"), FunctionCall(name="b", id="model-id"))

    populate_client_function_call_id(event)
    generated, kept = event.get_function_calls()
    assert generated.id.startswith("adk-")
    assert kept.id == "model-id"

    remove_client_function_call_id(event.content)
    assert generated.id is None
    assert kept.id == "model-id"


@pytest.mark.asyncio
async def test_long_running_tool_with_result_still_responds():
    class TicketTool(BaseTool):
        name = "open_ticket"
        is_long_running = True

        async def run_async(self, *, args, tool_context):
            return {"status": "pending", "ticket": "T-1"}

    ctx = make_ctx()
    tools = ToolRegistry([TicketTool()])

    result = await handle_function_calls_async(ctx, call_event(FunctionCall(name="open_ticket", id="c1")), tools)

    assert result.get_function_responses()[0].response == {"status": "pending", "ticket": "T-1"}


def test_populating_ids_twice_keeps_the_first_ids():
    event = call_event(FunctionCall(name="a"))

    populate_client_function_call_id(event)
    first = event.get_function_calls()[0].id
    populate_client_function_call_id(event)

    assert event.get_function_calls()[0].id == first


class FailingQueueTool(BaseTool):
    name = "enqueue"
    is_long_running = True

    async def run_async(self, *, args, tool_context):
        raise ValueError("queue down")


@pytest.mark.asyncio
async def test_one_failing_call_does_not_affect_its_siblings():
    ctx = make_ctx()
    tools = ToolRegistry([EchoTool(delay=0.01), CounterTool(), BrokenTool()])
    event = call_event(
        FunctionCall(name="broken", id="a"),
        FunctionCall(name="echo", args={"text": "hi"}, id="b"),
        FunctionCall(name="counter", id="c"),
    )

    result = await handle_function_calls_async(ctx, event, tools)

    responses = {r.id: r.response for r in result.get_function_responses()}
    assert responses == {
        "a": {"error": "disk on fire"},
        "b": {"result": "hi"},
        "c": {"count": 3},
    }


@pytest.mark.asyncio
async def test_after_callbacks_see_no_response_for_unrecovered_errors():
    ctx = make_ctx()
    tools = ToolRegistry([BrokenTool()])
    seen: list = []

    def after(tool, args, tool_context, tool_response):
        seen.append(tool_response)

    result = await handle_function_calls_async(
        ctx,
        call_event(FunctionCall(name="broken", id="c1")),
        tools,
        after_tool_callbacks=[after],
    )

    assert seen == [None]
    assert result.get_function_responses()[0].response == {"error": "disk on fire"}


@pytest.mark.asyncio
async def test_failing_long_running_tool_yields_nothing():
    ctx = make_ctx()
    tools = ToolRegistry([FailingQueueTool()])
    seen: list = []

    def after(tool, args, tool_context, tool_response):
        seen.append(tool_response)

    result = await handle_function_calls_async(
        ctx,
        call_event(FunctionCall(name="enqueue", id="c1")),
        tools,
        after_tool_callbacks=[after],
    )

    assert result is None
    assert seen == [None]


def test_tool_registries_do_not_share_tools():
    first = ToolRegistry([EchoTool()])
    second = ToolRegistry()

    second.register(CounterTool())

    assert "echo" in first and "counter" not in first
    assert "counter" in second and "echo" not in second
