import pytest

from agent_runtime.agents import LlmAgent, LoopAgent
from agent_runtime.exceptions import LlmCallLimitExceededError
from agent_runtime.invocation_context import RunConfig, StreamingMode
from agent_runtime.llm import BaseLlm, LlmResponse
from agent_runtime.runner import Runner
from agent_runtime.session import InMemorySessionService
from agent_runtime.tools.builtin import ExitLoopTool
from agent_runtime.types import Content, FunctionCall, Part


class FakeLlm(BaseLlm):
    """Replays scripted responses, one entry per model call.

    An entry is a response, a list of streamed responses, or an exception
    raised instead of responding.
    """

    def __init__(self, responses):
        super().__init__("fake-model")
        self.responses = list(responses)
        self.requests = []

    async def generate_content_async(self, llm_request, stream=False):
        self.requests.append(llm_request)
        entry = self.responses.pop(0)
        if isinstance(entry, Exception):
            raise entry
        for response in entry if isinstance(entry, list) else [entry]:
            yield response


def text(value: str, partial: bool | None = None) -> LlmResponse:
    return LlmResponse(content=Content.model_text(value), partial=partial)


def call(name: str, args: dict | None = None) -> LlmResponse:
    return LlmResponse(content=Content(role="model", parts=[Part(function_call=FunctionCall(name=name, args=args or {}))]))


async def run(agent, message: str, run_config: RunConfig | None = None, session_id: str | None = None):
    service = InMemorySessionService()
    session = await service.create_session(app_name="app", user_id="u1", session_id=session_id)
    runner = Runner(app_name="app", agent=agent, session_service=service)
    events = [
        event
        async for event in runner.run_async(
            user_id="u1",
            session_id=session.id,
            new_message=Content.user_text(message),
            run_config=run_config or RunConfig(),
        )
    ]
    return events, runner, session.id


@pytest.mark.asyncio
async def test_plain_text_reply_is_final():
    llm = FakeLlm([text("Hello!")])
    agent = LlmAgent(name="helper", model=llm)

    events, runner, session_id = await run(agent, "hi")

    assert len(events) == 1
    assert events[0].author == "helper"
    assert events[0].content.text == "Hello!"
    assert events[0].is_final_response()
    session = await runner.session_service.get_session(app_name="app", user_id="u1", session_id=session_id)
    assert [e.author for e in session.events] == ["user", "helper"]


@pytest.mark.asyncio
async def test_tool_call_runs_then_model_answers():
    def get_weather(city: str) -> str:
        """Current weather for a city."""
        return f"sunny in {city}"

    llm = FakeLlm([call("get_weather", {"city": "Paris"}), text("It is sunny in Paris.")])
    agent = LlmAgent(name="helper", model=llm, tools=[get_weather])

    events, _, _ = await run(agent, "weather in Paris?")

    call_event, response_event, answer = events
    function_call = call_event.get_function_calls()[0]
    assert function_call.id.startswith("adk-")
    assert response_event.get_function_responses()[0].response == {"result": "sunny in Paris"}
    assert response_event.get_function_responses()[0].id == function_call.id
    assert answer.content.text == "It is sunny in Paris."

    second_request = llm.requests[1]
    assert [c.role for c in second_request.contents] == ["user", "model", "user"]
    # Client-generated ids never reach the model.
    assert second_request.contents[1].parts[0].function_call.id is None


@pytest.mark.asyncio
async def test_each_yielded_event_gets_a_fresh_id():
    def ping() -> str:
        return "pong"

    llm = FakeLlm([call("ping"), text("done")])
    agent = LlmAgent(name="helper", model=llm, tools=[ping])

    events, _, _ = await run(agent, "ping")

    assert len({event.id for event in events}) == len(events)


@pytest.mark.asyncio
async def test_before_model_callback_skips_the_model():
    llm = FakeLlm([])

    def cached(callback_context, llm_request):
        return LlmResponse(content=Content.model_text("from cache"))

    agent = LlmAgent(name="helper", model=llm, before_model_callback=cached)

    events, _, _ = await run(agent, "hi")

    assert llm.requests == []
    assert [e.content.text for e in events] == ["from cache"]


@pytest.mark.asyncio
async def test_after_model_callback_replaces_response():
    llm = FakeLlm([text("raw")])

    def polish(callback_context, llm_response):
        return LlmResponse(content=Content.model_text(llm_response.content.text.upper()))

    agent = LlmAgent(name="helper", model=llm, after_model_callback=polish)

    events, _, _ = await run(agent, "hi")

    assert events[0].content.text == "RAW"


@pytest.mark.asyncio
async def test_model_error_with_json_payload_becomes_error_event():
    llm = FakeLlm([RuntimeError('{"error": {"code": 429, "message": "Resource exhausted"}}')])
    agent = LlmAgent(name="helper", model=llm)

    events, _, _ = await run(agent, "hi")

    assert len(events) == 1
    assert events[0].error_code == "429"
    assert events[0].error_message == "Resource exhausted"


@pytest.mark.asyncio
async def test_model_error_without_payload_is_unknown():
    llm = FakeLlm([ValueError("connection reset")])
    agent = LlmAgent(name="helper", model=llm)

    events, _, _ = await run(agent, "hi")

    assert events[0].error_code == "UNKNOWN"
    assert events[0].error_message == "connection reset"


@pytest.mark.asyncio
async def test_model_error_callback_can_recover():
    llm = FakeLlm([ValueError("boom")])
    seen: list[str] = []

    def fallback(callback_context, llm_request, error):
        seen.append(str(error))
        return LlmResponse(content=Content.model_text("fallback answer"))

    agent = LlmAgent(name="helper", model=llm, on_model_error_callback=fallback)

    events, _, _ = await run(agent, "hi")

    assert seen == ["boom"]
    assert events[0].content.text == "fallback answer"
    assert events[0].error_code is None


@pytest.mark.asyncio
async def test_transfer_hands_off_to_sub_agent_and_next_turn_stays_there():
    root_llm = FakeLlm([call("transfer_to_agent", {"agent_name": "billing"})])
    billing_llm = FakeLlm([text("Your invoice is on its way."), text("Anything else?")])
    billing = LlmAgent(name="billing", description="Handles invoices", model=billing_llm)
    root = LlmAgent(name="root", model=root_llm, sub_agents=[billing])

    events, runner, session_id = await run(root, "send my invoice")

    assert [e.author for e in events] == ["root", "root", "billing"]
    assert events[1].actions.transfer_to_agent == "billing"
    assert events[2].content.text == "Your invoice is on its way."

    follow_up = [
        event
        async for event in runner.run_async(
            user_id="u1",
            session_id=session_id,
            new_message=Content.user_text("thanks"),
            run_config=RunConfig(),
        )
    ]
    assert [e.author for e in follow_up] == ["billing"]
    assert len(root_llm.requests) == 1


@pytest.mark.asyncio
async def test_output_key_saves_final_text_to_state():
    llm = FakeLlm([text("Paris")])
    agent = LlmAgent(name="helper", model=llm, output_key="capital")

    events, runner, session_id = await run(agent, "capital of France?")

    assert events[0].actions.state_delta == {"capital": "Paris"}
    session = await runner.session_service.get_session(app_name="app", user_id="u1", session_id=session_id)
    assert session.state["capital"] == "Paris"


@pytest.mark.asyncio
async def test_output_schema_parses_json_output():
    llm = FakeLlm([text('{"city": "Paris", "population": 2100000}')])
    agent = LlmAgent(name="helper", model=llm, output_key="answer", output_schema={"type": "object"})

    events, _, _ = await run(agent, "biggest French city?")

    assert events[0].actions.state_delta == {"answer": {"city": "Paris", "population": 2100000}}


@pytest.mark.asyncio
async def test_llm_call_limit_is_enforced():
    def ping() -> str:
        return "pong"

    llm = FakeLlm([call("ping"), text("never reached")])
    agent = LlmAgent(name="helper", model=llm, tools=[ping])

    with pytest.raises(LlmCallLimitExceededError):
        await run(agent, "ping", run_config=RunConfig(max_llm_calls=1))

    assert len(llm.requests) == 1


@pytest.mark.asyncio
async def test_streamed_partials_are_not_persisted():
    llm = FakeLlm([[text("Hel", partial=True), text("lo", partial=True), text("Hello")]])
    agent = LlmAgent(name="helper", model=llm)

    events, runner, session_id = await run(agent, "hi", run_config=RunConfig(streaming_mode=StreamingMode.SSE))

    assert [e.partial for e in events] == [True, True, None]
    session = await runner.session_service.get_session(app_name="app", user_id="u1", session_id=session_id)
    assert [e.content.text for e in session.events] == ["hi", "Hello"]


@pytest.mark.asyncio
async def test_partial_function_call_is_not_executed():
    calls: list[str] = []

    def ping() -> str:
        calls.append("ping")
        return "pong"

    preview = call("ping")
    preview.partial = True
    llm = FakeLlm([[preview, call("ping")], text("done")])
    agent = LlmAgent(name="helper", model=llm, tools=[ping])

    await run(agent, "ping", run_config=RunConfig(streaming_mode=StreamingMode.SSE))

    assert calls == ["ping"]


@pytest.mark.asyncio
async def test_loop_agent_stops_on_escalation():
    llm = FakeLlm([text("draft 1"), call("exit_loop")])
    worker = LlmAgent(name="worker", model=llm, tools=[ExitLoopTool()])
    loop = LoopAgent(name="loop", max_iterations=5, sub_agents=[worker])

    events, _, _ = await run(loop, "write a draft")

    assert len(llm.requests) == 2
    assert events[-1].actions.escalate is True
    assert events[-1].actions.skip_summarization is True


@pytest.mark.asyncio
async def test_loop_agent_respects_max_iterations():
    llm = FakeLlm([text("one"), text("two")])
    worker = LlmAgent(name="worker", model=llm)
    loop = LoopAgent(name="loop", max_iterations=2, sub_agents=[worker])

    events, _, _ = await run(loop, "go")

    assert [e.content.text for e in events] == ["one", "two"]


@pytest.mark.asyncio
async def test_before_agent_callback_content_skips_agent():
    llm = FakeLlm([])

    def gate(callback_context):
        return Content.model_text("closed for maintenance")

    agent = LlmAgent(name="helper", model=llm, before_agent_callback=gate)

    events, _, _ = await run(agent, "hi")

    assert llm.requests == []
    assert [(e.author, e.content.text) for e in events] == [("helper", "closed for maintenance")]


@pytest.mark.asyncio
async def test_after_agent_callback_state_change_is_emitted():
    llm = FakeLlm([text("done")])

    def record(callback_context):
        callback_context.state["visits"] = 1
        return None

    agent = LlmAgent(name="helper", model=llm, after_agent_callback=record)

    events, _, _ = await run(agent, "hi")

    assert events[-1].content is None
    assert events[-1].actions.state_delta == {"visits": 1}
