from agent_runtime.events import Event, EventActions, merge_event_actions
from agent_runtime.llm import LlmResponse
from agent_runtime.state import State, extract_state_delta, merge_state, trim_temp_delta
from agent_runtime.types import Blob, Content, FunctionCall, FunctionResponse, Part


def test_final_response_rules():
    assert Event(author="a", content=Content.model_text("done")).is_final_response()

    call_event = Event(author="a", content=Content(role="model", parts=[Part(function_call=FunctionCall(name="t"))]))
    assert not call_event.is_final_response()

    partial = Event(author="a", content=Content.model_text("he"), partial=True)
    assert not partial.is_final_response()

    call_event.long_running_tool_ids = {"x"}
    assert call_event.is_final_response()

    response_event = Event(
        author="a",
        content=Content(role="user", parts=[Part(function_response=FunctionResponse(name="t"))]),
        actions=EventActions(skip_summarization=True),
    )
    assert response_event.is_final_response()


def test_from_llm_response_shares_base_identity_and_actions():
    base = Event(invocation_id="inv", author="agent", branch="root.agent")
    base.actions.state_delta["k"] = 1
    response = LlmResponse(content=Content.model_text("hi"), partial=True, finish_reason="STOP")

    merged = Event.from_llm_response(base, response)

    assert merged.id == base.id
    assert merged.timestamp == base.timestamp
    assert merged.actions is base.actions
    assert merged.branch == "root.agent"
    assert merged.partial is True
    assert merged.content.text == "hi"


def test_event_dict_round_trip_keeps_bytes_and_ids():
    event = Event(
        invocation_id="inv",
        author="agent",
        content=Content(role="model", parts=[
            Part(text="look", thought=True),
            Part(inline_data=Blob(mime_type="image/png", data=b"\x89PNG")),
            Part(function_call=FunctionCall(name="lookup", args={"q": "x"}, id="c1")),
        ]),
        long_running_tool_ids={"c1"},
        actions=EventActions(state_delta={"a": 1}, transfer_to_agent="other"),
    )

    restored = Event.from_dict(event.to_dict())

    assert restored.id == event.id
    assert restored.content.parts[0].thought is True
    assert restored.content.parts[1].inline_data.data == b"\x89PNG"
    assert restored.get_function_calls()[0].id == "c1"
    assert restored.long_running_tool_ids == {"c1"}
    assert restored.actions.state_delta == {"a": 1}
    assert restored.actions.transfer_to_agent == "other"


def test_merge_event_actions_merges_maps_and_keeps_last_scalar():
    first = EventActions(state_delta={"a": 1}, artifact_delta={"f": 0}, transfer_to_agent="x")
    second = EventActions(state_delta={"b": 2}, escalate=True)
    third = EventActions(state_delta={"a": 3}, transfer_to_agent="y")

    merged = merge_event_actions([first, None, second, third])

    assert merged.state_delta == {"a": 3, "b": 2}
    assert merged.artifact_delta == {"f": 0}
    assert merged.transfer_to_agent == "y"
    assert merged.escalate is True
    assert first.state_delta == {"a": 1}


def test_state_writes_land_in_value_and_delta():
    value = {"a": 1}
    delta: dict = {}
    state = State(value, delta)

    state["b"] = 2
    state.update({"a": 5})

    assert value == {"a": 5, "b": 2}
    assert delta == {"b": 2, "a": 5}
    assert state.has_delta()
    assert state.get("missing", "d") == "d"
    assert "b" in state


def test_state_scopes_split_and_merge():
    deltas = extract_state_delta({"app:theme": "dark", "user:lang": "en", "temp:scratch": 1, "count": 3})

    assert deltas.app == {"theme": "dark"}
    assert deltas.user == {"lang": "en"}
    assert deltas.session == {"count": 3}
    assert merge_state(deltas.app, deltas.user, deltas.session) == {
        "count": 3,
        "app:theme": "dark",
        "user:lang": "en",
    }
    assert trim_temp_delta({"temp:x": 1, "y": 2}) == {"y": 2}
