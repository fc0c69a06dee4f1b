import pytest

from agent_runtime.agents.base_agent import BaseAgent
from agent_runtime.artifacts import InMemoryArtifactService
from agent_runtime.callback_context import ReadonlyContext
from agent_runtime.contents import get_contents, get_current_turn_contents
from agent_runtime.events import Event
from agent_runtime.exceptions import StateInjectionError
from agent_runtime.functions import REQUEST_CONFIRMATION_FUNCTION_CALL_NAME
from agent_runtime.instructions import inject_session_state
from agent_runtime.invocation_context import InvocationContext
from agent_runtime.session import Session
from agent_runtime.types import Content, FunctionCall, FunctionResponse, Part


def readonly(state: dict | None = None, artifact_service=None) -> ReadonlyContext:
    ctx = InvocationContext(
        session=Session(id="s1", app_name="app", user_id="u1", state=state or {}),
        agent=BaseAgent("helper"),
        artifact_service=artifact_service,
    )
    return ReadonlyContext(ctx)


def call_event(author: str, name: str, call_id: str, branch: str | None = None) -> Event:
    return Event(
        author=author,
        branch=branch,
        content=Content(role="model", parts=[Part(function_call=FunctionCall(name=name, args={"q": 1}, id=call_id))]),
    )


def response_event(author: str, name: str, call_id: str) -> Event:
    return Event(
        author=author,
        content=Content(role="user", parts=[Part(function_response=FunctionResponse(
            name=name, response={"ok": True}, id=call_id,
        ))]),
    )


@pytest.mark.asyncio
async def test_inject_state_keys_and_scopes():
    context = readonly({"name": "Ada", "app:theme": "dark", "user:lang": "en", "count": 0})

    result = await inject_session_state(
        "Hi {name} ({user:lang}, {app:theme}) count={count} nick={nick?}",
        context,
    )

    assert result == "Hi Ada (en, dark) count=0 nick="


@pytest.mark.asyncio
async def test_invalid_names_are_left_untouched():
    context = readonly({"name": "Ada"})

    result = await inject_session_state('Reply as JSON: {"name": 1} or { not valid } for {name}', context)

    assert result == 'Reply as JSON: {"name": 1} or { not valid } for Ada'


@pytest.mark.asyncio
async def test_missing_required_key_raises():
    with pytest.raises(StateInjectionError, match="missing_key"):
        await inject_session_state("Value: {missing_key}", readonly())


@pytest.mark.asyncio
async def test_artifact_placeholders_load_text():
    artifacts = InMemoryArtifactService()
    await artifacts.save_artifact(
        app_name="app", user_id="u1", session_id="s1", filename="notes.txt", artifact=Part(text="remember milk"),
    )
    context = readonly(artifact_service=artifacts)

    result = await inject_session_state("Notes: {artifact.notes.txt}{artifact.other.txt?}", context)

    assert result == "Notes: remember milk"
    with pytest.raises(StateInjectionError):
        await inject_session_state("{artifact.other.txt}", context)


@pytest.mark.asyncio
async def test_artifact_placeholder_without_service_raises():
    with pytest.raises(StateInjectionError):
        await inject_session_state("{artifact.notes.txt}", readonly())


def test_other_agent_messages_become_user_context():
    events = [
        Event(author="user", content=Content.user_text("send my invoice")),
        Event(author="billing", content=Content(role="model", parts=[
            Part(text="thinking...", thought=True),
            Part(text="Invoice sent"),
        ])),
        call_event("billing", "lookup", "m-1"),
    ]

    contents = get_contents(events, agent_name="helper")

    assert [c.role for c in contents] == ["user", "user", "user"]
    assert [p.text for p in contents[1].parts] == ["For context:", "[billing] said: Invoice sent"]
    assert contents[2].parts[1].text == "[billing] called tool `lookup` with parameters: {'q': 1}"


def test_branch_filtering_hides_sibling_branches():
    events = [
        Event(author="user", content=Content.user_text("root message"), branch="root"),
        Event(author="helper", content=Content.model_text("from sibling"), branch="root.other"),
        Event(author="helper", content=Content.model_text("from my branch"), branch="root.helper"),
    ]

    contents = get_contents(events, agent_name="helper", branch="root.helper")

    assert [c.text for c in contents] == ["root message", "from my branch"]


def test_generated_ids_are_stripped_and_model_ids_kept():
    events = [
        Event(author="user", content=Content.user_text("go")),
        Event(author="helper", content=Content(role="model", parts=[
            Part(function_call=FunctionCall(name="a", id="adk-123")),
            Part(function_call=FunctionCall(name="b", id="model-7")),
        ])),
        Event(author="helper", content=Content(role="user", parts=[
            Part(function_response=FunctionResponse(name="a", response={}, id="adk-123")),
            Part(function_response=FunctionResponse(name="b", response={}, id="model-7")),
        ])),
    ]

    contents = get_contents(events, agent_name="helper")

    assert [p.function_call.id for p in contents[1].parts] == [None, "model-7"]
    assert [p.function_response.id for p in contents[2].parts] == [None, "model-7"]
    # The stored events are untouched.
    assert events[1].content.parts[0].function_call.id == "adk-123"


def test_partial_empty_and_client_only_events_are_skipped():
    events = [
        Event(author="user", content=Content.user_text("hi")),
        Event(author="helper", content=Content.model_text("Hel"), partial=True),
        Event(author="helper", content=Content(role="model", parts=[])),
        call_event("helper", REQUEST_CONFIRMATION_FUNCTION_CALL_NAME, "adk-c"),
        Event(author="helper", content=Content.model_text("Hello")),
    ]

    contents = get_contents(events, agent_name="helper")

    assert [c.text for c in contents] == ["hi", "Hello"]


def test_late_function_response_is_moved_next_to_its_call():
    events = [
        Event(author="user", content=Content.user_text("start the job")),
        call_event("helper", "start_job", "job-1"),
        Event(author="user", content=Content.user_text("is it done?")),
        response_event("helper", "start_job", "job-1"),
    ]

    contents = get_contents(events, agent_name="helper")

    assert [c.role for c in contents] == ["user", "model", "user"]
    assert contents[2].parts[0].function_response.id == "job-1"


def test_current_turn_starts_at_latest_user_message():
    events = [
        Event(author="user", content=Content.user_text("old")),
        Event(author="helper", content=Content.model_text("old answer")),
        Event(author="user", content=Content.user_text("new")),
        Event(author="helper", content=Content.model_text("thinking about new")),
    ]

    contents = get_current_turn_contents(events, agent_name="helper")

    assert [c.text for c in contents] == ["new", "thinking about new"]
