"""Build the model-facing conversation history from session events."""

import copy
from typing import Sequence

from agent_runtime.events import Event
from agent_runtime.functions import (
    REQUEST_CONFIRMATION_FUNCTION_CALL_NAME,
    REQUEST_EUC_FUNCTION_CALL_NAME,
    merge_parallel_function_response_events,
    remove_client_function_call_id,
)
from agent_runtime.logging import get_logger
from agent_runtime.types import Content, Part

log = get_logger(__name__)

_CLIENT_ONLY_CALL_NAMES = (REQUEST_EUC_FUNCTION_CALL_NAME, REQUEST_CONFIRMATION_FUNCTION_CALL_NAME)


def _is_event_belongs_to_branch(branch: str | None, event: Event) -> bool:
    """Events from the current branch or one of its ancestors are visible."""
    if not branch or not event.branch:
        return True
    return branch == event.branch or branch.startswith(f"{event.branch}.")


def _is_client_only_event(event: Event) -> bool:
    """Credential and confirmation round-trips never go to the model."""
    for call in event.get_function_calls():
        if call.name in _CLIENT_ONLY_CALL_NAMES:
            return True
    for response in event.get_function_responses():
        if response.name in _CLIENT_ONLY_CALL_NAMES:
            return True
    return False


def _is_empty_content(event: Event) -> bool:
    if not event.content or not event.content.role or not event.content.parts:
        return True
    return all(part.is_empty() for part in event.content.parts)


def _is_other_agent_reply(agent_name: str, event: Event) -> bool:
    return bool(agent_name) and event.author != agent_name and event.author != "user"


def _present_other_agent_message(event: Event) -> Event:
    """Rewrite another agent's message as user-side context."""
    content = Content(role="user", parts=[Part(text="For context:")])
    for part in event.content.parts if event.content else []:
        if part.thought:
            continue
        if part.text:
            content.parts.append(Part(text=f"[{event.author}] said: {part.text}"))
        elif part.function_call:
            content.parts.append(Part(
                text=f"[{event.author}] called tool `{part.function_call.name}` "
                f"with parameters: {part.function_call.args}"
            ))
        elif part.function_response:
            content.parts.append(Part(
                text=f"[{event.author}] `{part.function_response.name}` tool returned result: "
                f"{part.function_response.response}"
            ))
        elif part.inline_data or part.file_data:
            content.parts.append(part)

    return Event(
        invocation_id=event.invocation_id,
        author="user",
        branch=event.branch,
        content=content,
        timestamp=event.timestamp,
    )


def _rearrange_events_for_latest_function_response(events: list[Event]) -> list[Event]:
    """Move a late function response right after its call.

    Happens when a long-running tool answers after other turns took place.
    """
    if len(events) < 2:
        return events

    latest = events[-1]
    responses = latest.get_function_responses()
    if not responses:
        return events

    response_ids = {response.id for response in responses}
    if any(call.id in response_ids for call in events[-2].get_function_calls()):
        return events

    call_index = -1
    call_ids: set[str | None] = set()
    for index in range(len(events) - 2, -1, -1):
        calls = events[index].get_function_calls()
        if any(call.id in response_ids for call in calls):
            call_index = index
            call_ids = {call.id for call in calls}
            break
    if call_index == -1:
        log.warning("No function call found for latest function response", ids=sorted(i for i in response_ids if i))
        return events

    matched = [
        event
        for event in events[call_index + 1:-1]
        if any(response.id in call_ids for response in event.get_function_responses())
    ]
    matched.append(latest)
    return events[:call_index + 1] + [merge_parallel_function_response_events(matched)]


def _rearrange_events_for_async_function_responses_in_history(events: list[Event]) -> list[Event]:
    """Place every function response directly after its call."""
    response_index_by_call_id: dict[str | None, int] = {}
    for index, event in enumerate(events):
        for response in event.get_function_responses():
            response_index_by_call_id[response.id] = index

    result: list[Event] = []
    for event in events:
        if event.get_function_responses():
            continue
        result.append(event)
        calls = event.get_function_calls()
        if not calls:
            continue
        indices = sorted({
            response_index_by_call_id[call.id]
            for call in calls
            if call.id in response_index_by_call_id
        })
        if len(indices) == 1:
            result.append(events[indices[0]])
        elif indices:
            result.append(merge_parallel_function_response_events([events[i] for i in indices]))
    return result


def get_contents(events: Sequence[Event], agent_name: str = "", branch: str | None = None) -> list[Content]:
    """Full conversation history visible to ``agent_name`` on ``branch``."""
    filtered: list[Event] = []
    for event in events:
        if _is_empty_content(event) or event.partial:
            continue
        if not _is_event_belongs_to_branch(branch, event):
            continue
        if _is_client_only_event(event):
            continue
        if _is_other_agent_reply(agent_name, event):
            filtered.append(_present_other_agent_message(event))
        else:
            filtered.append(event)

    arranged = _rearrange_events_for_latest_function_response(filtered)
    arranged = _rearrange_events_for_async_function_responses_in_history(arranged)

    contents: list[Content] = []
    for event in arranged:
        content = copy.deepcopy(event.content)
        remove_client_function_call_id(content)
        contents.append(content)
    return contents


def get_current_turn_contents(
    events: Sequence[Event],
    agent_name: str = "",
    branch: str | None = None,
) -> list[Content]:
    """History starting at the latest user message or hand-off."""
    for index in range(len(events) - 1, -1, -1):
        event = events[index]
        if not _is_event_belongs_to_branch(branch, event):
            continue
        if event.author == "user" or _is_other_agent_reply(agent_name, event):
            return get_contents(events[index:], agent_name, branch)
    return []
