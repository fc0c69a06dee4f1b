"""Event model: one step of a conversation and its side effects."""

import time
import uuid
from dataclasses import dataclass, field, fields
from typing import TYPE_CHECKING, Any, Iterable

from agent_runtime.types import (
    Content,
    FunctionCall,
    FunctionResponse,
    content_from_dict,
    content_to_dict,
)

if TYPE_CHECKING:
    from agent_runtime.llm import LlmResponse


def new_event_id() -> str:
    """Return a fresh unique event id."""
    return str(uuid.uuid4())


@dataclass
class EventActions:
    """Side effects carried by an event."""

    # Do not ask the model to summarize this function response.
    skip_summarization: bool | None = None
    state_delta: dict[str, Any] = field(default_factory=dict)
    # filename -> version
    artifact_delta: dict[str, int] = field(default_factory=dict)
    transfer_to_agent: str | None = None
    escalate: bool | None = None
    # function call id -> auth config
    requested_auth_configs: dict[str, Any] = field(default_factory=dict)
    # function call id -> ToolConfirmation
    requested_tool_confirmations: dict[str, Any] = field(default_factory=dict)
    end_of_agent: bool | None = None
    agent_state: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        for item in fields(self):
            value = getattr(self, item.name)
            if item.name == "requested_tool_confirmations":
                value = {
                    key: conf.model_dump() if hasattr(conf, "model_dump") else conf
                    for key, conf in value.items()
                }
            data[item.name] = value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "EventActions":
        if not data:
            return cls()
        known = {item.name for item in fields(cls)}
        return cls(**{key: value for key, value in data.items() if key in known})


_MERGED_DICT_FIELDS = (
    "state_delta",
    "artifact_delta",
    "requested_auth_configs",
    "requested_tool_confirmations",
)
_LAST_WINS_FIELDS = ("skip_summarization", "transfer_to_agent", "escalate")


def merge_event_actions(
    sources: Iterable[EventActions | None],
    target: EventActions | None = None,
) -> EventActions:
    """Merge actions key-wise for maps and last-write-wins for scalars.

    Args:
        sources: Actions in merge order; ``None`` entries are skipped.
        target: Optional starting point, copied rather than mutated.

    Returns:
        A new EventActions instance.
    """
    result = EventActions()
    if target is not None:
        for name in _MERGED_DICT_FIELDS:
            getattr(result, name).update(getattr(target, name))
        for name in _LAST_WINS_FIELDS + ("end_of_agent", "agent_state"):
            setattr(result, name, getattr(target, name))

    for source in sources:
        if source is None:
            continue
        for name in _MERGED_DICT_FIELDS:
            getattr(result, name).update(getattr(source, name))
        for name in _LAST_WINS_FIELDS:
            value = getattr(source, name)
            if value is not None:
                setattr(result, name, value)
    return result


@dataclass
class Event:
    """One step of a conversation, authored by an agent or the user."""

    invocation_id: str = ""
    author: str = ""
    content: Content | None = None
    actions: EventActions = field(default_factory=EventActions)
    id: str = field(default_factory=new_event_id)
    timestamp: float = field(default_factory=time.time)
    # Dot-separated agent path, e.g. "root.child.grandchild".
    branch: str | None = None
    partial: bool | None = None
    turn_complete: bool | None = None
    interrupted: bool | None = None
    error_code: str | None = None
    error_message: str | None = None
    finish_reason: str | None = None
    usage_metadata: dict[str, Any] | None = None
    long_running_tool_ids: set[str] | None = None
    custom_metadata: dict[str, Any] | None = None

    def get_function_calls(self) -> list[FunctionCall]:
        if not self.content:
            return []
        return [part.function_call for part in self.content.parts if part.function_call]

    def get_function_responses(self) -> list[FunctionResponse]:
        if not self.content:
            return []
        return [part.function_response for part in self.content.parts if part.function_response]

    def has_trailing_code_execution_result(self) -> bool:
        if not self.content or not self.content.parts:
            return False
        return self.content.parts[-1].code_execution_result is not None

    def is_final_response(self) -> bool:
        """Whether this event ends the agent's turn.

        Long-running tool calls and skipped summarisation count as final even
        though they carry function parts.
        """
        if self.actions.skip_summarization or self.long_running_tool_ids:
            return True
        return (
            not self.get_function_calls()
            and not self.get_function_responses()
            and not self.partial
            and not self.has_trailing_code_execution_result()
        )

    @classmethod
    def from_llm_response(cls, base: "Event", response: "LlmResponse") -> "Event":
        """Overlay a model response onto the model-response base event."""
        return cls(
            invocation_id=base.invocation_id,
            author=base.author,
            branch=base.branch,
            actions=base.actions,
            id=base.id,
            timestamp=base.timestamp,
            content=response.content,
            partial=response.partial,
            turn_complete=response.turn_complete,
            interrupted=response.interrupted,
            error_code=response.error_code,
            error_message=response.error_message,
            finish_reason=response.finish_reason,
            usage_metadata=response.usage_metadata,
            custom_metadata=response.custom_metadata,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-compatible dictionary."""
        return {
            "id": self.id,
            "invocation_id": self.invocation_id,
            "author": self.author,
            "content": content_to_dict(self.content),
            "actions": self.actions.to_dict(),
            "timestamp": self.timestamp,
            "branch": self.branch,
            "partial": self.partial,
            "turn_complete": self.turn_complete,
            "interrupted": self.interrupted,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "finish_reason": self.finish_reason,
            "usage_metadata": self.usage_metadata,
            "long_running_tool_ids": (
                sorted(self.long_running_tool_ids) if self.long_running_tool_ids else None
            ),
            "custom_metadata": self.custom_metadata,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Event":
        """Create from dictionary."""
        long_running = data.get("long_running_tool_ids")
        return cls(
            id=data["id"],
            invocation_id=data.get("invocation_id", ""),
            author=data.get("author", ""),
            content=content_from_dict(data.get("content")),
            actions=EventActions.from_dict(data.get("actions")),
            timestamp=data.get("timestamp", time.time()),
            branch=data.get("branch"),
            partial=data.get("partial"),
            turn_complete=data.get("turn_complete"),
            interrupted=data.get("interrupted"),
            error_code=data.get("error_code"),
            error_message=data.get("error_message"),
            finish_reason=data.get("finish_reason"),
            usage_metadata=data.get("usage_metadata"),
            long_running_tool_ids=set(long_running) if long_running else None,
            custom_metadata=data.get("custom_metadata"),
        )
