"""Context objects handed to callbacks and tools."""

from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Mapping

from agent_runtime.events import EventActions
from agent_runtime.exceptions import ArtifactServiceNotConfiguredError
from agent_runtime.state import State
from agent_runtime.tools.confirmation import ToolConfirmation
from agent_runtime.types import Content, Part

if TYPE_CHECKING:
    from agent_runtime.invocation_context import InvocationContext
    from agent_runtime.session import Session


class ReadonlyContext:
    """Read-only view of the current invocation."""

    def __init__(self, invocation_context: "InvocationContext"):
        self._invocation_context = invocation_context

    @property
    def invocation_context(self) -> "InvocationContext":
        return self._invocation_context

    @property
    def user_content(self) -> Content | None:
        return self._invocation_context.user_content

    @property
    def invocation_id(self) -> str:
        return self._invocation_context.invocation_id

    @property
    def agent_name(self) -> str:
        return self._invocation_context.agent.name

    @property
    def session(self) -> "Session":
        return self._invocation_context.session

    @property
    def state(self) -> Mapping[str, Any]:
        return MappingProxyType(self._invocation_context.session.state)


class CallbackContext(ReadonlyContext):
    """Context for agent and model callbacks.

    State writes land in both the session state and ``actions.state_delta``.
    """

    def __init__(
        self,
        invocation_context: "InvocationContext",
        event_actions: EventActions | None = None,
    ):
        super().__init__(invocation_context)
        self._event_actions = event_actions or EventActions()
        self._state = State(
            value=invocation_context.session.state,
            delta=self._event_actions.state_delta,
        )

    @property
    def state(self) -> State:
        return self._state

    @property
    def actions(self) -> EventActions:
        return self._event_actions

    def _artifact_service(self):
        service = self._invocation_context.artifact_service
        if service is None:
            raise ArtifactServiceNotConfiguredError()
        return service

    async def load_artifact(self, filename: str, version: int | None = None) -> Part | None:
        ctx = self._invocation_context
        return await self._artifact_service().load_artifact(
            app_name=ctx.app_name,
            user_id=ctx.user_id,
            session_id=ctx.session.id,
            filename=filename,
            version=version,
        )

    async def save_artifact(self, filename: str, artifact: Part) -> int:
        """Save an artifact and record its version in the actions delta.

        Returns:
            The new version number.
        """
        ctx = self._invocation_context
        version = await self._artifact_service().save_artifact(
            app_name=ctx.app_name,
            user_id=ctx.user_id,
            session_id=ctx.session.id,
            filename=filename,
            artifact=artifact,
        )
        self._event_actions.artifact_delta[filename] = version
        return version

    async def list_artifacts(self) -> list[str]:
        ctx = self._invocation_context
        return await self._artifact_service().list_artifact_keys(
            app_name=ctx.app_name,
            user_id=ctx.user_id,
            session_id=ctx.session.id,
        )


class ToolContext(CallbackContext):
    """Context for a single tool call."""

    def __init__(
        self,
        invocation_context: "InvocationContext",
        function_call_id: str | None = None,
        event_actions: EventActions | None = None,
        tool_confirmation: ToolConfirmation | None = None,
    ):
        super().__init__(invocation_context, event_actions)
        self.function_call_id = function_call_id
        self.tool_confirmation = tool_confirmation

    def request_credential(self, auth_config: Any) -> None:
        if not self.function_call_id:
            raise ValueError("function_call_id is not set.")
        self.actions.requested_auth_configs[self.function_call_id] = auth_config

    def request_confirmation(self, hint: str | None = None, payload: Any | None = None) -> None:
        """Ask the client to confirm this call before it runs."""
        if not self.function_call_id:
            raise ValueError("function_call_id is not set.")
        self.actions.requested_tool_confirmations[self.function_call_id] = ToolConfirmation(
            hint=hint or "",
            payload=payload,
        )
