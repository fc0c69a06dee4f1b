"""Custom exceptions for the agent runtime."""


class AgentRuntimeError(Exception):
    """Base exception for the agent runtime."""

    pass


class ConfigurationError(AgentRuntimeError):
    """Configuration-related errors."""

    pass


class LLMError(AgentRuntimeError):
    """LLM-related errors."""

    pass


class LLMAPIError(LLMError):
    """LLM API errors (rate limit, auth, etc.)."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ModelCallError(LLMError):
    """A model call failed during a turn."""

    pass


class LlmCallLimitExceededError(ModelCallError):
    """Invocation made more model calls than the run config allows."""

    def __init__(self, limit: int):
        super().__init__(f"Max number of llm calls limit of {limit} exceeded")
        self.limit = limit


class ToolError(AgentRuntimeError):
    """Tool execution errors."""

    pass


class ToolExecutionError(ToolError):
    """Tool execution failed."""

    def __init__(self, tool_name: str, message: str):
        super().__init__(f"Tool '{tool_name}' failed: {message}")
        self.tool_name = tool_name


class ToolNotFoundError(ToolError):
    """Tool not found in registry."""

    def __init__(self, tool_name: str):
        super().__init__(f"Function {tool_name} is not found in the tools registry.")
        self.tool_name = tool_name


class AgentError(AgentRuntimeError):
    """Agent tree errors."""

    pass


class AgentNotFoundError(AgentError):
    """Agent name not present in the agent tree."""

    def __init__(self, agent_name: str):
        super().__init__(f"Agent {agent_name} not found in the agent tree.")
        self.agent_name = agent_name


class SessionError(AgentRuntimeError):
    """Session-related errors."""

    pass


class SessionNotFoundError(SessionError):
    """Session not found."""

    def __init__(self, session_id: str):
        super().__init__(f"Session not found: {session_id}")
        self.session_id = session_id


class StaleSessionError(SessionError):
    """Append rejected because storage was updated after the caller's copy."""

    def __init__(
        self,
        session_id: str,
        last_update_time: float,
        storage_update_time: float,
    ):
        super().__init__(
            f"The last_update_time provided in the session object ({last_update_time}) is "
            f"earlier than the update_time in storage ({storage_update_time}). "
            f"Please check if session {session_id} is stale."
        )
        self.session_id = session_id
        self.last_update_time = last_update_time
        self.storage_update_time = storage_update_time


class ArtifactServiceNotConfiguredError(AgentRuntimeError):
    """An artifact operation was requested without an artifact service."""

    def __init__(self) -> None:
        super().__init__("Artifact service is not initialized.")


class CodeExecutionError(AgentRuntimeError):
    """Code executor failures."""

    pass


class StateInjectionError(AgentRuntimeError):
    """Instruction references a state key that is not set."""

    def __init__(self, key: str):
        super().__init__(f"Context variable not found: `{key}`.")
        self.key = key
