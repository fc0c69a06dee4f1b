"""Invocation-scoped context threaded through agents, processors and tools."""

import copy
import enum
import uuid
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel

from agent_runtime.cancellation import CancellationToken
from agent_runtime.config import Config, get_config
from agent_runtime.exceptions import LlmCallLimitExceededError
from agent_runtime.live import ActiveStreamingTools
from agent_runtime.live_request_queue import LiveRequestQueue
from agent_runtime.plugins import PluginManager
from agent_runtime.types import Blob, Content

if TYPE_CHECKING:
    from agent_runtime.agents.base_agent import BaseAgent
    from agent_runtime.artifacts import BaseArtifactService
    from agent_runtime.session import BaseSessionService, Session


class StreamingMode(str, enum.Enum):
    NONE = "none"
    SSE = "sse"
    BIDI = "bidi"


class RunConfig(BaseModel):
    """Per-run options."""

    streaming_mode: StreamingMode = StreamingMode.NONE
    # <= 0 disables the limit.
    max_llm_calls: int = 500
    progressive_sse: bool = False
    response_modalities: list[str] | None = None
    speech_config: dict[str, Any] | None = None
    output_audio_transcription: dict[str, Any] | None = None
    input_audio_transcription: dict[str, Any] | None = None
    # Seconds stop_streaming waits for a cancelled tool task.
    stop_streaming_timeout: float = 1.0

    @classmethod
    def from_config(cls, config: Config | None = None) -> "RunConfig":
        cfg = config or get_config()
        return cls(
            streaming_mode=StreamingMode(cfg.run.streaming_mode),
            max_llm_calls=cfg.run.max_llm_calls,
            progressive_sse=cfg.run.progressive_sse,
            stop_streaming_timeout=cfg.live.stop_streaming_timeout,
        )


class _LlmCallCounter:
    """Shared by every clone of one invocation context."""

    def __init__(self) -> None:
        self.count = 0

    def increment(self, run_config: RunConfig) -> None:
        self.count += 1
        if run_config.max_llm_calls > 0 and self.count > run_config.max_llm_calls:
            raise LlmCallLimitExceededError(run_config.max_llm_calls)


class RealtimeCacheEntry:
    """Buffered realtime audio chunk with its role."""

    def __init__(self, role: str, data: Blob, timestamp: float):
        self.role = role
        self.data = data
        self.timestamp = timestamp


def new_invocation_context_id() -> str:
    return f"e-{uuid.uuid4()}"


class InvocationContext:
    """State for one top-level run of the agent tree."""

    def __init__(
        self,
        *,
        session: "Session",
        agent: "BaseAgent",
        invocation_id: str | None = None,
        branch: str | None = None,
        user_content: Content | None = None,
        run_config: RunConfig | None = None,
        plugin_manager: PluginManager | None = None,
        session_service: "BaseSessionService | None" = None,
        artifact_service: "BaseArtifactService | None" = None,
        live_request_queue: LiveRequestQueue | None = None,
        cancellation_token: CancellationToken | None = None,
    ):
        self.invocation_id = invocation_id or new_invocation_context_id()
        self.session = session
        self.agent = agent
        self.branch = branch
        self.user_content = user_content
        self.run_config = run_config or RunConfig()
        self.plugin_manager = plugin_manager or PluginManager()
        self.session_service = session_service
        self.artifact_service = artifact_service
        self.live_request_queue = live_request_queue
        self.cancellation_token = cancellation_token or CancellationToken()
        self.active_streaming_tools = ActiveStreamingTools()
        self.input_realtime_cache: list[RealtimeCacheEntry] = []
        self.output_realtime_cache: list[RealtimeCacheEntry] = []
        self.live_session_resumption_handle: str | None = None
        self._llm_call_counter = _LlmCallCounter()

    @property
    def app_name(self) -> str:
        return self.session.app_name

    @property
    def user_id(self) -> str:
        return self.session.user_id

    @property
    def end_invocation(self) -> bool:
        return self.cancellation_token.cancelled

    @end_invocation.setter
    def end_invocation(self, value: bool) -> None:
        if value:
            self.cancellation_token.cancel()
        elif self.cancellation_token.cancelled:
            raise ValueError("An ended invocation cannot be resumed.")

    @property
    def llm_call_count(self) -> int:
        return self._llm_call_counter.count

    def increment_llm_call_count(self) -> None:
        """Count one model call.

        Raises:
            LlmCallLimitExceededError: When ``run_config.max_llm_calls`` is exceeded.
        """
        self._llm_call_counter.increment(self.run_config)

    def clone(self, **overrides: Any) -> "InvocationContext":
        """Shallow copy sharing session, token, registry and call counter."""
        ctx = copy.copy(self)
        for key, value in overrides.items():
            if not hasattr(ctx, key):
                raise AttributeError(f"InvocationContext has no attribute '{key}'")
            setattr(ctx, key, value)
        return ctx
