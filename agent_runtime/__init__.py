"""Agent Runtime - event-driven execution for LLM agents and their tools."""

__version__ = "0.1.0"

from agent_runtime.config import Config
from agent_runtime.events import Event, EventActions
from agent_runtime.runner import Runner

__all__ = ["Config", "Event", "EventActions", "Runner", "__version__"]
