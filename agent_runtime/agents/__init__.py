"""Agents."""

from agent_runtime.agents.base_agent import BaseAgent
from agent_runtime.agents.llm_agent import LlmAgent
from agent_runtime.agents.loop_agent import LoopAgent

__all__ = ["BaseAgent", "LlmAgent", "LoopAgent"]
