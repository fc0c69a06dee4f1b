"""Loop agent: runs its sub-agents in order until one escalates."""

from typing import TYPE_CHECKING, AsyncIterator

from agent_runtime.agents.base_agent import BaseAgent
from agent_runtime.events import Event
from agent_runtime.logging import get_logger

if TYPE_CHECKING:
    from agent_runtime.invocation_context import InvocationContext

log = get_logger(__name__)


class LoopAgent(BaseAgent):
    """Repeat the sub-agents until an ``escalate`` action or ``max_iterations``.

    Without ``max_iterations`` the loop only ends on escalation or when the
    invocation is ended.
    """

    def __init__(self, name: str, max_iterations: int | None = None, **kwargs):
        super().__init__(name, **kwargs)
        self.max_iterations = max_iterations

    async def run_async_impl(self, ctx: "InvocationContext") -> AsyncIterator[Event]:
        if not self.sub_agents:
            return
        iteration = 0
        while self.max_iterations is None or iteration < self.max_iterations:
            for sub_agent in self.sub_agents:
                should_exit = False
                async for event in sub_agent.run_async(ctx):
                    yield event
                    if event.actions.escalate:
                        should_exit = True
                if should_exit or ctx.end_invocation:
                    log.debug("Loop finished", agent=self.name, iteration=iteration, escalated=should_exit)
                    return
            iteration += 1
