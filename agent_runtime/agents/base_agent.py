"""Base agent: the agent tree and the before/after agent callback wrapper."""

import functools
from typing import TYPE_CHECKING, AsyncIterator

from agent_runtime.callback_context import CallbackContext
from agent_runtime.events import Event
from agent_runtime.logging import get_logger
from agent_runtime.override_chain import Callback, OverrideChain, normalize_callbacks

if TYPE_CHECKING:
    from agent_runtime.invocation_context import InvocationContext

log = get_logger(__name__)


class BaseAgent:
    """Base class for all agents.

    Subclasses implement ``run_async_impl`` and, when they support live
    sessions, ``run_live_impl``. Callers use ``run_async`` / ``run_live``,
    which wrap the implementation with the agent callbacks.
    """

    def __init__(
        self,
        name: str,
        description: str = "",
        sub_agents: list["BaseAgent"] | None = None,
        before_agent_callback: Callback | list[Callback] | None = None,
        after_agent_callback: Callback | list[Callback] | None = None,
    ):
        """Initialize the agent.

        Args:
            name: Unique identifier within the agent tree
            description: One-line capability summary, shown to other agents
            sub_agents: Child agents; each may belong to one parent only
            before_agent_callback: Callback(s) run before the agent; a returned
                Content replaces the agent's run
            after_agent_callback: Callback(s) run after the agent; a returned
                Content is emitted as an extra event
        """
        self._validate_name(name)
        self.name = name
        self.description = description
        self.parent_agent: BaseAgent | None = None
        self.sub_agents: list[BaseAgent] = []
        self.before_agent_callback = before_agent_callback
        self.after_agent_callback = after_agent_callback
        for sub_agent in sub_agents or []:
            self.add_sub_agent(sub_agent)

    @staticmethod
    def _validate_name(name: str) -> None:
        if not name.isidentifier():
            raise ValueError(
                f"Found invalid agent name: `{name}`. Agent name must be a valid identifier."
            )
        if name == "user":
            raise ValueError("Agent name cannot be `user`. `user` is reserved for end-user's input.")

    def add_sub_agent(self, sub_agent: "BaseAgent") -> None:
        if sub_agent.parent_agent is not None:
            raise ValueError(
                f"Agent `{sub_agent.name}` already has a parent agent, current parent: "
                f"`{sub_agent.parent_agent.name}`, trying to add: `{self.name}`"
            )
        sub_agent.parent_agent = self
        self.sub_agents.append(sub_agent)

    @property
    def root_agent(self) -> "BaseAgent":
        agent = self
        while agent.parent_agent is not None:
            agent = agent.parent_agent
        return agent

    def find_agent(self, name: str) -> "BaseAgent | None":
        """Depth-first search starting at this agent."""
        if self.name == name:
            return self
        return self.find_sub_agent(name)

    def find_sub_agent(self, name: str) -> "BaseAgent | None":
        for sub_agent in self.sub_agents:
            found = sub_agent.find_agent(name)
            if found is not None:
                return found
        return None

    @property
    def canonical_before_agent_callbacks(self) -> list[Callback]:
        return normalize_callbacks(self.before_agent_callback)

    @property
    def canonical_after_agent_callbacks(self) -> list[Callback]:
        return normalize_callbacks(self.after_agent_callback)

    def _create_invocation_context(self, parent_context: "InvocationContext") -> "InvocationContext":
        return parent_context.clone(agent=self)

    async def run_async(self, parent_context: "InvocationContext") -> AsyncIterator[Event]:
        """Run this agent for one turn of the invocation."""
        ctx = self._create_invocation_context(parent_context)
        log.debug("Running agent", agent=self.name, invocation_id=ctx.invocation_id)

        before_event = await self._handle_before_agent_callback(ctx)
        if before_event is not None:
            yield before_event
            if before_event.content is not None:
                return
        if ctx.end_invocation:
            return

        async for event in self.run_async_impl(ctx):
            yield event
        if ctx.end_invocation:
            return

        after_event = await self._handle_after_agent_callback(ctx)
        if after_event is not None:
            yield after_event

    async def run_live(self, parent_context: "InvocationContext") -> AsyncIterator[Event]:
        """Run this agent over a live connection."""
        ctx = self._create_invocation_context(parent_context)
        log.debug("Running agent live", agent=self.name, invocation_id=ctx.invocation_id)

        before_event = await self._handle_before_agent_callback(ctx)
        if before_event is not None:
            yield before_event
            if before_event.content is not None:
                return
        if ctx.end_invocation:
            return

        async for event in self.run_live_impl(ctx):
            yield event

        after_event = await self._handle_after_agent_callback(ctx)
        if after_event is not None:
            yield after_event

    async def run_async_impl(self, ctx: "InvocationContext") -> AsyncIterator[Event]:
        raise NotImplementedError(f"run_async_impl is not implemented for {type(self).__name__}")
        yield

    async def run_live_impl(self, ctx: "InvocationContext") -> AsyncIterator[Event]:
        raise NotImplementedError(f"run_live_impl is not implemented for {type(self).__name__}")
        yield

    async def _run_agent_callbacks(
        self,
        ctx: "InvocationContext",
        plugin_hook,
        callbacks: list[Callback],
    ) -> Event | None:
        """Run one agent callback chain and wrap its outcome in an event.

        Returns:
            An event carrying the override content and/or the state changes
            made by the callbacks, or None when there is neither.
        """
        chain: OverrideChain = OverrideChain(functools.partial(plugin_hook, agent=self), callbacks)
        callback_context = CallbackContext(ctx)
        content = await chain.run(callback_context=callback_context)
        if content is None and not callback_context.state.has_delta():
            return None
        return Event(
            invocation_id=ctx.invocation_id,
            author=self.name,
            branch=ctx.branch,
            content=content,
            actions=callback_context.actions,
        )

    async def _handle_before_agent_callback(self, ctx: "InvocationContext") -> Event | None:
        return await self._run_agent_callbacks(
            ctx,
            ctx.plugin_manager.run_before_agent_callback,
            self.canonical_before_agent_callbacks,
        )

    async def _handle_after_agent_callback(self, ctx: "InvocationContext") -> Event | None:
        return await self._run_agent_callbacks(
            ctx,
            ctx.plugin_manager.run_after_agent_callback,
            self.canonical_after_agent_callbacks,
        )
