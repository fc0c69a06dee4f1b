"""Runner: drives one invocation of an agent tree against a session."""

from typing import AsyncIterator

from agent_runtime.agents.base_agent import BaseAgent
from agent_runtime.agents.llm_agent import LlmAgent
from agent_runtime.artifacts import BaseArtifactService
from agent_runtime.events import Event
from agent_runtime.exceptions import SessionNotFoundError
from agent_runtime.invocation_context import InvocationContext, RunConfig
from agent_runtime.live_request_queue import LiveRequestQueue
from agent_runtime.logging import bind_invocation, get_logger, unbind_invocation
from agent_runtime.plugins import BasePlugin, PluginManager
from agent_runtime.session import BaseSessionService, Session
from agent_runtime.types import Content

log = get_logger(__name__)


class Runner:
    """Run an agent tree for one app, persisting events to the session service."""

    def __init__(
        self,
        app_name: str,
        agent: BaseAgent,
        session_service: BaseSessionService,
        artifact_service: BaseArtifactService | None = None,
        plugins: list[BasePlugin] | None = None,
    ):
        self.app_name = app_name
        self.agent = agent
        self.session_service = session_service
        self.artifact_service = artifact_service
        self.plugin_manager = PluginManager(plugins)

    async def _get_session(self, user_id: str, session_id: str) -> Session:
        session = await self.session_service.get_session(
            app_name=self.app_name,
            user_id=user_id,
            session_id=session_id,
        )
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def _new_invocation_context(
        self,
        session: Session,
        new_message: Content | None,
        run_config: RunConfig | None,
        live_request_queue: LiveRequestQueue | None = None,
    ) -> InvocationContext:
        return InvocationContext(
            session=session,
            agent=self.agent,
            user_content=new_message,
            run_config=run_config or RunConfig.from_config(),
            plugin_manager=self.plugin_manager,
            session_service=self.session_service,
            artifact_service=self.artifact_service,
            live_request_queue=live_request_queue,
        )

    async def _append_new_message(self, ctx: InvocationContext, new_message: Content) -> None:
        if not new_message.parts:
            raise ValueError("No parts in the new_message.")
        event = Event(
            invocation_id=ctx.invocation_id,
            author="user",
            content=new_message,
        )
        await self.session_service.append_event(ctx.session, event)

    async def run_async(
        self,
        *,
        user_id: str,
        session_id: str,
        new_message: Content,
        run_config: RunConfig | None = None,
    ) -> AsyncIterator[Event]:
        """Run the agent tree for one user message.

        Raises:
            SessionNotFoundError: If the session does not exist.
        """
        session = await self._get_session(user_id, session_id)
        ctx = self._new_invocation_context(session, new_message, run_config)
        bind_invocation(ctx.invocation_id, session_id=session.id)
        log.info("Starting invocation", app_name=self.app_name, user_id=user_id)
        try:
            modified = await self.plugin_manager.run_on_user_message_callback(
                invocation_context=ctx,
                user_message=new_message,
            )
            if modified is not None:
                new_message = modified
                ctx.user_content = new_message
            await self._append_new_message(ctx, new_message)

            early_exit = await self.plugin_manager.run_before_run_callback(invocation_context=ctx)
            if isinstance(early_exit, Content):
                event = Event(invocation_id=ctx.invocation_id, author="model", content=early_exit)
                await self.session_service.append_event(session, event)
                yield event
            else:
                ctx.agent = self._find_agent_to_run(session, self.agent)
                log.debug("Selected agent", agent=ctx.agent.name)
                async for event in ctx.agent.run_async(ctx):
                    event = await self._on_event(ctx, event)
                    if not event.partial:
                        await self.session_service.append_event(session, event)
                    yield event

            await self.plugin_manager.run_after_run_callback(invocation_context=ctx)
            log.info("Invocation finished", llm_call_count=ctx.llm_call_count)
        finally:
            unbind_invocation()

    async def run_live(
        self,
        *,
        user_id: str,
        session_id: str,
        live_request_queue: LiveRequestQueue,
        run_config: RunConfig | None = None,
    ) -> AsyncIterator[Event]:
        """Run the agent tree over a live connection fed by ``live_request_queue``."""
        session = await self._get_session(user_id, session_id)
        ctx = self._new_invocation_context(session, None, run_config, live_request_queue)
        bind_invocation(ctx.invocation_id, session_id=session.id)
        log.info("Starting live invocation", app_name=self.app_name, user_id=user_id)
        try:
            ctx.agent = self._find_agent_to_run(session, self.agent)
            async for event in ctx.agent.run_live(ctx):
                event = await self._on_event(ctx, event)
                if not event.partial:
                    await self.session_service.append_event(session, event)
                yield event
        finally:
            unbind_invocation()

    async def _on_event(self, ctx: InvocationContext, event: Event) -> Event:
        modified = await self.plugin_manager.run_on_event_callback(invocation_context=ctx, event=event)
        return modified if modified is not None else event

    @staticmethod
    def _find_function_call_author(session: Session) -> str | None:
        """Author of the call answered by a trailing user function response."""
        if not session.events:
            return None
        last_event = session.events[-1]
        response_ids = {response.id for response in last_event.get_function_responses() if response.id}
        if last_event.author != "user" or not response_ids:
            return None
        for event in reversed(session.events[:-1]):
            if any(call.id in response_ids for call in event.get_function_calls()):
                return event.author
        return None

    def _find_agent_to_run(self, session: Session, root_agent: BaseAgent) -> BaseAgent:
        """Pick the agent that should answer the next user message.

        A user function response goes back to the agent that made the call.
        Otherwise the most recent agent author wins, provided the path from
        it to the root allows transfer back up; else the root runs.
        """
        call_author = self._find_function_call_author(session)
        if call_author:
            agent = root_agent.find_agent(call_author)
            if agent is not None:
                return agent

        for event in reversed(session.events):
            if event.author == "user":
                continue
            if event.author == root_agent.name:
                return root_agent
            agent = root_agent.find_sub_agent(event.author)
            if agent is None:
                log.warning("Event from an unknown agent", author=event.author, event_id=event.id)
                continue
            if self._is_transferable_across_agent_tree(agent):
                return agent
        return root_agent

    @staticmethod
    def _is_transferable_across_agent_tree(agent: BaseAgent) -> bool:
        current: BaseAgent | None = agent
        while current is not None:
            if not isinstance(current, LlmAgent) or current.disallow_transfer_to_parent:
                return False
            current = current.parent_agent
        return True
