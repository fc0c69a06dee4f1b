"""Live (bidirectional) flow for LlmAgent."""

import asyncio
from typing import TYPE_CHECKING, AsyncIterator

from agent_runtime.events import Event, EventActions
from agent_runtime.functions import populate_client_function_call_id
from agent_runtime.live import cancel_all_streaming_tools, cancel_task, handle_function_calls_live
from agent_runtime.llm import BaseLlmConnection, LlmRequest
from agent_runtime.logging import get_logger
from agent_runtime.tools.builtin import TRANSFER_TO_AGENT_TOOL_NAME

if TYPE_CHECKING:
    from agent_runtime.invocation_context import InvocationContext

log = get_logger(__name__)


class AgentLiveMixin:
    """Run an agent over a model connection fed by the live request queue."""

    async def run_live_impl(self, ctx: "InvocationContext") -> AsyncIterator[Event]:
        async for event in self.run_live_flow(ctx):
            self.maybe_save_output_to_state(event)
            yield event

    async def run_live_flow(self, ctx: "InvocationContext") -> AsyncIterator[Event]:
        """Connect, send history, then stream events until the model is done.

        The send loop runs as a background task. The receive loop drives
        the generator; when it ends, for any reason, the send task and all
        streaming tools are cancelled and the connection is closed.
        """
        llm_request = LlmRequest()
        async for event in self.preprocess_async(ctx, llm_request):
            yield event
        if ctx.end_invocation:
            return

        llm = self.canonical_model
        log.info("Connecting to model", agent=self.name, model=llm.model)
        connection = await llm.connect(llm_request)
        send_task: asyncio.Task | None = None
        try:
            if llm_request.contents:
                log.debug("Sending history", agent=self.name, contents=len(llm_request.contents))
                await connection.send_history(llm_request.contents)

            send_task = asyncio.create_task(
                self.send_to_model(connection, ctx),
                name=f"live-send-{ctx.invocation_id}",
            )

            async for event in self.receive_from_model(connection, ctx, llm_request):
                yield event

                # Tool results go back to the model as the next user turn.
                if event.get_function_responses():
                    await connection.send_content(event.content)

                if (
                    event.content is not None
                    and event.content.parts
                    and event.content.parts[0].function_response is not None
                    and event.content.parts[0].function_response.name == TRANSFER_TO_AGENT_TOOL_NAME
                ):
                    log.info("Live transfer requested", agent=self.name)
                    break
        finally:
            await cancel_task(send_task)
            await cancel_all_streaming_tools(ctx)
            await connection.close()
            log.info("Live connection closed", agent=self.name)

    async def send_to_model(self, connection: BaseLlmConnection, ctx: "InvocationContext") -> None:
        """Forward live requests to the model until the queue is closed."""
        if ctx.live_request_queue is None:
            return
        async for live_request in ctx.live_request_queue:
            if live_request.blob is not None:
                # Tools that accept an input stream get their own copy.
                registry = ctx.active_streaming_tools
                async with registry.lock:
                    for _, entry in registry.items():
                        if entry.stream is not None:
                            entry.stream.send_realtime(live_request.blob)
                await connection.send_realtime(live_request.blob)
            if live_request.content is not None:
                await connection.send_content(live_request.content)
        log.debug("Live request queue closed", agent=self.name)

    async def receive_from_model(
        self,
        connection: BaseLlmConnection,
        ctx: "InvocationContext",
        llm_request: LlmRequest,
    ) -> AsyncIterator[Event]:
        """Turn model output into events and run the live tool executor."""
        async for llm_response in connection.receive():
            if llm_response.live_session_resumption_update:
                handle = llm_response.live_session_resumption_update.get("new_handle")
                if handle:
                    ctx.live_session_resumption_handle = handle
                    log.info("Session resumption handle updated", agent=self.name)

            content = llm_response.content
            author = "user" if content is not None and content.role == "user" else self.name
            event = Event(
                invocation_id=ctx.invocation_id,
                author=author,
                branch=ctx.branch,
                content=content,
                partial=llm_response.partial,
                turn_complete=llm_response.turn_complete,
                interrupted=llm_response.interrupted,
                error_code=llm_response.error_code,
                error_message=llm_response.error_message,
                usage_metadata=llm_response.usage_metadata,
                custom_metadata=llm_response.custom_metadata,
                actions=EventActions(escalate=bool(llm_response.interrupted)),
            )

            if event.get_function_calls():
                populate_client_function_call_id(event)
                yield event
                function_response_event = await handle_function_calls_live(
                    ctx,
                    event,
                    llm_request.tools,
                    self.canonical_before_tool_callbacks,
                    self.canonical_after_tool_callbacks,
                )
                if function_response_event is not None:
                    yield function_response_event
                continue

            if llm_response.turn_complete:
                log.debug("Live turn complete", agent=self.name)
            yield event
