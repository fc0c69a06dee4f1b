"""Turn loop for LlmAgent: build request, call model, run tools, hand off."""

import json
import time
from typing import TYPE_CHECKING, AsyncIterator

from agent_runtime.callback_context import ReadonlyContext, ToolContext
from agent_runtime.events import Event, new_event_id
from agent_runtime.exceptions import AgentNotFoundError
from agent_runtime.functions import (
    generate_auth_event,
    generate_request_confirmation_event,
    get_long_running_function_calls,
    handle_function_calls_async,
    populate_client_function_call_id,
)
from agent_runtime.llm import LlmRequest, LlmResponse
from agent_runtime.logging import get_logger

if TYPE_CHECKING:
    from agent_runtime.agents.base_agent import BaseAgent
    from agent_runtime.invocation_context import InvocationContext

log = get_logger(__name__)


class AgentToolLoopMixin:
    """One model step per iteration, repeated until a final response."""

    async def run_async_impl(self, ctx: "InvocationContext") -> AsyncIterator[Event]:
        while True:
            last_event: Event | None = None
            async for event in self.run_one_step_async(ctx):
                last_event = event
                self.maybe_save_output_to_state(event)
                yield event

            if last_event is None or last_event.is_final_response():
                break
            if last_event.partial:
                log.warning("The last event is partial, which is not expected.", agent=self.name)
                break

    async def preprocess_async(self, ctx: "InvocationContext", llm_request: LlmRequest) -> AsyncIterator[Event]:
        """Run the request processors, then let each tool adjust the request."""
        for processor in self.request_processors:
            async for event in processor.run_async(ctx, llm_request):
                yield event

        tool_context = ToolContext(ctx)
        for tool in await self.canonical_tools(ReadonlyContext(ctx)):
            await tool.process_llm_request(tool_context=tool_context, llm_request=llm_request)

    async def run_one_step_async(self, ctx: "InvocationContext") -> AsyncIterator[Event]:
        llm_request = LlmRequest()
        async for event in self.preprocess_async(ctx, llm_request):
            yield event
        if ctx.end_invocation:
            return

        model_response_event = Event(
            invocation_id=ctx.invocation_id,
            author=self.name,
            branch=ctx.branch,
        )
        async for llm_response in self.call_llm_async(ctx, llm_request, model_response_event):
            async for event in self.postprocess(ctx, llm_request, llm_response, model_response_event):
                # Every yielded event gets its own id.
                model_response_event.id = new_event_id()
                model_response_event.timestamp = time.time()
                yield event

    async def postprocess(
        self,
        ctx: "InvocationContext",
        llm_request: LlmRequest,
        llm_response: LlmResponse,
        model_response_event: Event,
    ) -> AsyncIterator[Event]:
        for processor in self.response_processors:
            async for event in processor.run_async(ctx, llm_response):
                yield event

        if llm_response.content is None and not llm_response.error_code and not llm_response.interrupted:
            return

        merged_event = Event.from_llm_response(model_response_event, llm_response)
        function_calls = merged_event.get_function_calls()
        if function_calls:
            populate_client_function_call_id(merged_event)
            merged_event.long_running_tool_ids = get_long_running_function_calls(
                function_calls, llm_request.tools
            )
        yield merged_event

        # Partial chunks only preview calls; the final aggregate runs them.
        if not function_calls or merged_event.partial:
            return

        function_response_event = await handle_function_calls_async(
            ctx,
            merged_event,
            llm_request.tools,
            self.canonical_before_tool_callbacks,
            self.canonical_after_tool_callbacks,
            self.canonical_on_tool_error_callbacks,
        )
        if function_response_event is None:
            return

        auth_event = generate_auth_event(ctx, function_response_event)
        if auth_event is not None:
            yield auth_event

        confirmation_event = generate_request_confirmation_event(ctx, merged_event, function_response_event)
        if confirmation_event is not None:
            yield confirmation_event

        yield function_response_event

        next_agent_name = function_response_event.actions.transfer_to_agent
        if next_agent_name:
            log.info("Transferring to agent", from_agent=self.name, to_agent=next_agent_name)
            next_agent = self.get_agent_by_name(ctx, next_agent_name)
            async for event in next_agent.run_async(ctx):
                yield event

    def get_agent_by_name(self, ctx: "InvocationContext", agent_name: str) -> "BaseAgent":
        """Find ``agent_name`` anywhere in the tree of the running agent.

        Raises:
            AgentNotFoundError: If no agent has that name.
        """
        agent = ctx.agent.root_agent.find_agent(agent_name)
        if agent is None:
            raise AgentNotFoundError(agent_name)
        return agent

    def maybe_save_output_to_state(self, event: Event) -> None:
        """Store this agent's final text under ``output_key``."""
        if event.author != self.name or not self.output_key:
            return
        if not event.is_final_response() or event.content is None or not event.content.parts:
            return

        result_text = "".join(part.text for part in event.content.parts if part.text and not part.thought)
        result: object = result_text
        if self.output_schema is not None:
            # An empty final chunk of a stream has nothing to parse.
            if not result_text.strip():
                return
            try:
                result = json.loads(result_text)
            except json.JSONDecodeError as e:
                log.error("Error parsing output", agent=self.name, error=str(e))
        event.actions.state_delta[self.output_key] = result
