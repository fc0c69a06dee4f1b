"""Model call helpers for LlmAgent: callbacks, streaming, error recovery."""

import json
from typing import TYPE_CHECKING, AsyncIterator

from agent_runtime.callback_context import CallbackContext
from agent_runtime.events import Event
from agent_runtime.invocation_context import StreamingMode
from agent_runtime.llm import LlmRequest, LlmResponse
from agent_runtime.logging import get_logger
from agent_runtime.override_chain import OverrideChain

if TYPE_CHECKING:
    from agent_runtime.invocation_context import InvocationContext

log = get_logger(__name__)

ADK_AGENT_NAME_LABEL_KEY = "adk_agent_name"


class AgentModelMixin:
    """Call the model through the before/after/error override chains."""

    async def call_llm_async(
        self,
        ctx: "InvocationContext",
        llm_request: LlmRequest,
        model_response_event: Event,
    ) -> AsyncIterator[LlmResponse]:
        """Yield model responses, or the override from a before-model callback."""
        override = await self.handle_before_model_callback(ctx, llm_request, model_response_event)
        if override is not None:
            log.debug("Model call skipped by before-model callback", agent=self.name)
            yield override
            return

        # Per-agent label for slicing usage reports.
        llm_request.config.labels.setdefault(ADK_AGENT_NAME_LABEL_KEY, self.name)

        llm = self.canonical_model
        ctx.increment_llm_call_count()
        stream = ctx.run_config.streaming_mode == StreamingMode.SSE
        llm_request.progressive_sse = stream and ctx.run_config.progressive_sse
        log.info(
            "Calling model",
            agent=self.name,
            model=llm.model,
            stream=stream,
            llm_call_count=ctx.llm_call_count,
        )

        responses = llm.generate_content_async(llm_request, stream=stream)
        async for llm_response in self.run_and_handle_error(responses, ctx, llm_request, model_response_event):
            altered = await self.handle_after_model_callback(ctx, llm_response, model_response_event)
            yield altered if altered is not None else llm_response

    async def handle_before_model_callback(
        self,
        ctx: "InvocationContext",
        llm_request: LlmRequest,
        model_response_event: Event,
    ) -> LlmResponse | None:
        callback_context = CallbackContext(ctx, event_actions=model_response_event.actions)
        chain: OverrideChain[LlmResponse] = OverrideChain(
            ctx.plugin_manager.run_before_model_callback,
            self.canonical_before_model_callbacks,
        )
        return await chain.run(callback_context=callback_context, llm_request=llm_request)

    async def handle_after_model_callback(
        self,
        ctx: "InvocationContext",
        llm_response: LlmResponse,
        model_response_event: Event,
    ) -> LlmResponse | None:
        callback_context = CallbackContext(ctx, event_actions=model_response_event.actions)
        chain: OverrideChain[LlmResponse] = OverrideChain(
            ctx.plugin_manager.run_after_model_callback,
            self.canonical_after_model_callbacks,
        )
        return await chain.run(callback_context=callback_context, llm_response=llm_response)

    async def run_and_handle_error(
        self,
        responses: AsyncIterator[LlmResponse],
        ctx: "InvocationContext",
        llm_request: LlmRequest,
        model_response_event: Event,
    ) -> AsyncIterator[LlmResponse]:
        """Pass responses through; turn a model failure into an error response.

        Only ``Exception`` subclasses are recovered. The error chain runs
        first; without an override the error message is parsed as
        ``{"error": {"code", "message"}}`` JSON, falling back to ``UNKNOWN``.
        """
        try:
            async for response in responses:
                yield response
        except Exception as e:
            log.warning("Model call failed", agent=self.name, error=str(e))
            callback_context = CallbackContext(ctx, event_actions=model_response_event.actions)
            chain: OverrideChain[LlmResponse] = OverrideChain(
                ctx.plugin_manager.run_on_model_error_callback,
                self.canonical_on_model_error_callbacks,
            )
            recovered = await chain.run(callback_context=callback_context, llm_request=llm_request, error=e)
            if recovered is not None:
                yield recovered
            else:
                yield self._error_response(e)

    @staticmethod
    def _error_response(error: Exception) -> LlmResponse:
        message = str(error)
        try:
            payload = json.loads(message)
            return LlmResponse.from_error(str(payload["error"]["code"]), payload["error"]["message"])
        except (ValueError, KeyError, TypeError):
            return LlmResponse.from_error("UNKNOWN", message)
