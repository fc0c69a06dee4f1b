"""Response processors: run on every model response before it becomes an event."""

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, AsyncIterator

from agent_runtime.callback_context import CallbackContext
from agent_runtime.code_executors.base import BuiltInCodeExecutor, CodeExecutionInput
from agent_runtime.code_executors.context import CodeExecutorContext
from agent_runtime.code_executors.utils import extract_code_and_truncate_content
from agent_runtime.events import Event
from agent_runtime.logging import get_logger
from agent_runtime.planners import BuiltInPlanner
from agent_runtime.request_processors import (
    build_code_execution_result_event,
    get_llm_agent,
    get_or_set_execution_id,
)
from agent_runtime.state import State
from agent_runtime.types import Content

if TYPE_CHECKING:
    from agent_runtime.invocation_context import InvocationContext
    from agent_runtime.llm import LlmResponse

log = get_logger(__name__)


class BaseLlmResponseProcessor(ABC):
    """One post-processing stage for model responses."""

    @abstractmethod
    def run_async(self, ctx: "InvocationContext", llm_response: "LlmResponse") -> AsyncIterator[Event]:
        """Mutate ``llm_response`` in place and yield any extra events."""


class NlPlanningResponseProcessor(BaseLlmResponseProcessor):
    """Let non-built-in planners filter and mark the response parts."""

    async def run_async(self, ctx, llm_response):
        if llm_response.partial:
            return
        agent = get_llm_agent(ctx)
        if agent is None or agent.planner is None or isinstance(agent.planner, BuiltInPlanner):
            return
        content = llm_response.content
        if content is None or not content.parts:
            return

        processed = agent.planner.process_planning_response(CallbackContext(ctx), content.parts)
        if processed is not None:
            llm_response.content = Content(role=content.role, parts=processed)
        return
        yield  # keeps this an async generator


class CodeExecutionResponseProcessor(BaseLlmResponseProcessor):
    """Execute the first code block of a response.

    Yields the truncated model content and the execution result, then clears
    the response content so the turn loop asks the model again.
    """

    async def run_async(self, ctx, llm_response):
        if llm_response.partial:
            return
        agent = get_llm_agent(ctx)
        if agent is None or agent.code_executor is None:
            return
        code_executor = agent.code_executor
        if llm_response.content is None or isinstance(code_executor, BuiltInCodeExecutor):
            return

        executor_context = CodeExecutorContext(State(ctx.session.state))
        if executor_context.get_error_count(ctx.invocation_id) >= code_executor.error_retry_attempts:
            log.debug("Code execution retry budget exhausted", invocation_id=ctx.invocation_id)
            return

        response_content = llm_response.content
        code = extract_code_and_truncate_content(response_content, code_executor.code_block_delimiters)
        if not code:
            return

        yield Event(
            invocation_id=ctx.invocation_id,
            author=agent.name,
            branch=ctx.branch,
            content=response_content,
        )

        result = await code_executor.execute_code(
            ctx,
            CodeExecutionInput(
                code=code,
                input_files=executor_context.get_input_files(),
                execution_id=get_or_set_execution_id(ctx, executor_context),
            ),
        )
        executor_context.update_code_execution_result(ctx.invocation_id, code, result.stdout, result.stderr)
        log.info(
            "Executed model code",
            agent=agent.name,
            failed=bool(result.stderr),
            output_files=len(result.output_files),
        )
        yield await build_code_execution_result_event(ctx, executor_context, result)

        llm_response.content = None


def default_response_processors() -> list[BaseLlmResponseProcessor]:
    return [NlPlanningResponseProcessor(), CodeExecutionResponseProcessor()]
