"""Request processors: the ordered stages that build an outgoing model request.

Each stage mutates the shared ``LlmRequest`` and may yield events of its own
(resumed tool confirmations, code execution traces). Order matters: later
stages read what earlier stages wrote.
"""

import base64
import copy
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, AsyncIterator

from agent_runtime.callback_context import ReadonlyContext, ToolContext
from agent_runtime.code_executors.base import (
    BaseCodeExecutor,
    BuiltInCodeExecutor,
    CodeExecutionInput,
    CodeExecutionResult,
    File,
)
from agent_runtime.code_executors.context import CodeExecutorContext
from agent_runtime.code_executors.utils import (
    DATA_FILE_UTIL_MAP,
    build_code_execution_result_part,
    build_executable_code_part,
    convert_code_execution_parts,
    get_data_file_preprocessing_code,
)
from agent_runtime.contents import get_contents, get_current_turn_contents
from agent_runtime.events import Event, EventActions
from agent_runtime.exceptions import ArtifactServiceNotConfiguredError
from agent_runtime.functions import REQUEST_CONFIRMATION_FUNCTION_CALL_NAME, handle_function_call_list
from agent_runtime.instructions import inject_session_state
from agent_runtime.logging import get_logger
from agent_runtime.planners import BuiltInPlanner
from agent_runtime.state import State
from agent_runtime.tools.builtin import TRANSFER_TO_AGENT_TOOL_NAME, TransferToAgentTool
from agent_runtime.tools.confirmation import ToolConfirmation, parse_confirmation_response
from agent_runtime.tools.registry import ToolRegistry
from agent_runtime.types import Blob, Content, FunctionCall, Part

if TYPE_CHECKING:
    from agent_runtime.agents.base_agent import BaseAgent
    from agent_runtime.agents.llm_agent import LlmAgent
    from agent_runtime.invocation_context import InvocationContext
    from agent_runtime.llm import LlmRequest

log = get_logger(__name__)


def get_llm_agent(ctx: "InvocationContext") -> "LlmAgent | None":
    from agent_runtime.agents.llm_agent import LlmAgent

    return ctx.agent if isinstance(ctx.agent, LlmAgent) else None


class BaseLlmRequestProcessor(ABC):
    """One stage of request construction."""

    @abstractmethod
    def run_async(self, ctx: "InvocationContext", llm_request: "LlmRequest") -> AsyncIterator[Event]:
        """Mutate ``llm_request`` and yield any events produced on the way."""


class BasicLlmRequestProcessor(BaseLlmRequestProcessor):
    """Model name, generation config, output schema and live settings."""

    async def run_async(self, ctx, llm_request):
        agent = get_llm_agent(ctx)
        if agent is None:
            return

        llm_request.model = agent.canonical_model.model
        llm_request.config = copy.deepcopy(agent.generate_content_config)
        if agent.output_schema is not None:
            llm_request.set_output_schema(agent.output_schema)

        run_config = ctx.run_config
        llm_request.live_connect_config.update({
            "response_modalities": run_config.response_modalities,
            "speech_config": run_config.speech_config,
            "output_audio_transcription": run_config.output_audio_transcription,
            "input_audio_transcription": run_config.input_audio_transcription,
        })
        return
        yield  # keeps this an async generator


class IdentityLlmRequestProcessor(BaseLlmRequestProcessor):
    """Tell the model its name and description."""

    async def run_async(self, ctx, llm_request):
        agent = ctx.agent
        instructions = [f'You are an agent. Your internal name is "{agent.name}".']
        if agent.description:
            instructions.append(f'The description about you is "{agent.description}"')
        llm_request.append_instructions(instructions)
        return
        yield


class InstructionsLlmRequestProcessor(BaseLlmRequestProcessor):
    """Global, static and agent instructions.

    With a static instruction present, the agent's own instruction goes into
    the contents as a user turn so the system instruction stays cacheable.
    """

    async def run_async(self, ctx, llm_request):
        agent = get_llm_agent(ctx)
        if agent is None:
            return
        from agent_runtime.agents.llm_agent import LlmAgent

        root_agent = agent.root_agent
        readonly_context = ReadonlyContext(ctx)

        if isinstance(root_agent, LlmAgent) and root_agent.global_instruction:
            text, needs_injection = await root_agent.canonical_global_instruction(readonly_context)
            if needs_injection:
                text = await inject_session_state(text, readonly_context)
            llm_request.append_instructions([text])

        if agent.static_instruction is not None:
            static_text = "\n\n".join(part.text for part in agent.static_instruction.parts if part.text)
            if static_text:
                llm_request.append_instructions([static_text])

        if not agent.instruction:
            return

        text, needs_injection = await agent.canonical_instruction(readonly_context)
        if needs_injection:
            text = await inject_session_state(text, readonly_context)
        if agent.static_instruction is None:
            llm_request.append_instructions([text])
        else:
            llm_request.contents.append(Content(role="user", parts=[Part(text=text)]))
        return
        yield


class NlPlanningRequestProcessor(BaseLlmRequestProcessor):
    async def run_async(self, ctx, llm_request):
        agent = get_llm_agent(ctx)
        if agent is None or agent.planner is None:
            return

        planner = agent.planner
        if isinstance(planner, BuiltInPlanner):
            planner.apply_thinking_config(llm_request)
            return

        planning_instruction = planner.build_planning_instruction(ReadonlyContext(ctx), llm_request)
        if planning_instruction:
            llm_request.append_instructions([planning_instruction])

        for content in llm_request.contents:
            for part in content.parts:
                part.thought = None
        return
        yield


class RequestConfirmationLlmRequestProcessor(BaseLlmRequestProcessor):
    """Resume tool calls the user has just confirmed or rejected.

    At most one resumption happens per request.
    """

    async def run_async(self, ctx, llm_request):
        agent = get_llm_agent(ctx)
        if agent is None:
            return
        events = ctx.session.events
        if not events:
            return

        # Most recent user event carrying confirmation responses.
        confirmations: dict[str, ToolConfirmation] = {}
        confirmation_index = -1
        for index in range(len(events) - 1, -1, -1):
            event = events[index]
            if event.author != "user":
                continue
            found = False
            for response in event.get_function_responses():
                if response.name != REQUEST_CONFIRMATION_FUNCTION_CALL_NAME:
                    continue
                found = True
                if response.id and response.response:
                    confirmations[response.id] = parse_confirmation_response(response.response)
            if found:
                confirmation_index = index
                break

        if not confirmations:
            return

        for index in range(confirmation_index - 1, -1, -1):
            function_calls = events[index].get_function_calls()
            if not function_calls:
                continue

            to_resume: dict[str, ToolConfirmation] = {}
            original_calls: dict[str, FunctionCall] = {}
            for function_call in function_calls:
                if function_call.id not in confirmations:
                    continue
                original = (function_call.args or {}).get("originalFunctionCall")
                if not original or not original.get("id"):
                    continue
                to_resume[original["id"]] = confirmations[function_call.id]
                original_calls[original["id"]] = FunctionCall(
                    name=original.get("name", ""),
                    args=dict(original.get("args") or {}),
                    id=original["id"],
                )
            if not to_resume:
                continue

            # Drop calls that already ran after the confirmation arrived.
            for later in events[confirmation_index + 1:]:
                for response in later.get_function_responses():
                    if response.id in to_resume:
                        del to_resume[response.id]
                        del original_calls[response.id]
            if not to_resume:
                continue

            log.info("Resuming confirmed tool calls", function_call_ids=sorted(to_resume))
            tools = ToolRegistry(await agent.canonical_tools(ReadonlyContext(ctx)))
            event = await handle_function_call_list(
                ctx,
                list(original_calls.values()),
                tools,
                agent.canonical_before_tool_callbacks,
                agent.canonical_after_tool_callbacks,
                agent.canonical_on_tool_error_callbacks,
                filters=set(to_resume),
                tool_confirmation_dict=to_resume,
            )
            if event is not None:
                yield event
            return


class ContentLlmRequestProcessor(BaseLlmRequestProcessor):
    async def run_async(self, ctx, llm_request):
        agent = get_llm_agent(ctx)
        if agent is None:
            return
        if agent.include_contents == "default":
            history = get_contents(ctx.session.events, agent.name, ctx.branch)
        else:
            history = get_current_turn_contents(ctx.session.events, agent.name, ctx.branch)
        # Contents added by earlier stages (the dynamic instruction) follow the history.
        llm_request.contents = history + llm_request.contents
        return
        yield


def get_or_set_execution_id(ctx: "InvocationContext", executor_context: CodeExecutorContext) -> str | None:
    """Stateful executors reuse the session id as their execution id."""
    agent = get_llm_agent(ctx)
    if agent is None or agent.code_executor is None or not agent.code_executor.stateful:
        return None
    execution_id = executor_context.get_execution_id()
    if not execution_id:
        execution_id = ctx.session.id
        executor_context.set_execution_id(execution_id)
    return execution_id


async def build_code_execution_result_event(
    ctx: "InvocationContext",
    executor_context: CodeExecutorContext,
    result: CodeExecutionResult,
) -> Event:
    """Event carrying the result part; output files are saved as artifacts.

    Raises:
        ArtifactServiceNotConfiguredError: When no artifact service is set.
    """
    if ctx.artifact_service is None:
        raise ArtifactServiceNotConfiguredError()

    content = Content(role="model", parts=[build_code_execution_result_part(result)])
    actions = EventActions(state_delta=executor_context.get_state_delta())

    if result.stderr:
        executor_context.increment_error_count(ctx.invocation_id)
    else:
        executor_context.reset_error_count(ctx.invocation_id)

    for output_file in result.output_files:
        version = await ctx.artifact_service.save_artifact(
            app_name=ctx.app_name,
            user_id=ctx.user_id,
            session_id=ctx.session.id,
            filename=output_file.name,
            artifact=Part(inline_data=Blob(
                mime_type=output_file.mime_type,
                data=base64.b64decode(output_file.content),
            )),
        )
        actions.artifact_delta[output_file.name] = version

    return Event(
        invocation_id=ctx.invocation_id,
        author=ctx.agent.name,
        branch=ctx.branch,
        content=content,
        actions=actions,
    )


def _extract_and_replace_inline_files(
    executor_context: CodeExecutorContext,
    llm_request: "LlmRequest",
) -> list[File]:
    """Swap supported inline data in user turns for file-name placeholders."""
    all_input_files = executor_context.get_input_files()
    saved_names = {file.name for file in all_input_files}

    for i, content in enumerate(llm_request.contents):
        if content.role != "user":
            continue
        for j, part in enumerate(content.parts):
            blob = part.inline_data
            if blob is None or blob.mime_type not in DATA_FILE_UTIL_MAP:
                continue
            file_name = f"data_{i + 1}_{j + 1}{DATA_FILE_UTIL_MAP[blob.mime_type][0]}"
            content.parts[j] = Part(text=f"\nAvailable file: `{file_name}`\n")
            file = File(
                name=file_name,
                content=base64.b64encode(blob.data).decode("ascii"),
                mime_type=blob.mime_type,
            )
            if file_name not in saved_names:
                executor_context.add_input_files([file])
                all_input_files.append(file)
                saved_names.add(file_name)
    return all_input_files


class CodeExecutionRequestProcessor(BaseLlmRequestProcessor):
    """Prepare data files for the executor and render past code as text."""

    async def run_async(self, ctx, llm_request):
        agent = get_llm_agent(ctx)
        if agent is None or agent.code_executor is None:
            return

        async for event in self._run_pre_processor(ctx, llm_request, agent.code_executor):
            yield event

        delimiters = agent.code_executor.code_block_delimiters
        code_block_delimiter = delimiters[0] if delimiters else ("", "")
        for content in llm_request.contents:
            convert_code_execution_parts(
                content,
                code_block_delimiter,
                agent.code_executor.execution_result_delimiters,
            )

    async def _run_pre_processor(
        self,
        ctx: "InvocationContext",
        llm_request: "LlmRequest",
        code_executor: BaseCodeExecutor,
    ) -> AsyncIterator[Event]:
        if isinstance(code_executor, BuiltInCodeExecutor):
            code_executor.process_llm_request(llm_request)
            return
        if not code_executor.optimize_data_file:
            return

        executor_context = CodeExecutorContext(State(ctx.session.state))
        if executor_context.get_error_count(ctx.invocation_id) >= code_executor.error_retry_attempts:
            log.debug("Code execution retry budget exhausted", invocation_id=ctx.invocation_id)
            return

        all_input_files = _extract_and_replace_inline_files(executor_context, llm_request)
        processed = set(executor_context.get_processed_file_names())

        for file in [f for f in all_input_files if f.name not in processed]:
            code = get_data_file_preprocessing_code(file)
            if not code:
                return

            code_content = Content(
                role="model",
                parts=[Part(text=f"Processing input file: `{file.name}`"), build_executable_code_part(code)],
            )
            llm_request.contents.append(copy.deepcopy(code_content))
            yield Event(
                invocation_id=ctx.invocation_id,
                author=ctx.agent.name,
                branch=ctx.branch,
                content=code_content,
            )

            result = await code_executor.execute_code(
                ctx,
                CodeExecutionInput(
                    code=code,
                    input_files=[file],
                    execution_id=get_or_set_execution_id(ctx, executor_context),
                ),
            )
            executor_context.update_code_execution_result(ctx.invocation_id, code, result.stdout, result.stderr)
            executor_context.add_processed_file_names([file.name])

            result_event = await build_code_execution_result_event(ctx, executor_context, result)
            yield result_event
            llm_request.contents.append(copy.deepcopy(result_event.content))


class AgentTransferLlmRequestProcessor(BaseLlmRequestProcessor):
    """Describe transfer targets and offer the ``transfer_to_agent`` tool."""

    async def run_async(self, ctx, llm_request):
        agent = get_llm_agent(ctx)
        if agent is None:
            return

        targets = self._get_transfer_targets(agent)
        if not targets:
            return

        llm_request.append_instructions([self._build_target_agents_instructions(agent, targets)])
        tool = TransferToAgentTool(agent_names=[target.name for target in targets])
        await tool.process_llm_request(tool_context=ToolContext(ctx), llm_request=llm_request)
        return
        yield

    @staticmethod
    def _build_target_agent_info(target: "BaseAgent") -> str:
        return f"""
Agent name: {target.name}
Agent description: {target.description}
"""

    def _build_target_agents_instructions(self, agent: "LlmAgent", targets: list["BaseAgent"]) -> str:
        targets_info = "\n".join(self._build_target_agent_info(target) for target in targets)
        instructions = f"""
You have a list of other agents to transfer to:

{targets_info}

If you are the best to answer the question according to your description, you
can answer it.

If another agent is better for answering the question according to its
description, call `{TRANSFER_TO_AGENT_TOOL_NAME}` function to transfer the
question to that agent. When transferring, do not generate any text other than
the function call.
"""
        if agent.parent_agent is not None and not agent.disallow_transfer_to_parent:
            instructions += f"""
Your parent agent is {agent.parent_agent.name}. If neither the other agents nor
you are best for answering the question according to the descriptions, transfer
to your parent agent.
"""
        return instructions

    @staticmethod
    def _get_transfer_targets(agent: "LlmAgent") -> list["BaseAgent"]:
        from agent_runtime.agents.llm_agent import LlmAgent

        targets: list["BaseAgent"] = list(agent.sub_agents)
        parent = agent.parent_agent
        if parent is None or not isinstance(parent, LlmAgent):
            return targets
        if not agent.disallow_transfer_to_parent:
            targets.append(parent)
        if not agent.disallow_transfer_to_peers:
            targets.extend(peer for peer in parent.sub_agents if peer.name != agent.name)
        return targets


def default_request_processors(agent: "LlmAgent") -> list[BaseLlmRequestProcessor]:
    """Stages in canonical order; transfer is appended unless fully disabled."""
    processors: list[BaseLlmRequestProcessor] = [
        BasicLlmRequestProcessor(),
        IdentityLlmRequestProcessor(),
        InstructionsLlmRequestProcessor(),
        NlPlanningRequestProcessor(),
        RequestConfirmationLlmRequestProcessor(),
        ContentLlmRequestProcessor(),
        CodeExecutionRequestProcessor(),
    ]
    transfer_disabled = (
        agent.disallow_transfer_to_parent
        and agent.disallow_transfer_to_peers
        and not agent.sub_agents
    )
    if not transfer_disabled:
        processors.append(AgentTransferLlmRequestProcessor())
    return processors
