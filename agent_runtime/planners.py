"""Planners: steer the model to plan before acting."""

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

from agent_runtime.types import Part

if TYPE_CHECKING:
    from agent_runtime.callback_context import CallbackContext, ReadonlyContext
    from agent_runtime.llm import LlmRequest

PLANNING_TAG = "/*PLANNING*/"
REPLANNING_TAG = "/*REPLANNING*/"
REASONING_TAG = "/*REASONING*/"
ACTION_TAG = "/*ACTION*/"
FINAL_ANSWER_TAG = "/*FINAL_ANSWER*/"


class BasePlanner(ABC):
    """Base class for planners."""

    @abstractmethod
    def build_planning_instruction(
        self,
        readonly_context: "ReadonlyContext",
        llm_request: "LlmRequest",
    ) -> str | None:
        """Instruction appended to the system instruction, if any."""

    @abstractmethod
    def process_planning_response(
        self,
        callback_context: "CallbackContext",
        response_parts: list[Part],
    ) -> list[Part] | None:
        """Rewrite response parts; None keeps them unchanged."""


class BuiltInPlanner(BasePlanner):
    """Use the model's native thinking; only sets the thinking config."""

    def __init__(self, thinking_config: dict[str, Any]):
        self.thinking_config = thinking_config

    def apply_thinking_config(self, llm_request: "LlmRequest") -> None:
        llm_request.config.thinking_config = self.thinking_config

    def build_planning_instruction(self, readonly_context, llm_request) -> str | None:
        return None

    def process_planning_response(self, callback_context, response_parts) -> list[Part] | None:
        return None


_HIGH_LEVEL_PREAMBLE = f"""
When answering the question, try to leverage the available tools to gather the information instead of your memorized knowledge.

Follow this process when answering the question: (1) first come up with a plan in natural language text format; (2) Then use tools to execute the plan and provide reasoning between tool code snippets to make a summary of current state and next step. Tool code snippets and reasoning should be interleaved with each other. (3) In the end, return one final answer.

Follow this format when answering the question: (1) The planning part should be under {PLANNING_TAG}. (2) The tool code snippets should be under {ACTION_TAG}, and the reasoning parts should be under {REASONING_TAG}. (3) The final answer part should be under {FINAL_ANSWER_TAG}.
"""

_PLANNING_PREAMBLE = f"""
Below are the requirements for the planning:
The plan is made to answer the user query if following the plan. The plan is coherent and covers all aspects of information from user query, and only involves the tools that are accessible by the agent. The plan contains the decomposed steps as a numbered list where each step should use one or multiple available tools. By reading the plan, you can intuitively know which tools to trigger or what actions to take.
If the initial plan cannot be successfully executed, you should learn from previous execution results and revise your plan. The revised plan should be be under {REPLANNING_TAG}. Then use tools to follow the new plan.
"""

_REASONING_PREAMBLE = """
Below are the requirements for the reasoning:
The reasoning makes a summary of the current trajectory based on the user query and tool outputs. Based on the tool outputs and plan, the reasoning also comes up with instructions to the next steps, making the trajectory closer to the final answer.
"""

_FINAL_ANSWER_PREAMBLE = """
Below are the requirements for the final answer:
The final answer should be precise and follow query formatting requirements. Some queries may not be answerable with the available tools and information. In those cases, inform the user why you cannot process their query and ask for more information.
"""

_TOOL_CODE_PREAMBLE = """
Below are the requirements for the tool code:

**Custom Tools:** The available tools are described in the context and can be directly used.
- Code must be valid self-contained Python snippets with no imports and no references to tools or Python libraries that are not in the context.
- You cannot use any parameters or fields that are not explicitly defined in the APIs in the context.
- The code snippets should be readable, efficient, and directly relevant to the user query and reasoning steps.
- When using the tools, you should use the library name together with the function name, e.g., vertex_search.search().
- If Python libraries are not provided in the context, NEVER write your own code other than the function calls using the provided tools.
"""

_USER_INPUT_PREAMBLE = """
VERY IMPORTANT instruction that you MUST follow in addition to the above instructions:

You should ask for clarification if you need more information to answer the question.
You should prefer using the information available in the context instead of repeated tool use.
"""


class PlanReActPlanner(BasePlanner):
    """Plan, then act with interleaved reasoning, then answer.

    Works with any model: planning, reasoning and action sections are marked
    as thoughts so only the final answer is shown.
    """

    def build_planning_instruction(self, readonly_context, llm_request) -> str:
        return "\n\n".join([
            _HIGH_LEVEL_PREAMBLE,
            _PLANNING_PREAMBLE,
            _REASONING_PREAMBLE,
            _FINAL_ANSWER_PREAMBLE,
            _TOOL_CODE_PREAMBLE,
            _USER_INPUT_PREAMBLE,
        ])

    def process_planning_response(self, callback_context, response_parts: list[Part]) -> list[Part] | None:
        if not response_parts:
            return None

        preserved: list[Part] = []
        first_fc_index = -1
        for index, part in enumerate(response_parts):
            if part.function_call:
                # Calls without a name are dropped.
                if not part.function_call.name:
                    continue
                preserved.append(part)
                first_fc_index = index
                break
            self._handle_non_function_call_part(part, preserved)

        if first_fc_index > 0:
            for part in response_parts[first_fc_index + 1:]:
                if not part.function_call:
                    break
                preserved.append(part)
        return preserved

    @staticmethod
    def _split_by_last_pattern(text: str, separator: str) -> tuple[str, str]:
        index = text.rfind(separator)
        if index == -1:
            return text, ""
        return text[:index + len(separator)], text[index + len(separator):]

    def _handle_non_function_call_part(self, part: Part, preserved: list[Part]) -> None:
        if part.text and FINAL_ANSWER_TAG in part.text:
            reasoning, final_answer = self._split_by_last_pattern(part.text, FINAL_ANSWER_TAG)
            if reasoning:
                preserved.append(Part(text=reasoning, thought=True))
            if final_answer:
                preserved.append(Part(text=final_answer))
            return

        if part.text and part.text.startswith((PLANNING_TAG, REASONING_TAG, ACTION_TAG, REPLANNING_TAG)):
            part.thought = True
        preserved.append(part)
