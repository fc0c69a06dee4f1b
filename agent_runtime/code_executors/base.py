"""Code executors run model-written code and report stdout/stderr/files."""

import asyncio
import sys
from abc import abstractmethod
from typing import TYPE_CHECKING

from pydantic import BaseModel, Field

from agent_runtime.config import get_config
from agent_runtime.logging import get_logger

if TYPE_CHECKING:
    from agent_runtime.invocation_context import InvocationContext
    from agent_runtime.llm import LlmRequest

log = get_logger(__name__)


class File(BaseModel):
    """A file passed to or produced by a code executor."""

    name: str
    # Base64-encoded so it can live in session state.
    content: str
    mime_type: str = "text/plain"


class CodeExecutionInput(BaseModel):
    code: str
    input_files: list[File] = Field(default_factory=list)
    execution_id: str | None = None


class CodeExecutionResult(BaseModel):
    stdout: str = ""
    stderr: str = ""
    output_files: list[File] = Field(default_factory=list)


def _default_error_retry_attempts() -> int:
    return get_config().code_execution.error_retry_attempts


def _default_optimize_data_file() -> bool:
    return get_config().code_execution.optimize_data_file


def _default_timeout() -> float:
    return get_config().code_execution.timeout


class BaseCodeExecutor(BaseModel):
    """Base class for code executors.

    Attributes:
        optimize_data_file: Extract CSV attachments into files and explore them
            before the model sees the request.
        stateful: Reuse one execution id (the session id) across calls.
        error_retry_attempts: Consecutive failures allowed per invocation.
        code_block_delimiters: Leading/trailing markers of code in model text.
        execution_result_delimiters: Markers wrapped around execution output.
    """

    optimize_data_file: bool = Field(default_factory=_default_optimize_data_file)
    stateful: bool = False
    error_retry_attempts: int = Field(default_factory=_default_error_retry_attempts)
    code_block_delimiters: list[tuple[str, str]] = Field(
        default_factory=lambda: [("```tool_code\n", "\n```"), ("```python\n", "\n```")]
    )
    execution_result_delimiters: tuple[str, str] = ("```tool_output\n", "\n```")

    @abstractmethod
    async def execute_code(
        self,
        invocation_context: "InvocationContext",
        code_execution_input: CodeExecutionInput,
    ) -> CodeExecutionResult:
        """Execute code and return the result."""


class BuiltInCodeExecutor(BaseCodeExecutor):
    """Let the model provider execute code; nothing runs locally."""

    def process_llm_request(self, llm_request: "LlmRequest") -> None:
        llm_request.config.tools.append({"code_execution": {}})

    async def execute_code(self, invocation_context, code_execution_input) -> CodeExecutionResult:
        return CodeExecutionResult()


class UnsafeLocalCodeExecutor(BaseCodeExecutor):
    """Run code in a local Python subprocess; only for trusted code."""

    timeout: float = Field(default_factory=_default_timeout)

    async def execute_code(
        self,
        invocation_context: "InvocationContext",
        code_execution_input: CodeExecutionInput,
    ) -> CodeExecutionResult:
        log.debug("Executing code locally", invocation_id=invocation_context.invocation_id)
        process = await asyncio.create_subprocess_exec(
            sys.executable,
            "-c",
            code_execution_input.code,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            log.warning("Code execution timed out", timeout=self.timeout)
            return CodeExecutionResult(stderr=f"Code execution timed out after {self.timeout}s")
        except asyncio.CancelledError:
            process.kill()
            await process.wait()
            raise

        return CodeExecutionResult(
            stdout=stdout.decode("utf-8", errors="replace"),
            stderr=stderr.decode("utf-8", errors="replace"),
        )
