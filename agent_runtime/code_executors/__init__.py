"""Code executors."""

from agent_runtime.code_executors.base import (
    BaseCodeExecutor,
    BuiltInCodeExecutor,
    CodeExecutionInput,
    CodeExecutionResult,
    File,
    UnsafeLocalCodeExecutor,
)
from agent_runtime.code_executors.context import CodeExecutorContext

__all__ = [
    "BaseCodeExecutor",
    "BuiltInCodeExecutor",
    "CodeExecutionInput",
    "CodeExecutionResult",
    "CodeExecutorContext",
    "File",
    "UnsafeLocalCodeExecutor",
]
