import asyncio

import pytest

from agent_runtime.agents.base_agent import BaseAgent
from agent_runtime.code_executors import UnsafeLocalCodeExecutor
from agent_runtime.code_executors.base import CodeExecutionInput
from agent_runtime.invocation_context import InvocationContext
from agent_runtime.session import Session


def make_ctx() -> InvocationContext:
    return InvocationContext(
        session=Session(id="s1", app_name="app", user_id="u1"),
        agent=BaseAgent("coder"),
    )


@pytest.mark.asyncio
async def test_captures_stdout_and_stderr():
    executor = UnsafeLocalCodeExecutor(timeout=10)

    result = await executor.execute_code(
        make_ctx(),
        CodeExecutionInput(code="import sys\nprint(6 * 7)\nprint('warn', file=sys.stderr)"),
    )

    assert result.stdout.strip() == "42"
    assert result.stderr.strip() == "warn"


@pytest.mark.asyncio
async def test_errors_are_reported_on_stderr():
    executor = UnsafeLocalCodeExecutor(timeout=10)

    result = await executor.execute_code(make_ctx(), CodeExecutionInput(code="raise RuntimeError('bad input')"))

    assert result.stdout == ""
    assert "RuntimeError: bad input" in result.stderr


@pytest.mark.asyncio
async def test_event_loop_keeps_running_during_execution():
    executor = UnsafeLocalCodeExecutor(timeout=10)
    ticks = 0

    async def ticker():
        nonlocal ticks
        while True:
            await asyncio.sleep(0.01)
            ticks += 1

    ticker_task = asyncio.create_task(ticker())
    try:
        await executor.execute_code(make_ctx(), CodeExecutionInput(code="import time\ntime.sleep(0.3)"))
    finally:
        ticker_task.cancel()

    assert ticks > 5


@pytest.mark.asyncio
async def test_slow_code_times_out():
    executor = UnsafeLocalCodeExecutor(timeout=0.2)

    result = await executor.execute_code(make_ctx(), CodeExecutionInput(code="import time\ntime.sleep(5)"))

    assert "timed out" in result.stderr
