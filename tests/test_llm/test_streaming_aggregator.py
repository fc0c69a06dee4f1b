import pytest

from agent_runtime.llm import LlmResponse
from agent_runtime.streaming import StreamingResponseAggregator
from agent_runtime.types import Content, FunctionCall, Part, PartialArg


def text_chunk(text: str, thought: bool | None = None) -> LlmResponse:
    return LlmResponse(content=Content(role="model", parts=[Part(text=text, thought=thought)]))


def fc_chunk(name: str = "", partial_args=None, will_continue: bool = False, thought_signature=None) -> LlmResponse:
    call = FunctionCall(name=name, partial_args=partial_args or [], will_continue=will_continue)
    return LlmResponse(content=Content(role="model", parts=[Part(function_call=call, thought_signature=thought_signature)]))


async def collect(aggregator: StreamingResponseAggregator, response: LlmResponse, progressive: bool = False):
    return [r async for r in aggregator.process_response(response, progressive)]


@pytest.mark.asyncio
async def test_legacy_mode_merges_thought_and_text():
    aggregator = StreamingResponseAggregator()
    emitted = []
    for chunk in [text_chunk("Let me ", thought=True), text_chunk("think", thought=True), text_chunk("Hello "), text_chunk("world")]:
        emitted.extend(await collect(aggregator, chunk))

    assert all(r.partial for r in emitted)

    final_chunk = LlmResponse(finish_reason="STOP", usage_metadata={"total_token_count": 9})
    emitted = await collect(aggregator, final_chunk)
    merged, passthrough = emitted
    assert [(p.text, p.thought) for p in merged.content.parts] == [("Let me think", True), ("Hello world", None)]
    assert passthrough is final_chunk
    assert aggregator.close() is None


@pytest.mark.asyncio
async def test_legacy_close_flushes_buffered_text_with_finish_info():
    aggregator = StreamingResponseAggregator()
    await collect(aggregator, text_chunk("partial "))
    last = text_chunk("answer")
    last.finish_reason = "MAX_TOKENS"
    last.error_message = "token limit"
    await collect(aggregator, last)

    final = aggregator.close()

    assert final.content.text == "partial answer"
    assert final.finish_reason == "MAX_TOKENS"
    assert final.error_code == "MAX_TOKENS"
    assert final.error_message == "token limit"


@pytest.mark.asyncio
async def test_progressive_mode_keeps_order_and_rebuilds_function_call():
    aggregator = StreamingResponseAggregator()
    chunks = [text_chunk(t) for t in ["I ", "will ", "check ", "the ", "weather."]]
    chunks += [
        fc_chunk(
            name="get_weather",
            partial_args=[PartialArg(json_path="$.location", string_value="New ")],
            will_continue=True,
            thought_signature="sig-1",
        ),
        fc_chunk(partial_args=[PartialArg(json_path="$.location", string_value="York")], will_continue=True),
        fc_chunk(partial_args=[
            PartialArg(json_path="$.options.days", number_value=3),
            PartialArg(json_path="$.options.metric", bool_value=True),
        ]),
    ]
    for chunk in chunks:
        emitted = await collect(aggregator, chunk, progressive=True)
        assert emitted == [chunk]
        assert chunk.partial is True

    await collect(aggregator, LlmResponse(finish_reason="STOP", usage_metadata={"total_token_count": 42}), True)
    final = aggregator.close(progressive=True)

    assert final.partial is False
    assert final.finish_reason == "STOP"
    assert final.error_code is None
    assert final.usage_metadata == {"total_token_count": 42}
    text_part, call_part = final.content.parts
    assert text_part.text == "I will check the weather."
    assert call_part.function_call.name == "get_weather"
    assert call_part.function_call.args == {"location": "New York", "options": {"days": 3, "metric": True}}
    assert call_part.thought_signature == "sig-1"


@pytest.mark.asyncio
async def test_progressive_mode_separates_thought_and_text_runs():
    aggregator = StreamingResponseAggregator()
    for chunk in [text_chunk("plan", thought=True), text_chunk("ning", thought=True), text_chunk("answer")]:
        await collect(aggregator, chunk, progressive=True)
    complete_call = LlmResponse(content=Content(role="model", parts=[
        Part(function_call=FunctionCall(name="lookup", args={"q": "x"}, id="c1")),
    ]))
    await collect(aggregator, complete_call, progressive=True)
    await collect(aggregator, text_chunk("after"), progressive=True)

    final = aggregator.close(progressive=True)

    assert [(p.text, p.thought) for p in final.content.parts if p.text] == [
        ("planning", True),
        ("answer", None),
        ("after", None),
    ]
    assert final.content.parts[2].function_call.id == "c1"


@pytest.mark.asyncio
async def test_null_fragment_replaces_value():
    aggregator = StreamingResponseAggregator()
    await collect(aggregator, fc_chunk(
        name="f",
        partial_args=[PartialArg(json_path="$.a", string_value="x")],
        will_continue=True,
    ), True)
    await collect(aggregator, fc_chunk(partial_args=[PartialArg(json_path="$.a", null_value=True)]), True)

    final = aggregator.close(progressive=True)

    assert final.content.parts[0].function_call.args == {"a": None}


def test_close_without_responses_returns_none():
    aggregator = StreamingResponseAggregator()
    assert aggregator.close() is None
    assert aggregator.close(progressive=True) is None
