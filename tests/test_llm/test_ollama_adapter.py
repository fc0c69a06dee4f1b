import json

import httpx
import pytest

from agent_runtime.exceptions import LLMAPIError
from agent_runtime.llm import LLMRegistry, LlmRequest, OllamaLlm, create_llm
from agent_runtime.types import Content, FunctionCall, FunctionResponse, Part


def make_llm(handler) -> OllamaLlm:
    llm = OllamaLlm(model="ollama/llama3.2", base_url="http://ollama.test/")
    llm.client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return llm


def weather_request() -> LlmRequest:
    request = LlmRequest(contents=[
        Content.user_text("weather in Oslo?"),
        Content(role="model", parts=[Part(function_call=FunctionCall(name="get_weather", args={"city": "Oslo"}))]),
        Content(role="user", parts=[Part(function_response=FunctionResponse(
            name="get_weather", response={"temp": 12},
        ))]),
    ])
    request.append_instructions(["You are a weather bot."])
    request.config.tools.append({
        "name": "get_weather",
        "description": "Weather lookup",
        "parameters": {"type": "object", "properties": {"city": {"type": "string"}}},
    })
    return request


@pytest.mark.asyncio
async def test_generate_converts_request_and_response():
    seen: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={
            "message": {
                "role": "assistant",
                "content": "Checking again.",
                "tool_calls": [{"function": {"name": "get_weather", "arguments": {"city": "Bergen"}}}],
            },
            "done": True,
            "done_reason": "stop",
            "prompt_eval_count": 30,
            "eval_count": 5,
        })

    llm = make_llm(handler)
    try:
        responses = [r async for r in llm.generate_content_async(weather_request())]
    finally:
        await llm.close()

    body = seen["body"]
    assert seen["url"] == "http://ollama.test/api/chat"
    assert body["model"] == "llama3.2"
    assert body["stream"] is False
    assert [m["role"] for m in body["messages"]] == ["system", "user", "assistant", "tool"]
    assert body["messages"][2]["tool_calls"][0]["function"]["arguments"] == {"city": "Oslo"}
    assert json.loads(body["messages"][3]["content"]) == {"temp": 12}
    assert body["tools"][0]["function"]["name"] == "get_weather"

    (response,) = responses
    text_part, call_part = response.content.parts
    assert text_part.text == "Checking again."
    assert call_part.function_call.args == {"city": "Bergen"}
    assert response.finish_reason == "STOP"
    assert response.usage_metadata == {
        "prompt_token_count": 30,
        "candidates_token_count": 5,
        "total_token_count": 35,
    }


@pytest.mark.asyncio
async def test_streaming_yields_partials_then_merged_text():
    lines = [
        {"message": {"role": "assistant", "content": "Hel"}, "done": False},
        {"message": {"role": "assistant", "content": "lo"}, "done": False},
        {"message": {"role": "assistant", "content": ""}, "done": True, "done_reason": "stop", "eval_count": 2},
    ]

    def handler(request: httpx.Request) -> httpx.Response:
        assert json.loads(request.content)["stream"] is True
        return httpx.Response(200, content="\n".join(json.dumps(line) for line in lines).encode())

    llm = make_llm(handler)
    try:
        responses = [r async for r in llm.generate_content_async(LlmRequest(contents=[Content.user_text("hi")]), stream=True)]
    finally:
        await llm.close()

    assert [r.content.text for r in responses[:2]] == ["Hel", "lo"]
    assert all(r.partial for r in responses[:2])
    merged = responses[2]
    assert merged.content.text == "Hello"
    assert not merged.partial
    assert responses[-1].finish_reason == "STOP"


@pytest.mark.asyncio
async def test_http_error_raises_api_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, text="model not loaded")

    llm = make_llm(handler)
    try:
        with pytest.raises(LLMAPIError) as exc_info:
            [r async for r in llm.generate_content_async(LlmRequest(contents=[Content.user_text("hi")]))]
    finally:
        await llm.close()

    assert exc_info.value.status_code == 500
    assert "model not loaded" in str(exc_info.value)


def test_registry_resolves_prefixed_model_names():
    llm = LLMRegistry.new_llm("ollama/qwen2.5")

    assert isinstance(llm, OllamaLlm)
    assert llm.model == "qwen2.5"


def test_create_llm_rejects_unknown_provider():
    with pytest.raises(ValueError, match="not supported"):
        create_llm(provider="nope")
