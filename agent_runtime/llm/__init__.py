"""Model capability: requests, responses, providers, and the Ollama adapter."""

import json
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, AsyncIterator

import httpx

from agent_runtime.exceptions import LLMAPIError, LLMError
from agent_runtime.logging import get_logger
from agent_runtime.tools.registry import ToolRegistry
from agent_runtime.types import Blob, Content, FunctionCall, Part

if TYPE_CHECKING:
    from agent_runtime.tools.registry import BaseTool

log = get_logger(__name__)


OLLAMA_NATIVE_BASE_URL = "http://127.0.0.1:11434"


@dataclass
class GenerateContentConfig:
    """Generation settings sent with a request."""

    system_instruction: str | None = None
    temperature: float | None = None
    max_output_tokens: int | None = None
    labels: dict[str, str] = field(default_factory=dict)
    # Function declarations: {"name", "description", "parameters"}
    tools: list[dict[str, Any]] = field(default_factory=list)
    thinking_config: dict[str, Any] | None = None
    response_schema: Any = None
    response_mime_type: str | None = None


@dataclass
class LlmRequest:
    """Outgoing model request, built incrementally by request processors."""

    model: str | None = None
    contents: list[Content] = field(default_factory=list)
    config: GenerateContentConfig = field(default_factory=GenerateContentConfig)
    tools: ToolRegistry = field(default_factory=ToolRegistry)
    live_connect_config: dict[str, Any] = field(default_factory=dict)
    # Keep part order and rebuild fragmented function calls when streaming.
    progressive_sse: bool = False

    def append_instructions(self, instructions: list[str]) -> None:
        """Append instruction paragraphs to the system instruction."""
        if not instructions:
            return
        text = "\n\n".join(instructions)
        if self.config.system_instruction:
            self.config.system_instruction += "\n\n" + text
        else:
            self.config.system_instruction = text

    def append_tools(self, tools: list["BaseTool"]) -> None:
        """Register tools and add their declarations to the config."""
        for tool in tools:
            declaration = tool.get_declaration()
            if declaration is None:
                continue
            self.config.tools.append(declaration)
            self.tools.register(tool)

    def set_output_schema(self, schema: Any) -> None:
        self.config.response_schema = schema
        self.config.response_mime_type = "application/json"


@dataclass
class LlmResponse:
    """One (possibly partial) model response."""

    content: Content | None = None
    partial: bool | None = None
    turn_complete: bool | None = None
    interrupted: bool | None = None
    error_code: str | None = None
    error_message: str | None = None
    finish_reason: str | None = None
    usage_metadata: dict[str, Any] | None = None
    custom_metadata: dict[str, Any] | None = None
    live_session_resumption_update: dict[str, Any] | None = None

    @classmethod
    def from_error(cls, code: str, message: str) -> "LlmResponse":
        return cls(error_code=code, error_message=message)


class BaseLlmConnection(ABC):
    """A bidirectional connection to a model."""

    @abstractmethod
    async def send_history(self, history: list[Content]) -> None:
        pass

    @abstractmethod
    async def send_content(self, content: Content) -> None:
        pass

    @abstractmethod
    async def send_realtime(self, blob: Blob) -> None:
        pass

    @abstractmethod
    def receive(self) -> AsyncIterator[LlmResponse]:
        pass

    @abstractmethod
    async def close(self) -> None:
        pass


class BaseLlm(ABC):
    """Abstract base class for model providers."""

    def __init__(self, model: str):
        self.model = model

    @classmethod
    def supported_models(cls) -> list[str]:
        """Regex patterns of model names this provider handles."""
        return []

    @abstractmethod
    def generate_content_async(
        self,
        llm_request: LlmRequest,
        stream: bool = False,
    ) -> AsyncIterator[LlmResponse]:
        """Generate content; yields one response, or partial chunks when streaming."""

    async def connect(self, llm_request: LlmRequest) -> BaseLlmConnection:
        raise LLMError(f"Live connection is not supported for {self.model}.")


class LLMRegistry:
    """Resolve model names to provider classes."""

    _llm_registry: dict[str, type[BaseLlm]] = {}

    @classmethod
    def register(cls, llm_cls: type[BaseLlm]) -> None:
        for pattern in llm_cls.supported_models():
            cls._llm_registry[pattern] = llm_cls

    @classmethod
    def resolve(cls, model: str) -> type[BaseLlm] | None:
        for pattern, llm_cls in cls._llm_registry.items():
            if re.fullmatch(pattern, model):
                return llm_cls
        return None

    @classmethod
    def new_llm(cls, model: str) -> BaseLlm:
        """Create a provider for ``model``; unmatched names use the configured default."""
        llm_cls = cls.resolve(model)
        if llm_cls is not None:
            return llm_cls(model=model)
        from agent_runtime.config import get_config

        cfg = get_config()
        return create_llm(
            provider=cfg.model.provider,
            model=model,
            api_key=cfg.model.api_key or None,
            base_url=cfg.model.base_url or None,
            temperature=cfg.model.temperature,
            max_tokens=cfg.model.max_tokens,
            timeout=cfg.model.timeout,
        )


class OllamaLlm(BaseLlm):
    """Direct Ollama chat API provider."""

    def __init__(
        self,
        model: str = "llama3.2",
        base_url: str = OLLAMA_NATIVE_BASE_URL,
        temperature: float = 0.7,
        max_tokens: int = 4096,
        api_key: str | None = None,
        timeout: float = 120.0,
    ):
        """Initialize the Ollama provider.

        Args:
            model: Ollama model name, optionally prefixed with ``ollama/``
            base_url: Ollama API base URL
            temperature: Default sampling temperature
            max_tokens: Default max tokens to generate
            api_key: Optional API key (Ollama usually doesn't need one locally)
            timeout: HTTP timeout in seconds
        """
        super().__init__(model.removeprefix("ollama/"))
        self.base_url = base_url.rstrip("/")
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.api_key = api_key
        self.client = httpx.AsyncClient(timeout=timeout, follow_redirects=True)

    @classmethod
    def supported_models(cls) -> list[str]:
        return [r"ollama/.+"]

    def _convert_contents(self, llm_request: LlmRequest) -> list[dict[str, Any]]:
        """Convert request contents to Ollama chat messages."""
        messages: list[dict[str, Any]] = []
        if llm_request.config.system_instruction:
            messages.append({"role": "system", "content": llm_request.config.system_instruction})

        for content in llm_request.contents:
            role = "assistant" if content.role == "model" else "user"
            text = "".join(part.text for part in content.parts if part.text and not part.thought)
            tool_calls = [
                {"function": {"name": part.function_call.name, "arguments": part.function_call.args}}
                for part in content.parts
                if part.function_call
            ]
            if text or tool_calls:
                entry: dict[str, Any] = {"role": role, "content": text}
                if tool_calls:
                    entry["tool_calls"] = tool_calls
                messages.append(entry)
            for part in content.parts:
                if part.function_response:
                    messages.append({
                        "role": "tool",
                        "content": json.dumps(part.function_response.response, default=str),
                        "tool_name": part.function_response.name,
                    })
        return messages

    def _convert_tools(self, declarations: list[dict[str, Any]]) -> list[dict[str, Any]]:
        return [
            {
                "type": "function",
                "function": {
                    "name": declaration["name"],
                    "description": declaration.get("description", ""),
                    "parameters": declaration.get("parameters") or {"type": "object", "properties": {}},
                },
            }
            for declaration in declarations
            if declaration.get("name")
        ]

    def _build_body(self, llm_request: LlmRequest, stream: bool) -> dict[str, Any]:
        config = llm_request.config
        options: dict[str, Any] = {
            "temperature": config.temperature if config.temperature is not None else self.temperature,
        }
        max_tokens = config.max_output_tokens or self.max_tokens
        if max_tokens:
            options["num_predict"] = max_tokens

        body: dict[str, Any] = {
            "model": (llm_request.model or self.model).removeprefix("ollama/"),
            "messages": self._convert_contents(llm_request),
            "stream": stream,
            "options": options,
        }
        if config.tools:
            body["tools"] = self._convert_tools(config.tools)
        if config.response_mime_type == "application/json":
            schema = config.response_schema
            body["format"] = schema.model_json_schema() if hasattr(schema, "model_json_schema") else "json"
        return body

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    @staticmethod
    def _parts_from_message(message: dict[str, Any]) -> list[Part]:
        parts: list[Part] = []
        if message.get("thinking"):
            parts.append(Part(text=message["thinking"], thought=True))
        if message.get("content"):
            parts.append(Part(text=message["content"]))
        for tc in message.get("tool_calls") or []:
            function = tc.get("function", {})
            parts.append(Part(function_call=FunctionCall(
                name=function.get("name", ""),
                args=function.get("arguments") or {},
                id=f"ollama_call_{tc['id']}" if tc.get("id") else None,
            )))
        return parts

    @staticmethod
    def _usage(data: dict[str, Any]) -> dict[str, int]:
        prompt = data.get("prompt_eval_count", 0)
        completion = data.get("eval_count", 0)
        return {
            "prompt_token_count": prompt,
            "candidates_token_count": completion,
            "total_token_count": prompt + completion,
        }

    @staticmethod
    def _finish_reason(data: dict[str, Any]) -> str:
        reason = str(data.get("done_reason") or "stop").lower()
        return {"stop": "STOP", "length": "MAX_TOKENS"}.get(reason, reason.upper())

    async def generate_content_async(
        self,
        llm_request: LlmRequest,
        stream: bool = False,
    ) -> AsyncIterator[LlmResponse]:
        """Generate a completion, streaming NDJSON chunks when asked."""
        url = f"{self.base_url}/api/chat"
        body = self._build_body(llm_request, stream)
        log.debug(
            "Calling Ollama",
            model=body["model"],
            url=url,
            msg_count=len(body["messages"]),
            stream=stream,
        )
        try:
            if stream:
                async for response in self._stream(url, body, llm_request.progressive_sse):
                    yield response
                return

            response = await self.client.post(url, json=body, headers=self._headers())
            log.debug("Ollama response status", status=response.status_code)
            if not response.is_success:
                raise LLMAPIError(
                    f"Ollama API error {response.status_code}: {response.text}",
                    status_code=response.status_code,
                )
            data = response.json()
            finish_reason = self._finish_reason(data)
            yield LlmResponse(
                content=Content(role="model", parts=self._parts_from_message(data.get("message", {}))),
                finish_reason=finish_reason,
                usage_metadata=self._usage(data),
                turn_complete=True,
            )
        except LLMError:
            raise
        except httpx.HTTPError as e:
            raise LLMAPIError(f"Ollama HTTP error: {e}")
        except json.JSONDecodeError as e:
            raise LLMError(f"Ollama response decode error: {e}")

    async def _stream(
        self,
        url: str,
        body: dict[str, Any],
        progressive: bool = False,
    ) -> AsyncIterator[LlmResponse]:
        from agent_runtime.streaming import StreamingResponseAggregator

        aggregator = StreamingResponseAggregator()
        async with self.client.stream("POST", url, json=body, headers=self._headers()) as response:
            if not response.is_success:
                error_text = await response.aread()
                raise LLMAPIError(
                    f"Ollama API error {response.status_code}: {error_text.decode(errors='replace')}",
                    status_code=response.status_code,
                )
            async for line in response.aiter_lines():
                if not line.strip():
                    continue
                chunk = json.loads(line)
                parts = self._parts_from_message(chunk.get("message", {}))
                llm_response = LlmResponse(content=Content(role="model", parts=parts) if parts else None)
                if chunk.get("done"):
                    llm_response.finish_reason = self._finish_reason(chunk)
                    llm_response.usage_metadata = self._usage(chunk)
                async for aggregated in aggregator.process_response(llm_response, progressive):
                    yield aggregated
                if chunk.get("done"):
                    break
        final = aggregator.close(progressive)
        if final is not None:
            yield final

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()


LLMRegistry.register(OllamaLlm)


def create_llm(
    provider: str = "ollama",
    model: str = "llama3.2",
    api_key: str | None = None,
    base_url: str | None = None,
    temperature: float = 0.7,
    max_tokens: int = 4096,
    timeout: float = 120.0,
) -> BaseLlm:
    """Create a model provider.

    Args:
        provider: Provider name (only ``ollama`` is built in)
        model: Model name
        api_key: Optional API key
        base_url: Optional base URL
        temperature: Default temperature
        max_tokens: Default max tokens
        timeout: HTTP timeout in seconds

    Returns:
        Configured BaseLlm instance
    """
    if provider == "ollama":
        return OllamaLlm(
            model=model,
            base_url=base_url or OLLAMA_NATIVE_BASE_URL,
            temperature=temperature,
            max_tokens=max_tokens,
            api_key=api_key,
            timeout=timeout,
        )
    raise ValueError(f"Provider '{provider}' not supported. Register a BaseLlm subclass instead.")


