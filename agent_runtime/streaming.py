"""Aggregate streamed model chunks into complete responses."""

from typing import Any, AsyncIterator

from agent_runtime.llm import LlmResponse
from agent_runtime.types import Content, FunctionCall, Part, PartialArg


class StreamingResponseAggregator:
    """Turn a stream of partial responses into partial and aggregated ones.

    Legacy mode merges all text into one thought block and one regular block.
    Progressive mode keeps the original order of text, thought and function
    call parts, and rebuilds function calls whose arguments arrive as
    JSON-path fragments.
    """

    def __init__(self) -> None:
        self.reset()

    def reset(self) -> None:
        self._text = ""
        self._thought_text = ""
        self._usage_metadata: dict[str, Any] | None = None
        self._finish_reason: str | None = None
        self._finish_message: str | None = None
        self._seen_response = False

        self._parts_sequence: list[Part] = []
        self._text_buffer = ""
        self._text_is_thought: bool | None = None

        self._fc_name: str | None = None
        self._fc_args: dict[str, Any] = {}
        self._fc_id: str | None = None
        self._fc_thought_signature: str | None = None

    # -- progressive helpers -------------------------------------------------

    def _flush_text_buffer(self) -> None:
        if not self._text_buffer:
            return
        if self._text_is_thought:
            self._parts_sequence.append(Part(text=self._text_buffer, thought=True))
        else:
            self._parts_sequence.append(Part(text=self._text_buffer))
        self._text_buffer = ""
        self._text_is_thought = None

    def _flush_function_call(self) -> None:
        if not self._fc_name:
            return
        part = Part(function_call=FunctionCall(name=self._fc_name, args=dict(self._fc_args), id=self._fc_id))
        if self._fc_thought_signature:
            part.thought_signature = self._fc_thought_signature
        self._parts_sequence.append(part)

        self._fc_name = None
        self._fc_args = {}
        self._fc_id = None
        self._fc_thought_signature = None

    @staticmethod
    def _path_parts(json_path: str) -> list[str]:
        return json_path.removeprefix("$.").split(".")

    def _get_by_path(self, json_path: str) -> Any:
        current: Any = self._fc_args
        for key in self._path_parts(json_path):
            if not isinstance(current, dict) or key not in current:
                return None
            current = current[key]
        return current

    def _set_by_path(self, json_path: str, value: Any) -> None:
        keys = self._path_parts(json_path)
        current = self._fc_args
        for key in keys[:-1]:
            current = current.setdefault(key, {})
        current[keys[-1]] = value

    def _value_from_partial_arg(self, partial_arg: PartialArg) -> tuple[Any, bool]:
        """Strings append to what is already at the path; other scalars replace it."""
        if partial_arg.string_value is not None:
            existing = self._get_by_path(partial_arg.json_path)
            if isinstance(existing, str):
                return existing + partial_arg.string_value, True
            return partial_arg.string_value, True
        if partial_arg.number_value is not None:
            return partial_arg.number_value, True
        if partial_arg.bool_value is not None:
            return partial_arg.bool_value, True
        if partial_arg.null_value is not None:
            return None, True
        return None, False

    def _process_streaming_function_call(self, function_call: FunctionCall) -> None:
        if function_call.name:
            self._fc_name = function_call.name
        if function_call.id:
            self._fc_id = function_call.id

        for partial_arg in function_call.partial_args:
            if not partial_arg.json_path:
                continue
            value, has_value = self._value_from_partial_arg(partial_arg)
            if has_value:
                self._set_by_path(partial_arg.json_path, value)

        if not function_call.will_continue:
            self._flush_text_buffer()
            self._flush_function_call()

    def _process_function_call_part(self, part: Part) -> None:
        function_call = part.function_call
        if function_call.partial_args:
            if part.thought_signature and not self._fc_thought_signature:
                self._fc_thought_signature = part.thought_signature
            self._process_streaming_function_call(function_call)
        elif function_call.name:
            # Nameless calls without fragments only mark the end of a stream.
            self._flush_text_buffer()
            self._parts_sequence.append(part)

    # -- public API ----------------------------------------------------------

    async def process_response(
        self,
        response: LlmResponse,
        progressive: bool = False,
    ) -> AsyncIterator[LlmResponse]:
        """Consume one chunk.

        Args:
            response: The raw chunk from the model.
            progressive: Keep part order and rebuild streamed function calls.

        Yields:
            The chunk itself (marked partial when it only carries text), and
            in legacy mode the merged text before the first non-text chunk.
        """
        self._seen_response = True
        self._usage_metadata = response.usage_metadata
        if response.finish_reason:
            self._finish_reason = response.finish_reason
            self._finish_message = response.error_message

        if progressive and response.content is not None and response.content.parts:
            for part in response.content.parts:
                if part.text:
                    if self._text_buffer and part.thought != self._text_is_thought:
                        self._flush_text_buffer()
                    if not self._text_buffer:
                        self._text_is_thought = part.thought
                    self._text_buffer += part.text
                elif part.function_call:
                    self._process_function_call_part(part)
                else:
                    self._flush_text_buffer()
                    self._parts_sequence.append(part)
            response.partial = True
            yield response
            return

        first_part = response.content.parts[0] if response.content and response.content.parts else None
        if first_part is not None and first_part.text:
            if first_part.thought:
                self._thought_text += first_part.text
            else:
                self._text += first_part.text
            response.partial = True
        elif (self._thought_text or self._text) and (first_part is None or first_part.inline_data is None):
            yield LlmResponse(
                content=Content(role="model", parts=self._merged_text_parts()),
                usage_metadata=response.usage_metadata,
            )
            self._thought_text = ""
            self._text = ""
        yield response

    def _merged_text_parts(self) -> list[Part]:
        parts: list[Part] = []
        if self._thought_text:
            parts.append(Part(text=self._thought_text, thought=True))
        if self._text:
            parts.append(Part(text=self._text))
        return parts

    def _error_fields(self) -> tuple[str | None, str | None]:
        if self._finish_reason is None or self._finish_reason == "STOP":
            return None, None
        return self._finish_reason, self._finish_message

    def close(self, progressive: bool = False) -> LlmResponse | None:
        """Flush what is still buffered into one final, non-partial response."""
        if not self._seen_response:
            return None

        if progressive:
            self._flush_text_buffer()
            self._flush_function_call()
            if not self._parts_sequence:
                return None
            error_code, error_message = self._error_fields()
            return LlmResponse(
                content=Content(role="model", parts=self._parts_sequence),
                error_code=error_code,
                error_message=error_message,
                usage_metadata=self._usage_metadata,
                finish_reason=self._finish_reason,
                partial=False,
            )

        if not (self._text or self._thought_text):
            return None
        error_code, error_message = self._error_fields()
        return LlmResponse(
            content=Content(role="model", parts=self._merged_text_parts()),
            error_code=error_code,
            error_message=error_message,
            usage_metadata=self._usage_metadata,
            finish_reason=self._finish_reason,
        )
