"""Conversation content types shared by models, tools and events."""

import base64
from dataclasses import asdict, dataclass, field
from typing import Any


@dataclass
class FunctionCall:
    """A function call requested by the model."""

    name: str = ""
    args: dict[str, Any] = field(default_factory=dict)
    id: str | None = None
    # Streaming argument fragments; only set on partial chunks.
    partial_args: list["PartialArg"] = field(default_factory=list)
    will_continue: bool = False


@dataclass
class FunctionResponse:
    """Result of a function call, correlated by id."""

    name: str = ""
    response: dict[str, Any] = field(default_factory=dict)
    id: str | None = None


@dataclass
class PartialArg:
    """One streamed argument fragment addressed by a JSON path like ``$.a.b``."""

    json_path: str = ""
    string_value: str | None = None
    number_value: float | None = None
    bool_value: bool | None = None
    null_value: bool | None = None


@dataclass
class Blob:
    """Inline binary data (audio chunk, uploaded file, ...)."""

    mime_type: str = ""
    data: bytes = b""


@dataclass
class FileData:
    """Reference to a file stored outside the conversation."""

    file_uri: str = ""
    mime_type: str = ""


@dataclass
class ExecutableCode:
    """Code emitted by the model or by a code executor."""

    code: str = ""
    language: str = "PYTHON"


@dataclass
class CodeExecutionResult:
    """Outcome of running an ``ExecutableCode`` part."""

    outcome: str = "OUTCOME_OK"
    output: str = ""


@dataclass
class Part:
    """One element of a message: text, thought, call, response, file or code."""

    text: str | None = None
    thought: bool | None = None
    thought_signature: str | None = None
    function_call: FunctionCall | None = None
    function_response: FunctionResponse | None = None
    inline_data: Blob | None = None
    file_data: FileData | None = None
    executable_code: ExecutableCode | None = None
    code_execution_result: CodeExecutionResult | None = None

    @classmethod
    def from_text(cls, text: str) -> "Part":
        return cls(text=text)

    @classmethod
    def from_function_call(cls, name: str, args: dict[str, Any], id: str | None = None) -> "Part":
        return cls(function_call=FunctionCall(name=name, args=args, id=id))

    @classmethod
    def from_function_response(
        cls,
        name: str,
        response: dict[str, Any],
        id: str | None = None,
    ) -> "Part":
        return cls(function_response=FunctionResponse(name=name, response=response, id=id))

    def is_empty(self) -> bool:
        """True when the part carries nothing the model can consume."""
        return not (
            self.text
            or self.function_call
            or self.function_response
            or self.inline_data
            or self.file_data
            or self.executable_code
            or self.code_execution_result
        )


@dataclass
class Content:
    """A message: a role and an ordered list of parts."""

    role: str = "user"  # "user" or "model"
    parts: list[Part] = field(default_factory=list)

    @classmethod
    def user_text(cls, text: str) -> "Content":
        return cls(role="user", parts=[Part(text=text)])

    @classmethod
    def model_text(cls, text: str) -> "Content":
        return cls(role="model", parts=[Part(text=text)])

    @property
    def text(self) -> str:
        """Concatenated non-thought text of all parts."""
        return "".join(part.text for part in self.parts if part.text and not part.thought)


def _drop_none(data: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in data.items() if value is not None}


def part_to_dict(part: Part) -> dict[str, Any]:
    """Serialise a part to JSON-compatible data (bytes become base64)."""
    data: dict[str, Any] = {"text": part.text, "thought": part.thought}
    data["thought_signature"] = part.thought_signature
    if part.function_call is not None:
        data["function_call"] = {
            "name": part.function_call.name,
            "args": part.function_call.args,
            "id": part.function_call.id,
        }
    if part.function_response is not None:
        data["function_response"] = {
            "name": part.function_response.name,
            "response": part.function_response.response,
            "id": part.function_response.id,
        }
    if part.inline_data is not None:
        data["inline_data"] = {
            "mime_type": part.inline_data.mime_type,
            "data": base64.b64encode(part.inline_data.data).decode("ascii"),
        }
    if part.file_data is not None:
        data["file_data"] = asdict(part.file_data)
    if part.executable_code is not None:
        data["executable_code"] = asdict(part.executable_code)
    if part.code_execution_result is not None:
        data["code_execution_result"] = asdict(part.code_execution_result)
    return _drop_none(data)


def part_from_dict(data: dict[str, Any]) -> Part:
    """Inverse of ``part_to_dict``."""
    part = Part(
        text=data.get("text"),
        thought=data.get("thought"),
        thought_signature=data.get("thought_signature"),
    )
    if call := data.get("function_call"):
        part.function_call = FunctionCall(
            name=call.get("name", ""),
            args=call.get("args") or {},
            id=call.get("id"),
        )
    if response := data.get("function_response"):
        part.function_response = FunctionResponse(
            name=response.get("name", ""),
            response=response.get("response") or {},
            id=response.get("id"),
        )
    if blob := data.get("inline_data"):
        part.inline_data = Blob(
            mime_type=blob.get("mime_type", ""),
            data=base64.b64decode(blob.get("data", "")),
        )
    if file_data := data.get("file_data"):
        part.file_data = FileData(**file_data)
    if code := data.get("executable_code"):
        part.executable_code = ExecutableCode(**code)
    if result := data.get("code_execution_result"):
        part.code_execution_result = CodeExecutionResult(**result)
    return part


def content_to_dict(content: Content | None) -> dict[str, Any] | None:
    if content is None:
        return None
    return {"role": content.role, "parts": [part_to_dict(part) for part in content.parts]}


def content_from_dict(data: dict[str, Any] | None) -> Content | None:
    if data is None:
        return None
    return Content(
        role=data.get("role", "user"),
        parts=[part_from_dict(part) for part in data.get("parts", [])],
    )
