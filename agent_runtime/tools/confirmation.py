"""Tool confirmation payloads exchanged with the client."""

import json
from typing import Any

from pydantic import BaseModel


class ToolConfirmation(BaseModel):
    """A request for, or answer to, a human confirmation of a tool call."""

    hint: str = ""
    confirmed: bool = False
    payload: Any | None = None


def parse_confirmation_response(response: dict[str, Any]) -> ToolConfirmation:
    """Read a confirmation from a client function response.

    Clients send either ``{"response": "<json>"}`` or the fields directly.
    """
    raw = response.get("response")
    if isinstance(raw, str) and len(response) == 1:
        return ToolConfirmation.model_validate(json.loads(raw))
    return ToolConfirmation.model_validate(response)
