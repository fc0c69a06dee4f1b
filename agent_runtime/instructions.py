"""Instruction templates: ``{key}`` placeholders filled from session state."""

import re
from typing import TYPE_CHECKING

from agent_runtime.exceptions import StateInjectionError
from agent_runtime.state import APP_PREFIX, TEMP_PREFIX, USER_PREFIX

if TYPE_CHECKING:
    from agent_runtime.callback_context import ReadonlyContext

_PLACEHOLDER_RE = re.compile(r"{+[^{}]*}+")
_ARTIFACT_PREFIX = "artifact."


def _is_valid_state_name(name: str) -> bool:
    """``key`` or ``app:key`` / ``user:key`` / ``temp:key`` with identifier keys."""
    parts = name.split(":")
    if len(parts) == 1:
        return name.isidentifier()
    if len(parts) == 2 and f"{parts[0]}:" in (APP_PREFIX, USER_PREFIX, TEMP_PREFIX):
        return parts[1].isidentifier()
    return False


async def inject_session_state(template: str, readonly_context: "ReadonlyContext") -> str:
    """Replace placeholders in ``template``.

    ``{key}`` reads session state, ``{key?}`` is optional (missing -> empty),
    ``{artifact.file}`` loads a text artifact. Anything that is not a valid
    state name is left untouched.

    Raises:
        StateInjectionError: For a missing required key or artifact.
    """
    invocation_context = readonly_context.invocation_context
    pieces: list[str] = []
    last_end = 0

    for match in _PLACEHOLDER_RE.finditer(template):
        pieces.append(template[last_end:match.start()])
        last_end = match.end()

        raw = match.group()
        var_name = raw.lstrip("{").rstrip("}").strip()
        optional = var_name.endswith("?")
        if optional:
            var_name = var_name[:-1]

        if var_name.startswith(_ARTIFACT_PREFIX):
            filename = var_name[len(_ARTIFACT_PREFIX):]
            if invocation_context.artifact_service is None:
                raise StateInjectionError(var_name)
            artifact = await invocation_context.artifact_service.load_artifact(
                app_name=invocation_context.app_name,
                user_id=invocation_context.user_id,
                session_id=invocation_context.session.id,
                filename=filename,
            )
            if artifact is None:
                if optional:
                    pieces.append("")
                    continue
                raise StateInjectionError(var_name)
            pieces.append(artifact.text or "")
            continue

        if not _is_valid_state_name(var_name):
            pieces.append(raw)
            continue

        state = invocation_context.session.state
        if var_name in state:
            value = state[var_name]
            pieces.append("" if value is None else str(value))
        elif optional:
            pieces.append("")
        else:
            raise StateInjectionError(var_name)

    pieces.append(template[last_end:])
    return "".join(pieces)
