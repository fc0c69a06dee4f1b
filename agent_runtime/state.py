"""Session state with a pending-delta overlay and scope prefixes."""

from dataclasses import dataclass, field
from typing import Any, Iterator

APP_PREFIX = "app:"
USER_PREFIX = "user:"
TEMP_PREFIX = "temp:"


class State:
    """A state mapping that tracks the current value and the uncommitted delta.

    Writes go to both the value and the delta, so the delta can later be
    attached to an event and persisted.
    """

    APP_PREFIX = APP_PREFIX
    USER_PREFIX = USER_PREFIX
    TEMP_PREFIX = TEMP_PREFIX

    def __init__(
        self,
        value: dict[str, Any] | None = None,
        delta: dict[str, Any] | None = None,
    ):
        self._value = value if value is not None else {}
        self._delta = delta if delta is not None else {}

    def __getitem__(self, key: str) -> Any:
        if key in self._delta:
            return self._delta[key]
        return self._value[key]

    def __setitem__(self, key: str, value: Any) -> None:
        self._value[key] = value
        self._delta[key] = value

    def __contains__(self, key: object) -> bool:
        return key in self._value or key in self._delta

    def __iter__(self) -> Iterator[str]:
        return iter(self.to_dict())

    def get(self, key: str, default: Any = None) -> Any:
        if key in self._delta:
            return self._delta[key]
        return self._value.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self[key] = value

    def setdefault(self, key: str, default: Any = None) -> Any:
        if key in self:
            return self[key]
        self[key] = default
        return default

    def has_delta(self) -> bool:
        return bool(self._delta)

    def update(self, delta: dict[str, Any]) -> None:
        self._value.update(delta)
        self._delta.update(delta)

    def to_dict(self) -> dict[str, Any]:
        """Return the merged value as a plain dict."""
        return {**self._value, **self._delta}


@dataclass
class StateDeltas:
    """A state delta split by persistence scope."""

    app: dict[str, Any] = field(default_factory=dict)
    user: dict[str, Any] = field(default_factory=dict)
    session: dict[str, Any] = field(default_factory=dict)


def extract_state_delta(state: dict[str, Any] | None) -> StateDeltas:
    """Split a flat delta into app/user/session scopes; ``temp:`` keys are dropped."""
    deltas = StateDeltas()
    if not state:
        return deltas
    for key, value in state.items():
        if key.startswith(APP_PREFIX):
            deltas.app[key[len(APP_PREFIX):]] = value
        elif key.startswith(USER_PREFIX):
            deltas.user[key[len(USER_PREFIX):]] = value
        elif not key.startswith(TEMP_PREFIX):
            deltas.session[key] = value
    return deltas


def merge_state(
    app_state: dict[str, Any],
    user_state: dict[str, Any],
    session_state: dict[str, Any],
) -> dict[str, Any]:
    """Rebuild the flat prefixed state from its three scopes."""
    merged = dict(session_state)
    for key, value in app_state.items():
        merged[APP_PREFIX + key] = value
    for key, value in user_state.items():
        merged[USER_PREFIX + key] = value
    return merged


def trim_temp_delta(state_delta: dict[str, Any]) -> dict[str, Any]:
    """Return the delta without ``temp:`` keys."""
    return {key: value for key, value in state_delta.items() if not key.startswith(TEMP_PREFIX)}
