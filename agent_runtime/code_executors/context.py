"""Code executor bookkeeping stored in session state."""

import copy
import time
from typing import Any

from agent_runtime.code_executors.base import File
from agent_runtime.state import State

_CONTEXT_KEY = "_code_execution_context"
_SESSION_ID_KEY = "execution_session_id"
_PROCESSED_FILE_NAMES_KEY = "processed_input_files"
_INPUT_FILE_KEY = "_code_executor_input_files"
_ERROR_COUNT_KEY = "_code_executor_error_counts"
_CODE_EXECUTION_RESULTS_KEY = "_code_execution_results"


class CodeExecutorContext:
    """Execution id, known files, error counts and results for one session."""

    def __init__(self, session_state: State):
        self._session_state = session_state
        self._context = self._get_code_executor_context(session_state)

    @staticmethod
    def _get_code_executor_context(session_state: State) -> dict[str, Any]:
        if _CONTEXT_KEY not in session_state:
            session_state[_CONTEXT_KEY] = {}
        return session_state[_CONTEXT_KEY]

    def get_state_delta(self) -> dict[str, Any]:
        return {_CONTEXT_KEY: copy.deepcopy(self._context)}

    def get_execution_id(self) -> str | None:
        return self._context.get(_SESSION_ID_KEY)

    def set_execution_id(self, execution_id: str) -> None:
        self._context[_SESSION_ID_KEY] = execution_id

    def get_processed_file_names(self) -> list[str]:
        return list(self._context.get(_PROCESSED_FILE_NAMES_KEY, []))

    def add_processed_file_names(self, file_names: list[str]) -> None:
        self._context.setdefault(_PROCESSED_FILE_NAMES_KEY, []).extend(file_names)

    def get_input_files(self) -> list[File]:
        return [File.model_validate(item) for item in self._session_state.get(_INPUT_FILE_KEY, [])]

    def add_input_files(self, input_files: list[File]) -> None:
        files = list(self._session_state.get(_INPUT_FILE_KEY, []))
        files.extend(file.model_dump() for file in input_files)
        self._session_state[_INPUT_FILE_KEY] = files

    def clear_input_files(self) -> None:
        self._session_state[_INPUT_FILE_KEY] = []
        self._context[_PROCESSED_FILE_NAMES_KEY] = []

    def get_error_count(self, invocation_id: str) -> int:
        return self._session_state.get(_ERROR_COUNT_KEY, {}).get(invocation_id, 0)

    def increment_error_count(self, invocation_id: str) -> None:
        counts = dict(self._session_state.get(_ERROR_COUNT_KEY, {}))
        counts[invocation_id] = counts.get(invocation_id, 0) + 1
        self._session_state[_ERROR_COUNT_KEY] = counts

    def reset_error_count(self, invocation_id: str) -> None:
        counts = dict(self._session_state.get(_ERROR_COUNT_KEY, {}))
        if invocation_id in counts:
            del counts[invocation_id]
            self._session_state[_ERROR_COUNT_KEY] = counts

    def update_code_execution_result(
        self,
        invocation_id: str,
        code: str,
        result_stdout: str,
        result_stderr: str,
    ) -> None:
        results = dict(self._session_state.get(_CODE_EXECUTION_RESULTS_KEY, {}))
        results.setdefault(invocation_id, []).append({
            "code": code,
            "result_stdout": result_stdout,
            "result_stderr": result_stderr,
            "timestamp": int(time.time()),
        })
        self._session_state[_CODE_EXECUTION_RESULTS_KEY] = results
