"""Versioned artifact storage."""

from abc import ABC, abstractmethod

from agent_runtime.logging import get_logger
from agent_runtime.types import Part

log = get_logger(__name__)

USER_SCOPE_PREFIX = "user:"


class BaseArtifactService(ABC):
    """Base class for artifact services.

    Versions start at 0 and grow by one per save of the same filename.
    Filenames starting with ``user:`` are shared by all sessions of a user.
    """

    @abstractmethod
    async def save_artifact(
        self,
        *,
        app_name: str,
        user_id: str,
        session_id: str,
        filename: str,
        artifact: Part,
    ) -> int:
        """Store a new version and return its number."""

    @abstractmethod
    async def load_artifact(
        self,
        *,
        app_name: str,
        user_id: str,
        session_id: str,
        filename: str,
        version: int | None = None,
    ) -> Part | None:
        """Load ``version``, or the latest one when None."""

    @abstractmethod
    async def list_artifact_keys(self, *, app_name: str, user_id: str, session_id: str) -> list[str]:
        """Sorted filenames visible to the session, user-scoped ones included."""

    @abstractmethod
    async def delete_artifact(self, *, app_name: str, user_id: str, session_id: str, filename: str) -> None:
        pass

    @abstractmethod
    async def list_versions(self, *, app_name: str, user_id: str, session_id: str, filename: str) -> list[int]:
        pass


class InMemoryArtifactService(BaseArtifactService):
    """Artifacts kept in process memory."""

    def __init__(self) -> None:
        self._artifacts: dict[str, list[Part]] = {}

    @staticmethod
    def _file_has_user_namespace(filename: str) -> bool:
        return filename.startswith(USER_SCOPE_PREFIX)

    def _artifact_path(self, app_name: str, user_id: str, session_id: str, filename: str) -> str:
        if self._file_has_user_namespace(filename):
            return f"{app_name}/{user_id}/user/{filename}"
        return f"{app_name}/{user_id}/{session_id}/{filename}"

    async def save_artifact(self, *, app_name, user_id, session_id, filename, artifact) -> int:
        path = self._artifact_path(app_name, user_id, session_id, filename)
        versions = self._artifacts.setdefault(path, [])
        versions.append(artifact)
        version = len(versions) - 1
        log.debug("Saved artifact", filename=filename, version=version)
        return version

    async def load_artifact(self, *, app_name, user_id, session_id, filename, version=None) -> Part | None:
        versions = self._artifacts.get(self._artifact_path(app_name, user_id, session_id, filename))
        if not versions:
            return None
        if version is None:
            return versions[-1]
        if version < 0 or version >= len(versions):
            return None
        return versions[version]

    async def list_artifact_keys(self, *, app_name, user_id, session_id) -> list[str]:
        session_prefix = f"{app_name}/{user_id}/{session_id}/"
        user_prefix = f"{app_name}/{user_id}/user/"
        keys = []
        for path in self._artifacts:
            if path.startswith(session_prefix):
                keys.append(path[len(session_prefix):])
            elif path.startswith(user_prefix):
                keys.append(path[len(user_prefix):])
        return sorted(keys)

    async def delete_artifact(self, *, app_name, user_id, session_id, filename) -> None:
        self._artifacts.pop(self._artifact_path(app_name, user_id, session_id, filename), None)

    async def list_versions(self, *, app_name, user_id, session_id, filename) -> list[int]:
        versions = self._artifacts.get(self._artifact_path(app_name, user_id, session_id, filename), [])
        return list(range(len(versions)))
