import pytest

from agent_runtime.artifacts import InMemoryArtifactService
from agent_runtime.types import Part

SCOPE = {"app_name": "app", "user_id": "u1", "session_id": "s1"}


@pytest.mark.asyncio
async def test_versions_start_at_zero_and_latest_wins():
    service = InMemoryArtifactService()

    assert await service.save_artifact(**SCOPE, filename="notes.txt", artifact=Part(text="v0")) == 0
    assert await service.save_artifact(**SCOPE, filename="notes.txt", artifact=Part(text="v1")) == 1

    assert (await service.load_artifact(**SCOPE, filename="notes.txt")).text == "v1"
    assert (await service.load_artifact(**SCOPE, filename="notes.txt", version=0)).text == "v0"
    assert await service.load_artifact(**SCOPE, filename="notes.txt", version=5) is None
    assert await service.list_versions(**SCOPE, filename="notes.txt") == [0, 1]


@pytest.mark.asyncio
async def test_user_scoped_artifacts_are_shared_across_sessions():
    service = InMemoryArtifactService()
    await service.save_artifact(**SCOPE, filename="user:profile.json", artifact=Part(text="{}"))
    await service.save_artifact(**SCOPE, filename="draft.md", artifact=Part(text="# draft"))

    other_session = {**SCOPE, "session_id": "s2"}

    assert (await service.load_artifact(**other_session, filename="user:profile.json")).text == "{}"
    assert await service.load_artifact(**other_session, filename="draft.md") is None
    assert await service.list_artifact_keys(**SCOPE) == ["draft.md", "user:profile.json"]
    assert await service.list_artifact_keys(**other_session) == ["user:profile.json"]


@pytest.mark.asyncio
async def test_delete_removes_every_version():
    service = InMemoryArtifactService()
    await service.save_artifact(**SCOPE, filename="a.txt", artifact=Part(text="x"))
    await service.save_artifact(**SCOPE, filename="a.txt", artifact=Part(text="y"))

    await service.delete_artifact(**SCOPE, filename="a.txt")

    assert await service.load_artifact(**SCOPE, filename="a.txt") is None
    assert await service.list_versions(**SCOPE, filename="a.txt") == []
    assert await service.list_artifact_keys(**SCOPE) == []
