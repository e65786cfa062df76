"""
Tests for the user registry against a temporary SQLite database.
"""
import asyncio

import pytest
from sqlalchemy.exc import IntegrityError

from faceauth.database import Database
from faceauth.repository import UserRepository
from faceauth.schemas import as_utc


def run(tmp_path, scenario):
    """Run `scenario(session)` against a fresh database."""
    async def main():
        database = Database(f"sqlite+aiosqlite:///{tmp_path / 'registry.db'}")
        await database.connect()
        try:
            async with database.session() as session:
                return await scenario(session)
        finally:
            await database.close()

    return asyncio.run(main())


async def create_user(session, name="Alice", face_id="corr-alice", rekognition_face_id="rek-alice"):
    return await UserRepository.create(
        session,
        name=name,
        face_id=face_id,
        s3_image_key=f"faces/{face_id}.jpg",
        s3_image_url=f"https://bucket.s3.ap-south-1.amazonaws.com/faces/{face_id}.jpg",
        rekognition_face_id=rekognition_face_id,
        bounding_box={"Width": 0.4, "Height": 0.5, "Left": 0.3, "Top": 0.2},
        confidence=99.9,
    )


def test_lookups(tmp_path):
    async def scenario(session):
        user = await create_user(session)
        assert (await UserRepository.get_by_id(session, user.id)).name == "Alice"
        assert (await UserRepository.get_by_face_id(session, "corr-alice")).id == user.id
        assert (await UserRepository.get_by_rekognition_face_id(session, "rek-alice")).id == user.id
        assert (await UserRepository.get_by_name(session, "Alice")).id == user.id
        assert await UserRepository.get_by_id(session, "missing") is None
        assert await UserRepository.get_by_face_id(session, None) is None
        return user

    user = run(tmp_path, scenario)
    assert user.bounding_box == {"Width": 0.4, "Height": 0.5, "Left": 0.3, "Top": 0.2}
    assert user.created_at == user.updated_at


def test_face_id_is_unique(tmp_path):
    async def scenario(session):
        await create_user(session)
        await create_user(session, name="Mallory", rekognition_face_id="rek-mallory")

    with pytest.raises(IntegrityError):
        run(tmp_path, scenario)


def test_users_without_face_id_do_not_collide(tmp_path):
    async def scenario(session):
        await create_user(session, name="Legacy 1", face_id=None, rekognition_face_id=None)
        await create_user(session, name="Legacy 2", face_id=None, rekognition_face_id=None)
        return await UserRepository.count(session)

    assert run(tmp_path, scenario) == 2


def test_get_all_pages(tmp_path):
    async def scenario(session):
        for i in range(7):
            await create_user(session, name=f"User {i}", face_id=f"corr-{i}", rekognition_face_id=f"rek-{i}")
        first = await UserRepository.get_all(session, limit=5, skip=0)
        second = await UserRepository.get_all(session, limit=5, skip=5)
        return first, second, await UserRepository.count(session)

    first, second, total = run(tmp_path, scenario)
    assert len(first) == 5
    assert len(second) == 2
    assert total == 7
    assert not {u.id for u in first} & {u.id for u in second}


def test_update_refreshes_updated_at(tmp_path):
    async def scenario(session):
        user = await create_user(session)
        created_at = user.updated_at
        assert await UserRepository.update(session, user.id, name="Alice Smith")
        refreshed = await UserRepository.get_by_id(session, user.id)
        return refreshed, created_at

    refreshed, created_at = run(tmp_path, scenario)
    assert refreshed.name == "Alice Smith"
    assert as_utc(refreshed.updated_at) >= as_utc(created_at)


def test_update_rejects_unknown_fields(tmp_path):
    async def scenario(session):
        user = await create_user(session)
        await UserRepository.update(session, user.id, created_at=None)

    with pytest.raises(ValueError, match="created_at"):
        run(tmp_path, scenario)


def test_deletes(tmp_path):
    async def scenario(session):
        alice = await create_user(session)
        await create_user(session, name="Bob", face_id="corr-bob", rekognition_face_id="rek-bob")
        assert await UserRepository.delete_by_id(session, alice.id)
        assert not await UserRepository.delete_by_id(session, alice.id)
        assert await UserRepository.delete_by_rekognition_face_id(session, "rek-bob")
        return await UserRepository.count(session)

    assert run(tmp_path, scenario) == 0


def test_session_before_connect_fails():
    database = Database("sqlite+aiosqlite:///unused.db")

    with pytest.raises(RuntimeError, match="not initialized"):
        database.session()


def test_timestamps_serialize_as_utc(tmp_path):
    async def scenario(session):
        user = await create_user(session)
        return UserRepository.to_detail(await UserRepository.get_by_id(session, user.id))

    detail = run(tmp_path, scenario).model_dump(mode="json", by_alias=True)
    assert detail["createdAt"].endswith("Z")
    assert detail["updatedAt"].endswith("Z")
