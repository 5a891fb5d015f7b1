"""
Direct service-layer tests: exercises the data-access helpers, the
key-value store and the account/post services without HTTP overhead.
"""
import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from forum.config import settings
from forum.errors import Conflict, NotFound, StoreFailure, Unauthorized
from forum.kv import KeyValueStore, kv
from forum.loaders import RequestLoaders
from forum.models import Post, User, Vote
from forum.repository import find_by_id, find_many_by_ids, primary_key_of, run_atomic
from forum.schemas import PostCreate, PostUpdate, UsernamePasswordInput
from forum.services import post_service, user_service


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

async def _create_user(db: AsyncSession, username: str = "svcuser") -> User:
    user = User(username=username, email=f"{username}@example.com", password="hash")
    db.add(user)
    await db.flush()
    await db.refresh(user)
    return user


# ---------------------------------------------------------------------------
# repository
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_find_by_id(db_session: AsyncSession):
    user = await _create_user(db_session)
    assert (await find_by_id(db_session, User, user.id)).username == "svcuser"
    assert await find_by_id(db_session, User, 99999) is None


@pytest.mark.asyncio
async def test_find_many_by_ids_omits_missing(db_session: AsyncSession):
    a = await _create_user(db_session, "a_user")
    b = await _create_user(db_session, "b_user")
    found = await find_many_by_ids(db_session, User, [b.id, 99999, a.id])
    assert set(found) == {a.id, b.id}
    assert found[b.id].username == "b_user"


@pytest.mark.asyncio
async def test_find_many_by_ids_composite_key(db_session: AsyncSession):
    user = await _create_user(db_session)
    post = Post(title="Composite", creator_id=user.id)
    db_session.add(post)
    await db_session.flush()
    vote = Vote(user_id=user.id, post_id=post.id, value=1)
    db_session.add(vote)
    await db_session.flush()

    assert primary_key_of(vote) == (user.id, post.id)
    found = await find_many_by_ids(db_session, Vote, [(user.id, post.id), (user.id, 99999)])
    assert list(found) == [(user.id, post.id)]


@pytest.mark.asyncio
async def test_find_many_by_ids_empty(db_session: AsyncSession):
    assert await find_many_by_ids(db_session, User, []) == {}


@pytest.mark.asyncio
async def test_run_atomic_rolls_back_on_domain_error(db_session: AsyncSession):
    async def unit(session):
        session.add(User(username="ghost", email="ghost@example.com", password="hash"))
        await session.flush()
        raise NotFound("nope")

    with pytest.raises(NotFound):
        await run_atomic(db_session, unit)

    assert (await db_session.execute(select(User))).scalars().all() == []


@pytest.mark.asyncio
async def test_run_atomic_commits(db_session: AsyncSession, session_factory):
    async def unit(session):
        session.add(User(username="kept", email="kept@example.com", password="hash"))
        await session.flush()
        return "done"

    assert await run_atomic(db_session, unit) == "done"
    async with session_factory() as other:
        names = (await other.execute(select(User.username))).scalars().all()
    assert names == ["kept"]


# ---------------------------------------------------------------------------
# KeyValueStore
# ---------------------------------------------------------------------------

class _BrokenRedis:
    async def get(self, key):
        raise RedisConnectionError("down")

    async def set(self, key, value, ex=None):
        raise RedisConnectionError("down")

    async def delete(self, *keys):
        raise RedisConnectionError("down")


@pytest.mark.asyncio
async def test_kv_round_trip_with_ttl(fake_redis):
    await kv.set("k", {"user_id": 7}, ttl=30)
    assert await kv.get("k") == {"user_id": 7}
    assert fake_redis.ttls["k"] == 30
    await kv.delete("k")
    assert await kv.get("k") is None


@pytest.mark.asyncio
async def test_kv_unconnected_raises_store_failure():
    store = KeyValueStore()
    with pytest.raises(StoreFailure):
        await store.get("k")


@pytest.mark.asyncio
async def test_kv_redis_errors_raise_store_failure():
    store = KeyValueStore()
    store._redis = _BrokenRedis()
    with pytest.raises(StoreFailure):
        await store.get("k")
    with pytest.raises(StoreFailure):
        await store.set("k", 1)
    with pytest.raises(StoreFailure):
        await store.delete("k")


# ---------------------------------------------------------------------------
# user_service
# ---------------------------------------------------------------------------

def test_validate_register_accepts_valid_input():
    data = UsernamePasswordInput(username="valid", email="valid@example.com", password="long enough")
    assert user_service.validate_register(data) is None


@pytest.mark.asyncio
async def test_register_hashes_password(db_session: AsyncSession, fake_redis):
    result = await user_service.register(
        db_session, UsernamePasswordInput(username="hashed", email="hashed@example.com", password="plaintext"),
    )
    user = await find_by_id(db_session, User, result["id"])
    assert user.password != "plaintext"
    assert user.password.startswith("$argon2")


@pytest.mark.asyncio
async def test_register_duplicate_raises_conflict(db_session: AsyncSession, fake_redis):
    data = UsernamePasswordInput(username="twice", email="twice@example.com", password="secret")
    await user_service.register(db_session, data)
    with pytest.raises(Conflict):
        await user_service.register(db_session, data)


@pytest.mark.asyncio
async def test_change_password_keeps_token_when_commit_fails(
    db_session: AsyncSession, fake_redis, monkeypatch
):
    user = await _create_user(db_session, "resetme")
    await db_session.commit()
    user_id = user.id
    key = f"{settings.FORGET_PASSWORD_PREFIX}tok"
    await kv.set(key, user_id, ttl=60)

    async def failing_commit():
        raise SQLAlchemyError("commit failed")

    monkeypatch.setattr(db_session, "commit", failing_commit)
    with pytest.raises(StoreFailure):
        await user_service.change_password(db_session, "tok", "brand-new")

    assert key in fake_redis.store
    stored = (await db_session.execute(select(User.password).where(User.id == user_id))).scalar_one()
    assert stored == "hash"


# ---------------------------------------------------------------------------
# post_service
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_create_and_get_post_via_service(db_session: AsyncSession):
    user = await _create_user(db_session)
    loaders = RequestLoaders(db_session)
    try:
        created = await post_service.create_post(db_session, loaders, user.id, PostCreate(title="Service post"))
        detail = await post_service.get_post(db_session, loaders, None, created["id"])
    finally:
        loaders.close()
    assert detail["title"] == "Service post"
    assert detail["creator"]["username"] == "svcuser"
    assert detail["vote_status"] is None


@pytest.mark.asyncio
async def test_get_posts_invalid_sort_column_falls_back(db_session: AsyncSession):
    user = await _create_user(db_session)
    loaders = RequestLoaders(db_session)
    try:
        await post_service.create_post(db_session, loaders, user.id, PostCreate(title="Fallback"))
        result = await post_service.get_posts(db_session, loaders, sort_by="nonexistent_column")
    finally:
        loaders.close()
    assert result.total == 1


@pytest.mark.asyncio
async def test_update_post_checks_creator(db_session: AsyncSession):
    owner = await _create_user(db_session, "owner")
    other = await _create_user(db_session, "other")
    loaders = RequestLoaders(db_session)
    try:
        created = await post_service.create_post(db_session, loaders, owner.id, PostCreate(title="Mine"))
        with pytest.raises(Unauthorized):
            await post_service.update_post(db_session, loaders, other.id, created["id"], PostUpdate(title="Yours"))
        with pytest.raises(NotFound):
            await post_service.update_post(db_session, loaders, owner.id, 99999, PostUpdate(title="Ghost"))
    finally:
        loaders.close()
