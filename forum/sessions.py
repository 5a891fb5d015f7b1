"""Cookie sessions stored in the key-value store."""
import secrets

from forum.config import settings
from forum.kv import kv


def _key(session_id: str) -> str:
    return f"{settings.SESSION_PREFIX}{session_id}"


async def create_session(user_id: int) -> str:
    session_id = secrets.token_urlsafe(32)
    await kv.set(_key(session_id), {"user_id": user_id}, ttl=settings.SESSION_TTL)
    return session_id


async def resolve_session(session_id: str) -> int | None:
    data = await kv.get(_key(session_id))
    if not data:
        return None
    return data.get("user_id")


async def destroy_session(session_id: str) -> None:
    await kv.delete(_key(session_id))
