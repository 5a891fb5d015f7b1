"""
Vote service: one vote per user per post, and the post's running score.

A vote row holds +1 or -1; no row means no vote. ``Post.score`` is the
sum of the post's vote values and is only ever moved by ``cast_vote``:

- first vote:      insert the row, score += value
- same value:      nothing changes (re-casting is a no-op, not a toggle)
- opposite value:  update the row, score += 2 * value, since the old
                   contribution is removed and the new one added

The lookup, the row write and the score update run in one atomic unit.
The post row is locked first (``SELECT ... FOR UPDATE``) so concurrent
casts on the same post serialize and the second one sees the first one's
committed vote. The score moves with a single ``score = score + delta``
UPDATE rather than a read-modify-write in Python.
"""
import logging

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from forum.errors import FieldValidationError, NotFound, Unauthorized
from forum.models import Post, User, Vote
from forum.repository import find_by_id, run_atomic

logger = logging.getLogger(__name__)

VOTE_VALUES = (-1, 1)


def score_delta(previous: int | None, desired: int) -> int:
    """Return how much ``Post.score`` moves when a vote goes from *previous* to *desired*."""
    if previous is None:
        return desired
    if previous == desired:
        return 0
    return 2 * desired


async def _lock_post(db: AsyncSession, post_id: int) -> Post | None:
    q = (
        select(Post)
        .where(Post.id == post_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return (await db.execute(q)).scalar_one_or_none()


async def _find_existing_vote(db: AsyncSession, user_id: int, post_id: int) -> Vote | None:
    q = (
        select(Vote)
        .where(Vote.user_id == user_id, Vote.post_id == post_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return (await db.execute(q)).scalar_one_or_none()


async def cast_vote(db: AsyncSession, user_id: int | None, post_id: int, value: int) -> dict:
    """
    Record *user_id*'s vote of *value* on *post_id* and return the result.

    Raises ``Unauthorized`` without a caller or when the caller's user is
    gone, ``FieldValidationError`` for a
    value other than -1/+1, ``NotFound`` when the post does not exist and
    ``StoreFailure`` when the atomic unit is aborted (nothing is applied).
    """
    if user_id is None:
        raise Unauthorized("Not authenticated")
    if value not in VOTE_VALUES:
        raise FieldValidationError([{"field": "value", "message": "Vote must be 1 or -1"}])

    async def unit(session: AsyncSession) -> dict:
        post = await _lock_post(session, post_id)
        if post is None:
            raise NotFound("Post not found")
        # A session can outlive its user.
        if await find_by_id(session, User, user_id) is None:
            raise Unauthorized("Not authenticated")

        vote = await _find_existing_vote(session, user_id, post_id)
        previous = vote.value if vote is not None else None
        delta = score_delta(previous, value)
        if delta == 0:
            return {"post_id": post_id, "score": post.score, "vote_status": value, "changed": False}

        await session.execute(
            update(Post)
            .where(Post.id == post_id)
            .values(score=Post.score + delta)
            .execution_options(synchronize_session=False)
        )
        if vote is None:
            session.add(Vote(user_id=user_id, post_id=post_id, value=value))
        else:
            vote.value = value
        await session.flush()

        # Reload so the session's Post reflects the counter update.
        await session.refresh(post)
        return {"post_id": post_id, "score": post.score, "vote_status": value, "changed": True}

    result = await run_atomic(db, unit)
    logger.info(
        "Vote user=%s post=%s value=%s changed=%s score=%s",
        user_id, post_id, value, result["changed"], result["score"],
    )
    return result
