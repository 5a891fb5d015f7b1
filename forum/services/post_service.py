"""
Post service: business logic for the Post aggregate.

Design notes
------------
- Relations are never traversed through the ORM (they are declared
  ``lazy="raise"``).  A post's creator and the viewer's vote status come
  from the request's ``RequestLoaders``, so a page of N posts costs one
  users SELECT and one votes SELECT no matter how large N is.
- ``score`` is read-only here; only ``vote_service`` writes it.
- Service functions flush but do not commit; the transaction boundary
  is owned by the ``get_db`` dependency in the router layer.
"""
import math

from sqlalchemy import asc, desc, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from forum.errors import NotFound, Unauthorized
from forum.loaders import RequestLoaders
from forum.models import Post
from forum.repository import find_by_id
from forum.schemas import PaginatedResponse, PostCreate, PostUpdate
from forum.services.user_service import user_to_dict

# Columns that are safe to sort by; guards against arbitrary attribute access.
_SORTABLE_COLUMNS: frozenset[str] = frozenset({"created_at", "score", "title"})


def _resolve_sort_column(sort_by: str):
    """
    Return the SQLAlchemy column expression for *sort_by*.

    Falls back to ``Post.created_at`` for any unrecognised column name.
    """
    if sort_by in _SORTABLE_COLUMNS:
        return getattr(Post, sort_by)
    return Post.created_at


def _post_to_dict(post: Post, creator=None, vote=None) -> dict:
    return {
        "id": post.id,
        "title": post.title,
        "score": post.score,
        "creator_id": post.creator_id,
        "creator": user_to_dict(creator) if creator is not None else None,
        "vote_status": vote.value if vote is not None else None,
        "created_at": post.created_at.isoformat() if post.created_at else None,
        "updated_at": post.updated_at.isoformat() if post.updated_at else None,
    }


async def _resolve_posts(loaders: RequestLoaders, posts, viewer_id: int | None) -> list[dict]:
    """Serialise *posts* with their creators and the viewer's votes, batched."""
    creators_f = loaders.users.load_many([p.creator_id for p in posts])
    if viewer_id is not None:
        votes_f = loaders.votes.load_many([(viewer_id, p.id) for p in posts])
    else:
        votes_f = None

    creators = await creators_f
    votes = await votes_f if votes_f is not None else [None] * len(posts)
    return [_post_to_dict(p, c, v) for p, c, v in zip(posts, creators, votes)]


# ---------------------------------------------------------------------------
# Public service functions
# ---------------------------------------------------------------------------

async def get_posts(
    db: AsyncSession,
    loaders: RequestLoaders,
    viewer_id: int | None = None,
    page: int = 1,
    page_size: int = 20,
    sort_by: str = "created_at",
    sort_order: str = "desc",
) -> PaginatedResponse:
    """
    Return a page of posts.

    Four SQL statements at most, independent of *page_size*: COUNT, the
    page SELECT, then one batched users fetch and one batched votes fetch
    (the latter only for a logged-in viewer).
    """
    total: int = (await db.execute(select(func.count()).select_from(Post))).scalar_one()

    sort_col = _resolve_sort_column(sort_by)
    order_expr = desc(sort_col) if sort_order == "desc" else asc(sort_col)
    q = (
        select(Post)
        .order_by(order_expr, desc(Post.id))
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    posts = (await db.execute(q)).scalars().all()

    return PaginatedResponse(
        items=await _resolve_posts(loaders, posts, viewer_id),
        total=total,
        page=page,
        page_size=page_size,
        pages=math.ceil(total / page_size) if total > 0 else 0,
    )


async def get_post(
    db: AsyncSession, loaders: RequestLoaders, viewer_id: int | None, post_id: int
) -> dict:
    post = await find_by_id(db, Post, post_id)
    if post is None:
        raise NotFound("Post not found")
    [data] = await _resolve_posts(loaders, [post], viewer_id)
    return data


async def create_post(db: AsyncSession, loaders: RequestLoaders, creator_id: int, data: PostCreate) -> dict:
    post = Post(title=data.title, creator_id=creator_id)
    db.add(post)
    await db.flush()
    await db.refresh(post)
    [result] = await _resolve_posts(loaders, [post], creator_id)
    return result


async def update_post(
    db: AsyncSession, loaders: RequestLoaders, user_id: int, post_id: int, data: PostUpdate
) -> dict:
    """Change the title of *post_id*; only its creator may do so."""
    post = await find_by_id(db, Post, post_id)
    if post is None:
        raise NotFound("Post not found")
    if post.creator_id != user_id:
        raise Unauthorized("Not the creator of this post")

    post.title = data.title
    await db.flush()
    await db.refresh(post)
    [result] = await _resolve_posts(loaders, [post], user_id)
    return result
