from fastapi import Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from forum.config import settings
from forum.database import get_db
from forum.errors import Unauthorized
from forum.loaders import RequestLoaders
from forum.sessions import resolve_session


class PaginationParams:
    """
    Reusable FastAPI dependency that parses and validates pagination /
    sorting query parameters.

    Attributes
    ----------
    page:
        1-based page number (minimum 1).
    page_size:
        Number of items per page, clamped to ``settings.MAX_PAGE_SIZE``
        regardless of the value supplied by the caller.
    sort_by:
        Column name to sort by.  The post service falls back to
        ``created_at`` for anything it does not recognise.
    sort_order:
        ``"asc"`` or ``"desc"`` (enforced by the regex pattern).
    """

    def __init__(
        self,
        page: int = Query(1, ge=1, description="Page number (1-based)."),
        page_size: int = Query(
            settings.DEFAULT_PAGE_SIZE,
            ge=1,
            le=100,
            description="Number of items returned per page (max 100).",
        ),
        sort_by: str = Query("created_at", description="created_at, score or title."),
        sort_order: str = Query(
            "desc",
            pattern="^(asc|desc)$",
            description="Sort direction: 'asc' or 'desc'.",
        ),
    ) -> None:
        self.page = page
        self.page_size = min(page_size, settings.MAX_PAGE_SIZE)
        self.sort_by = sort_by
        self.sort_order = sort_order


async def get_loaders(db: AsyncSession = Depends(get_db)):
    """
    Yield a fresh ``RequestLoaders`` bound to this request's session.

    Anything still pending when the request finishes is cancelled, so no
    future outlives the request and no batch window spans two requests.
    """
    loaders = RequestLoaders(db)
    try:
        yield loaders
    finally:
        loaders.close()


async def get_current_user_id(request: Request) -> int | None:
    """Return the id of the logged-in user, or None for anonymous requests."""
    session_id = request.cookies.get(settings.COOKIE_NAME)
    if not session_id:
        return None
    return await resolve_session(session_id)


async def require_user_id(user_id: int | None = Depends(get_current_user_id)) -> int:
    if user_id is None:
        raise Unauthorized("Not authenticated")
    return user_id
