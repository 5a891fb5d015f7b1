from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from forum.database import get_db
from forum.dependencies import PaginationParams, get_current_user_id, get_loaders, require_user_id
from forum.loaders import RequestLoaders
from forum.schemas import PaginatedResponse, PostCreate, PostResponse, PostUpdate, VoteCreate, VoteResult
from forum.services import post_service, vote_service

router = APIRouter(prefix="/api/v1/posts", tags=["posts"])

@router.get("", response_model=PaginatedResponse)
async def list_posts(
    pagination: PaginationParams = Depends(),
    viewer_id: int | None = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    loaders: RequestLoaders = Depends(get_loaders),
):
    return await post_service.get_posts(
        db, loaders, viewer_id,
        pagination.page, pagination.page_size, pagination.sort_by, pagination.sort_order,
    )

@router.get("/{post_id}", response_model=PostResponse)
async def get_post(
    post_id: int,
    viewer_id: int | None = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    loaders: RequestLoaders = Depends(get_loaders),
):
    return await post_service.get_post(db, loaders, viewer_id, post_id)

@router.post("", status_code=201, response_model=PostResponse)
async def create_post(
    data: PostCreate,
    user_id: int = Depends(require_user_id),
    db: AsyncSession = Depends(get_db),
    loaders: RequestLoaders = Depends(get_loaders),
):
    return await post_service.create_post(db, loaders, user_id, data)

@router.put("/{post_id}", response_model=PostResponse)
async def update_post(
    post_id: int,
    data: PostUpdate,
    user_id: int = Depends(require_user_id),
    db: AsyncSession = Depends(get_db),
    loaders: RequestLoaders = Depends(get_loaders),
):
    return await post_service.update_post(db, loaders, user_id, post_id, data)

@router.post("/{post_id}/vote", response_model=VoteResult)
async def vote(
    post_id: int,
    data: VoteCreate,
    user_id: int | None = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    return await vote_service.cast_vote(db, user_id, post_id, data.value)
