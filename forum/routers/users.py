from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession

from forum.config import settings
from forum.database import get_db
from forum.dependencies import get_current_user_id
from forum.schemas import (
    ChangePasswordInput,
    ForgotPasswordInput,
    LoginInput,
    UsernamePasswordInput,
    UserResponse,
)
from forum.services import user_service
from forum.sessions import create_session, destroy_session

router = APIRouter(prefix="/api/v1/users", tags=["users"])


async def _start_session(response: Response, user_id: int) -> None:
    session_id = await create_session(user_id)
    response.set_cookie(
        settings.COOKIE_NAME,
        session_id,
        max_age=settings.SESSION_TTL,
        httponly=True,
        secure=settings.COOKIE_SECURE,
        samesite="lax",
    )

@router.get("/me", response_model=UserResponse | None)
async def me(
    user_id: int | None = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    if user_id is None:
        return None
    return await user_service.get_user(db, user_id)

@router.post("/register", status_code=201, response_model=UserResponse)
async def register(data: UsernamePasswordInput, response: Response, db: AsyncSession = Depends(get_db)):
    user = await user_service.register(db, data)
    await _start_session(response, user["id"])
    return user

@router.post("/login", response_model=UserResponse)
async def login(data: LoginInput, response: Response, db: AsyncSession = Depends(get_db)):
    user = await user_service.login(db, data.username_or_email, data.password)
    await _start_session(response, user["id"])
    return user

@router.post("/logout")
async def logout(request: Request, response: Response):
    session_id = request.cookies.get(settings.COOKIE_NAME)
    if session_id:
        await destroy_session(session_id)
    response.delete_cookie(settings.COOKIE_NAME)
    return True

@router.post("/forgot-password")
async def forgot_password(data: ForgotPasswordInput, db: AsyncSession = Depends(get_db)):
    return await user_service.forgot_password(db, data.email)

@router.post("/change-password", response_model=UserResponse)
async def change_password(data: ChangePasswordInput, response: Response, db: AsyncSession = Depends(get_db)):
    user = await user_service.change_password(db, data.token, data.new_password)
    # Log in after a successful reset.
    await _start_session(response, user["id"])
    return user
