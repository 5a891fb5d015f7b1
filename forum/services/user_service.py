"""
User service: registration, login and password reset for the User aggregate.

Input problems are reported per field (``FieldValidationError``) so a
form can show each message next to its input.  Username and email
uniqueness is enforced by the database; an ``IntegrityError`` on insert
becomes ``Conflict``.

Sessions themselves live in ``forum.sessions``; the router turns a
returned user into a session cookie.
"""
import logging
import uuid

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from forum.config import settings
from forum.errors import Conflict, FieldValidationError
from forum.kv import kv
from forum.mailer import send_email
from forum.models import User
from forum.repository import find_by_id, run_atomic
from forum.schemas import UsernamePasswordInput
from forum.security import hash_password, verify_password

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 4
MIN_USERNAME_LENGTH = 3


# ---------------------------------------------------------------------------
# Serialisation helpers
# ---------------------------------------------------------------------------

def user_to_dict(user: User) -> dict:
    """Serialise a User ORM instance; the password hash is never included."""
    return {
        "id": user.id,
        "username": user.username,
        "email": user.email,
        "created_at": user.created_at.isoformat() if user.created_at else None,
        "updated_at": user.updated_at.isoformat() if user.updated_at else None,
    }


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

def _password_error(field: str, password: str) -> dict | None:
    if len(password) < MIN_PASSWORD_LENGTH:
        return {"field": field, "message": f"Length must be at least {MIN_PASSWORD_LENGTH}"}
    return None


def validate_register(data: UsernamePasswordInput) -> list[dict] | None:
    """Return every field error in *data*, or None when it is acceptable."""
    errors = []
    if "@" not in data.email:
        errors.append({"field": "email", "message": "Invalid email"})
    if len(data.username) < MIN_USERNAME_LENGTH:
        errors.append({"field": "username", "message": f"Length must be at least {MIN_USERNAME_LENGTH}"})
    elif "@" in data.username:
        errors.append({"field": "username", "message": "Username cannot contain '@'"})
    password_error = _password_error("password", data.password)
    if password_error:
        errors.append(password_error)
    return errors or None


# ---------------------------------------------------------------------------
# Public service functions
# ---------------------------------------------------------------------------

async def get_user(db: AsyncSession, user_id: int) -> dict | None:
    user = await find_by_id(db, User, user_id)
    return user_to_dict(user) if user is not None else None


async def register(db: AsyncSession, data: UsernamePasswordInput) -> dict:
    errors = validate_register(data)
    if errors:
        raise FieldValidationError(errors)

    user = User(
        username=data.username,
        email=data.email,
        password=hash_password(data.password),
    )
    db.add(user)
    try:
        await db.flush()
    except IntegrityError:
        await db.rollback()
        raise Conflict("A user with this username or email already exists")
    await db.refresh(user)
    logger.info("Registered user id=%s username=%s", user.id, user.username)
    return user_to_dict(user)


async def login(db: AsyncSession, username_or_email: str, password: str) -> dict:
    """
    Return the user matching *username_or_email* and *password*.

    An identifier containing "@" is looked up as an email, anything else
    as a username.
    """
    column = User.email if "@" in username_or_email else User.username
    result = await db.execute(select(User).where(column == username_or_email))
    user = result.scalar_one_or_none()
    if user is None:
        raise FieldValidationError([{"field": "usernameOrEmail", "message": "User does not exist"}])
    if not verify_password(password, user.password):
        logger.info("Failed login for user id=%s", user.id)
        raise FieldValidationError([{"field": "password", "message": "Incorrect password"}])
    return user_to_dict(user)


async def forgot_password(db: AsyncSession, email: str) -> bool:
    """
    Store a one-time reset token and mail the link to *email*.

    Always returns True, also for an unknown email, so the endpoint
    does not reveal which addresses are registered.
    """
    result = await db.execute(select(User).where(User.email == email))
    user = result.scalar_one_or_none()
    if user is None:
        return True

    token = str(uuid.uuid4())
    await kv.set(
        f"{settings.FORGET_PASSWORD_PREFIX}{token}",
        user.id,
        ttl=settings.FORGET_PASSWORD_TTL,
    )
    send_email(
        email,
        f'<a href="{settings.FRONTEND_URL}/change-password/{token}">Reset password</a>',
    )
    return True


async def change_password(db: AsyncSession, token: str, new_password: str) -> dict:
    """Set a new password using a reset *token*; the token is consumed."""
    password_error = _password_error("newPassword", new_password)
    if password_error:
        raise FieldValidationError([password_error])

    key = f"{settings.FORGET_PASSWORD_PREFIX}{token}"
    user_id = await kv.get(key)
    if user_id is None:
        raise FieldValidationError([{"field": "token", "message": "Token expired"}])

    user = await find_by_id(db, User, int(user_id))
    if user is None:
        raise FieldValidationError([{"field": "token", "message": "User no longer exists"}])

    async def unit(session: AsyncSession) -> None:
        user.password = hash_password(new_password)
        await session.flush()
        await session.refresh(user)

    # The token is consumed only once the new hash is committed.
    await run_atomic(db, unit)
    await kv.delete(key)
    logger.info("Password changed for user id=%s", user.id)
    return user_to_dict(user)
