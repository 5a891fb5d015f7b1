from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


# --- User ---

class UsernamePasswordInput(BaseModel):
    username: str = Field(max_length=100)
    email: str = Field(max_length=255)
    password: str


class LoginInput(BaseModel):
    username_or_email: str = Field(alias="usernameOrEmail")
    password: str
    model_config = ConfigDict(populate_by_name=True)


class ForgotPasswordInput(BaseModel):
    email: str


class ChangePasswordInput(BaseModel):
    token: str
    new_password: str = Field(alias="newPassword")
    model_config = ConfigDict(populate_by_name=True)


class UserResponse(BaseModel):
    id: int
    username: str
    email: str
    created_at: datetime
    updated_at: datetime
    model_config = ConfigDict(from_attributes=True)


# --- Post ---

class PostCreate(BaseModel):
    title: str = Field(min_length=1, max_length=300)


class PostUpdate(BaseModel):
    title: str = Field(min_length=1, max_length=300)


class PostResponse(BaseModel):
    id: int
    title: str
    score: int
    creator_id: int
    creator: UserResponse | None = None
    # The viewer's own vote on the post, null when anonymous or not voted.
    vote_status: int | None = None
    created_at: datetime
    updated_at: datetime
    model_config = ConfigDict(from_attributes=True)


# --- Vote ---

class VoteCreate(BaseModel):
    value: Literal[-1, 1]


class VoteResult(BaseModel):
    post_id: int
    score: int
    vote_status: int
    changed: bool


# --- Pagination ---

class PaginatedResponse(BaseModel):
    items: list[PostResponse]
    total: int
    page: int
    page_size: int
    pages: int
