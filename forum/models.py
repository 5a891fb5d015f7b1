from __future__ import annotations

from datetime import datetime
from typing import List

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    SmallInteger,
    String,
    Text,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from forum.database import Base

# Relationships are lazy="raise": every traversal must go through a request
# loader or an explicit bulk query, never a hidden per-object fetch.


# ---------------------------------------------------------------------------
# User
# ---------------------------------------------------------------------------
class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    password: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    posts: Mapped[List["Post"]] = relationship(
        "Post", back_populates="creator", lazy="raise", passive_deletes=True
    )
    votes: Mapped[List["Vote"]] = relationship(
        "Vote", back_populates="user", lazy="raise", passive_deletes=True
    )


# ---------------------------------------------------------------------------
# Post
# ---------------------------------------------------------------------------
class Post(Base):
    __tablename__ = "posts"

    __table_args__ = (
        # Front page ordering and "top" ordering
        Index("ix_posts_created_at", "created_at"),
        Index("ix_posts_score", "score"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(300), nullable=False)
    # Sum of all vote values; written only by the vote service.
    score: Mapped[int] = mapped_column(Integer, default=0, server_default="0", nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    creator_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )

    creator: Mapped["User"] = relationship("User", back_populates="posts", lazy="raise")
    votes: Mapped[List["Vote"]] = relationship(
        "Vote", back_populates="post", lazy="raise", passive_deletes=True
    )


# ---------------------------------------------------------------------------
# Vote
# ---------------------------------------------------------------------------
class Vote(Base):
    __tablename__ = "votes"

    __table_args__ = (
        CheckConstraint("value IN (-1, 1)", name="ck_votes_value"),
    )

    # The (user_id, post_id) pair is the identity: one vote per user per post.
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    post_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("posts.id", ondelete="CASCADE"), primary_key=True, index=True
    )
    value: Mapped[int] = mapped_column(SmallInteger, nullable=False)

    user: Mapped["User"] = relationship("User", back_populates="votes", lazy="raise")
    post: Mapped["Post"] = relationship("Post", back_populates="votes", lazy="raise")
