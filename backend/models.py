# backend/models.py
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from sqlmodel import Field, SQLModel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# --- Tables ---
class User(SQLModel, table=True):
    __tablename__ = "users"  # type: ignore[assignment]

    id: Optional[int] = Field(default=None, primary_key=True)
    username: str = Field(unique=True, index=True, max_length=64)
    email: str = Field(unique=True, index=True, max_length=320)
    full_name: str = Field(index=True, max_length=256)
    password: str = Field(max_length=128)  # bcrypt hash
    avatar: str = Field(max_length=512)
    cover_image: str = Field(default="", max_length=512)
    refresh_token: Optional[str] = Field(default=None, max_length=2048)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow, sa_column_kwargs={"onupdate": utcnow})


class Subscription(SQLModel, table=True):
    __tablename__ = "subscriptions"  # type: ignore[assignment]

    id: Optional[int] = Field(default=None, primary_key=True)
    subscriber_id: int = Field(foreign_key="users.id", index=True)
    channel_id: int = Field(foreign_key="users.id", index=True)
    created_at: datetime = Field(default_factory=utcnow)


class Video(SQLModel, table=True):
    __tablename__ = "videos"  # type: ignore[assignment]

    id: Optional[int] = Field(default=None, primary_key=True)
    title: str = Field(max_length=256)
    description: str = Field(default="")
    thumbnail: str = Field(max_length=512)
    video_file: str = Field(max_length=512)
    duration: float = Field(default=0)
    views: int = Field(default=0)
    is_published: bool = Field(default=True)
    owner_id: int = Field(foreign_key="users.id", index=True)
    created_at: datetime = Field(default_factory=utcnow)


class WatchHistoryEntry(SQLModel, table=True):
    """One slot of a user's ordered watch history."""
    __tablename__ = "watch_history"  # type: ignore[assignment]

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="users.id", index=True)
    video_id: int = Field(foreign_key="videos.id", ondelete="CASCADE")
    position: int = Field(default=0)


# --- API projections (camelCase on the wire) ---
class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class UserPublic(CamelModel):
    """A user with the password and refresh token stripped."""
    id: int
    username: str
    email: str
    full_name: str
    avatar: str
    cover_image: str = ""
    created_at: datetime
    updated_at: datetime


class OwnerSummary(CamelModel):
    full_name: str
    username: str
    avatar: str


class ChannelProfile(CamelModel):
    id: int
    full_name: str
    username: str
    subscribers_count: int
    channels_subscribed_to_count: int
    is_subscribed: bool
    avatar: str
    cover_image: str
    email: str


class WatchHistoryItem(CamelModel):
    id: int
    title: str
    description: str
    thumbnail: str
    video_file: str
    duration: float
    views: int
    is_published: bool
    created_at: datetime
    owner: Optional[OwnerSummary] = None


class TokenPair(CamelModel):
    access_token: str
    refresh_token: str


class LoginResult(TokenPair):
    user: UserPublic
