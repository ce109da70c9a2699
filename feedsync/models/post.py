"""Canonical post and comment models."""

from datetime import datetime, timezone
from typing import Optional, Set, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class Post(BaseModel):
    """Feed post as observed by the viewer."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., min_length=1, description="Opaque post identifier, never reused")
    author_id: str = Field(..., alias="authorId", min_length=1, description="Author user id")
    author_display_name: str = Field("", alias="authorDisplayName")
    created_at: datetime = Field(..., alias="createdAt", description="Creation timestamp")
    post_type: str = Field("text", alias="type", description="text, image, video or link")
    content: Optional[str] = Field(None, description="Media URL or link")
    caption: str = ""
    like_count: int = Field(0, alias="likeCount", ge=0)
    comment_count: int = Field(0, alias="commentCount", ge=0)
    likes: Set[str] = Field(default_factory=set, description="User ids that liked the post")
    pending: bool = Field(False, description="Created locally, not yet confirmed remotely")

    @field_validator("created_at")
    @classmethod
    def created_at_must_be_aware(cls, v):
        """Treat naive timestamps as UTC."""
        return _ensure_utc(v)

    @property
    def sort_key(self) -> Tuple[datetime, str]:
        return (self.created_at, self.id)

    def is_liked_by(self, user_id: str) -> bool:
        return user_id in self.likes

    def with_like(self, user_id: str) -> "Post":
        """Return a copy liked by user_id. Likes and likeCount move together."""
        if user_id in self.likes:
            return self
        return self.model_copy(
            update={"likes": self.likes | {user_id}, "like_count": self.like_count + 1}
        )

    def without_like(self, user_id: str) -> "Post":
        """Return a copy not liked by user_id."""
        if user_id not in self.likes:
            return self
        return self.model_copy(
            update={
                "likes": self.likes - {user_id},
                "like_count": max(0, self.like_count - 1),
            }
        )

    def with_comment_delta(self, delta: int) -> "Post":
        """Return a copy with commentCount adjusted, clamped at zero."""
        return self.model_copy(update={"comment_count": max(0, self.comment_count + delta)})

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, mode="json", exclude={"pending"})

    def __str__(self) -> str:
        return f"[{self.id}] @{self.author_id} {self.created_at.isoformat()}: {self.caption[:50]}"


class Comment(BaseModel):
    """Comment on a post."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., min_length=1)
    post_id: str = Field(..., alias="postId", min_length=1)
    author_id: str = Field(..., alias="authorId", min_length=1)
    author_display_name: str = Field("", alias="authorDisplayName")
    text: str = ""
    created_at: datetime = Field(..., alias="createdAt")

    @field_validator("created_at")
    @classmethod
    def created_at_must_be_aware(cls, v):
        """Treat naive timestamps as UTC."""
        return _ensure_utc(v)

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")
