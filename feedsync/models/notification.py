"""Notification model."""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Notification(BaseModel):
    """Activity notification delivered to one recipient."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., min_length=1)
    recipient_id: str = Field(..., alias="recipientId", min_length=1)
    sender_id: Optional[str] = Field(None, alias="senderId")
    sender_name: str = Field("", alias="senderName")
    kind: str = Field("generic", alias="type", description="like, comment, follow, ...")
    post_id: Optional[str] = Field(None, alias="postId")
    message: str = ""
    created_at: datetime = Field(..., alias="createdAt")
    read: bool = False

    @field_validator("created_at")
    @classmethod
    def created_at_must_be_aware(cls, v):
        """Treat naive timestamps as UTC."""
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    def mark_read(self) -> "Notification":
        if self.read:
            return self
        return self.model_copy(update={"read": True})


@dataclass(frozen=True)
class NotificationPage:
    """Cursor-bounded window of notifications, newest first."""

    items: Tuple[Notification, ...] = ()
    cursor: Optional[Any] = None
    is_last_page: bool = False

    @property
    def count(self) -> int:
        return len(self.items)
