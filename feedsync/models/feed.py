"""Feed page, reconciled state and cache snapshot models."""

from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Any, List, Optional, Set, Tuple

from pydantic import BaseModel, ConfigDict, Field

from .post import Post


@dataclass(frozen=True)
class FeedPage:
    """Cursor-bounded window returned by a feed source.

    Items are ordered by createdAt descending, ties broken by id descending.
    """

    items: Tuple[Post, ...] = ()
    cursor: Optional[Any] = None
    is_last_page: bool = False

    @property
    def count(self) -> int:
        return len(self.items)


@dataclass(frozen=True)
class ReconciledFeedState:
    """The only feed state exposed downstream.

    ``offline`` distinguishes "offline, showing cached data" from
    "online, load failed" for the presentation layer.
    """

    items: Tuple[Post, ...] = ()
    cursor: Optional[Any] = None
    has_more: bool = True
    offline: bool = False

    @property
    def post_ids(self) -> List[str]:
        return [post.id for post in self.items]

    def get(self, post_id: str) -> Optional[Post]:
        for post in self.items:
            if post.id == post_id:
                return post
        return None

    def replace(self, **changes) -> "ReconciledFeedState":
        return replace(self, **changes)

    def __len__(self) -> int:
        return len(self.items)


class CachedSnapshot(BaseModel):
    """Serialized first page of the feed plus the time it was written."""

    model_config = ConfigDict(populate_by_name=True)

    posts: List[Post] = Field(default_factory=list)
    cached_at: datetime = Field(..., alias="cachedAt")

    def is_fresh(self, now: datetime, ttl: timedelta) -> bool:
        return now - self.cached_at < ttl

    def to_bytes(self) -> bytes:
        return self.model_dump_json(by_alias=True).encode("utf-8")

    @classmethod
    def from_bytes(cls, data: bytes) -> "CachedSnapshot":
        return cls.model_validate_json(data)


@dataclass
class FeedQuery:
    """Author filter resolved for one viewer."""

    viewer_id: str
    author_ids: Set[str] = field(default_factory=set)

    @classmethod
    def for_viewer(
        cls, viewer_id: str, followed_ids: Set[str], blocked_ids: Set[str]
    ) -> "FeedQuery":
        """Followed users plus the viewer, minus blocked users.

        The viewer's own posts are always included.
        """
        author_ids = {uid for uid in followed_ids if uid and uid not in blocked_ids}
        author_ids.add(viewer_id)
        return cls(viewer_id=viewer_id, author_ids=author_ids)
