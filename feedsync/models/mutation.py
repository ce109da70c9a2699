"""Pending optimistic mutation model."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .post import Comment, Post


class MutationKind(str, Enum):
    """Kinds of optimistic change applied ahead of remote confirmation."""

    LIKE = "like"
    UNLIKE = "unlike"
    COMMENT_COUNT_DELTA = "comment_count_delta"
    NEW_POST = "new_post"
    DELETE = "delete"


@dataclass(frozen=True)
class PendingMutation:
    """A queued optimistic change.

    ``seq`` is a monotonic local sequence number; mutations for the same
    post are applied in seq order.
    """

    seq: int
    post_id: str
    kind: MutationKind
    viewer_id: Optional[str] = None
    delta: int = 0
    post: Optional[Post] = None
    comment: Optional[Comment] = None

    def __str__(self) -> str:
        return f"#{self.seq} {self.kind.value} {self.post_id}"
