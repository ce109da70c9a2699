"""Base classes for remote feed collaborators."""

from abc import ABC, abstractmethod
from typing import Any, List, Optional, Set

from ..models.feed import FeedPage
from ..models.notification import NotificationPage
from ..models.post import Comment, Post


class FeedSource(ABC):
    """Remote document store holding posts, likes and comments.

    Implementations raise the errors in ``feedsync.errors`` and nothing else.
    """

    @abstractmethod
    async def query_feed_page(
        self,
        author_ids: Optional[Set[str]],
        cursor: Optional[Any],
        limit: int,
    ) -> FeedPage:
        """Query one page of posts ordered by createdAt desc, id desc.

        Args:
            author_ids: Only return posts by these authors, or None for an
                unfiltered query
            cursor: Opaque cursor from a previous page, or None for the first page
            limit: Maximum number of posts to return

        Returns:
            FeedPage with the posts and the cursor after the last one

        Raises:
            TransientError: Network failure or timeout
            FatalError: Malformed response
        """
        pass

    @abstractmethod
    async def mutate_post_like(self, post_id: str, viewer_id: str, like: bool) -> None:
        """Atomically add or remove viewer_id from the like-set and adjust likeCount.

        Raises:
            NotFoundError: If the post no longer exists
            ConflictError: If the write raced a delete
            TransientError: Network failure or timeout
        """
        pass

    @abstractmethod
    async def create_post(self, post: Post) -> Post:
        """Persist a new post.

        Returns:
            The stored post with server-assigned id and createdAt
        """
        pass

    @abstractmethod
    async def delete_post(self, post_id: str) -> None:
        """Delete a post and its comments."""
        pass

    @abstractmethod
    async def add_comment(self, comment: Comment) -> Comment:
        """Persist a comment and increment the post's commentCount."""
        pass

    @abstractmethod
    async def delete_comment(self, post_id: str, comment_id: str) -> None:
        """Delete a comment and decrement the post's commentCount."""
        pass


class NotificationSource(ABC):
    """Remote store holding per-recipient notifications."""

    @abstractmethod
    async def query_notifications(
        self, recipient_id: str, cursor: Optional[Any], limit: int
    ) -> NotificationPage:
        """Query one page of notifications ordered newest first."""
        pass

    @abstractmethod
    async def mark_read(self, notification_ids: List[str]) -> None:
        """Mark the given notifications as read in one batch."""
        pass

    @abstractmethod
    async def mark_all_read(self, recipient_id: str) -> List[str]:
        """Mark every unread notification of the recipient as read.

        Returns:
            Ids of the notifications that were updated
        """
        pass

    @abstractmethod
    async def delete_notification(self, notification_id: str) -> None:
        """Delete one notification."""
        pass
