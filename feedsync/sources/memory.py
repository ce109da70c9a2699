"""In-process document store implementing the feed and notification sources."""

import asyncio
import itertools
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Set

from ..errors import NotFoundError
from ..models.feed import FeedPage
from ..models.notification import Notification, NotificationPage
from ..models.post import Comment, Post
from .base import FeedSource, NotificationSource

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _page_after(items: List[Any], cursor: Optional[Any], limit: int) -> tuple:
    """Slice a newest-first list after a (created_at, id) cursor.

    Returns:
        (page items, next cursor, whether nothing follows the page)
    """
    if cursor is not None:
        items = [item for item in items if (item.created_at, item.id) < tuple(cursor)]
    page = items[:limit]
    next_cursor = (page[-1].created_at, page[-1].id) if page else cursor
    return page, next_cursor, len(items) <= limit


class InMemoryFeedSource(FeedSource):
    """Feed source backed by dictionaries.

    Like toggles update the like-set and likeCount together, ids and
    timestamps are assigned on create, and deleting a post removes its comments.
    """

    def __init__(
        self,
        posts: Optional[Iterable[Post]] = None,
        latency: float = 0.0,
        report_last_page: bool = True,
        clock: Callable[[], datetime] = _utcnow,
        notifications: Optional["InMemoryNotificationSource"] = None,
    ):
        """Initialize in-memory feed source.

        Args:
            posts: Initial posts
            latency: Seconds each call sleeps before answering
            report_last_page: Set FeedPage.is_last_page when nothing follows;
                when False callers must rely on short pages
            clock: Source of server timestamps
            notifications: Store that receives like and comment notifications
                for post owners
        """
        self.posts: Dict[str, Post] = {}
        self.comments: Dict[str, Comment] = {}
        self.latency = latency
        self.report_last_page = report_last_page
        self.clock = clock
        self.notifications = notifications
        self.queries: List[dict] = []
        self._ids = itertools.count(1)
        for post in posts or []:
            self.posts[post.id] = post

    async def _io(self) -> None:
        await asyncio.sleep(self.latency)

    def _require(self, post_id: str) -> Post:
        post = self.posts.get(post_id)
        if post is None:
            raise NotFoundError(f"Post not found: {post_id}")
        return post

    def _notify(self, post: Post, sender_id: str, kind: str, message: str) -> None:
        """Tell the post owner about activity by someone else."""
        if self.notifications is None or sender_id == post.author_id:
            return
        self.notifications.add(
            Notification(
                id=f"notification-{next(self._ids)}",
                recipient_id=post.author_id,
                sender_id=sender_id,
                sender_name=sender_id,
                kind=kind,
                post_id=post.id,
                message=message,
                created_at=self.clock(),
            )
        )

    async def query_feed_page(
        self,
        author_ids: Optional[Set[str]],
        cursor: Optional[Any],
        limit: int,
    ) -> FeedPage:
        self.queries.append({"author_ids": author_ids, "cursor": cursor, "limit": limit})
        await self._io()
        matching = [
            post
            for post in self.posts.values()
            if author_ids is None or post.author_id in author_ids
        ]
        matching.sort(key=lambda p: p.sort_key, reverse=True)
        page, next_cursor, exhausted = _page_after(matching, cursor, limit)
        logger.debug(f"Served {len(page)} posts (cursor={cursor}, limit={limit})")
        return FeedPage(
            items=tuple(page),
            cursor=next_cursor,
            is_last_page=exhausted and self.report_last_page,
        )

    async def mutate_post_like(self, post_id: str, viewer_id: str, like: bool) -> None:
        await self._io()
        post = self._require(post_id)
        updated = post.with_like(viewer_id) if like else post.without_like(viewer_id)
        self.posts[post_id] = updated
        if like and updated is not post:
            self._notify(post, viewer_id, "like", f"{viewer_id} liked your post")

    async def create_post(self, post: Post) -> Post:
        await self._io()
        stored = post.model_copy(
            update={
                "id": f"post-{next(self._ids)}",
                "created_at": self.clock(),
                "pending": False,
                "like_count": 0,
                "comment_count": 0,
                "likes": set(),
            }
        )
        self.posts[stored.id] = stored
        return stored

    async def delete_post(self, post_id: str) -> None:
        await self._io()
        self._require(post_id)
        del self.posts[post_id]
        for comment_id in [c.id for c in self.comments.values() if c.post_id == post_id]:
            del self.comments[comment_id]

    async def add_comment(self, comment: Comment) -> Comment:
        await self._io()
        post = self._require(comment.post_id)
        stored = comment.model_copy(
            update={"id": f"comment-{next(self._ids)}", "created_at": self.clock()}
        )
        self.comments[stored.id] = stored
        self.posts[post.id] = post.with_comment_delta(1)
        message = f"{comment.author_id} commented: {comment.text[:50]}"
        self._notify(post, comment.author_id, "comment", message)
        return stored

    async def delete_comment(self, post_id: str, comment_id: str) -> None:
        await self._io()
        post = self._require(post_id)
        if self.comments.pop(comment_id, None) is None:
            raise NotFoundError(f"Comment not found: {comment_id}")
        self.posts[post_id] = post.with_comment_delta(-1)


class InMemoryNotificationSource(NotificationSource):
    """Notification source backed by a dictionary."""

    def __init__(self, notifications: Optional[Iterable[Notification]] = None):
        self.notifications: Dict[str, Notification] = {n.id: n for n in notifications or []}

    def add(self, notification: Notification) -> None:
        self.notifications[notification.id] = notification
        logger.debug(f"Stored {notification.kind} notification for {notification.recipient_id}")

    async def query_notifications(
        self, recipient_id: str, cursor: Optional[Any], limit: int
    ) -> NotificationPage:
        await asyncio.sleep(0)
        matching = sorted(
            (n for n in self.notifications.values() if n.recipient_id == recipient_id),
            key=lambda n: (n.created_at, n.id),
            reverse=True,
        )
        page, next_cursor, exhausted = _page_after(matching, cursor, limit)
        return NotificationPage(items=tuple(page), cursor=next_cursor, is_last_page=exhausted)

    async def mark_read(self, notification_ids: List[str]) -> None:
        await asyncio.sleep(0)
        for notification_id in notification_ids:
            notification = self.notifications.get(notification_id)
            if notification is not None:
                self.notifications[notification_id] = notification.mark_read()

    async def mark_all_read(self, recipient_id: str) -> List[str]:
        await asyncio.sleep(0)
        updated = [
            n.id
            for n in self.notifications.values()
            if n.recipient_id == recipient_id and not n.read
        ]
        await self.mark_read(updated)
        return updated

    async def delete_notification(self, notification_id: str) -> None:
        await asyncio.sleep(0)
        if self.notifications.pop(notification_id, None) is None:
            raise NotFoundError(f"Notification not found: {notification_id}")
