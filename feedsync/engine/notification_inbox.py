"""Notifications inbox kept as one ordered, deduplicated sequence."""

import logging
from typing import Any, Callable, Iterable, List, Optional, Tuple

from ..config import FeedConfig
from ..errors import FeedError, NotFoundError
from ..models.notification import Notification
from ..sources.base import NotificationSource
from ..utils.retry import call_remote
from . import reconcile

logger = logging.getLogger(__name__)


class NotificationInbox:
    """Paginated notifications for one recipient.

    Items are ordered newest first (createdAt desc, id desc) and never
    repeat an id. The unread count is derived from the items. Writes go to
    the source first and are applied locally only after they succeed.
    """

    def __init__(
        self,
        source: NotificationSource,
        recipient_id: str,
        config: Optional[FeedConfig] = None,
    ):
        if not recipient_id:
            raise ValueError("recipient_id is required")
        self.source = source
        self.recipient_id = recipient_id
        self.config = config or FeedConfig()

        self._items: List[Notification] = []
        self._cursor: Optional[Any] = None
        self._has_more = True
        self._loading = False
        self._listeners: List[Callable[["NotificationInbox"], None]] = []

    @property
    def items(self) -> Tuple[Notification, ...]:
        return tuple(self._items)

    @property
    def unread_count(self) -> int:
        return sum(1 for n in self._items if not n.read)

    @property
    def has_more(self) -> bool:
        return self._has_more

    @property
    def loading(self) -> bool:
        return self._loading

    def add_listener(self, listener: Callable[["NotificationInbox"], None]) -> Callable[[], None]:
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    def _changed(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception as e:
                logger.error(f"Notification listener failed: {e}", exc_info=True)

    async def load(self) -> bool:
        """Load the first page, replacing current items.

        Returns:
            True if the page was loaded, False if skipped or failed
        """
        return await self._fetch(reset=True)

    async def load_more(self) -> bool:
        """Append the next page. Ignored while a load is in flight or when exhausted."""
        if not self._has_more:
            return False
        return await self._fetch(reset=False)

    async def _fetch(self, reset: bool) -> bool:
        if self._loading:
            return False
        self._loading = True
        limit = self.config.notifications_page_size
        cursor = None if reset else self._cursor
        try:
            page = await call_remote(
                lambda: self.source.query_notifications(self.recipient_id, cursor, limit),
                self.config,
                "query_notifications",
            )
        except FeedError as e:
            logger.warning(f"Error fetching notifications for {self.recipient_id}: {e}")
            return False
        except Exception as e:
            logger.error(
                f"Unexpected error fetching notifications for {self.recipient_id}: {e}",
                exc_info=True,
            )
            return False
        finally:
            self._loading = False

        existing = [] if reset else self._items
        self._items = reconcile.merge_page(existing, page.items)
        self._cursor = page.cursor
        self._has_more = reconcile.page_has_more(page.count, limit, page.is_last_page)
        logger.debug(
            f"Loaded {page.count} notifications for {self.recipient_id} "
            f"({self.unread_count} unread)"
        )
        self._changed()
        return True

    def add(self, notification: Notification) -> bool:
        """Insert a pushed notification. Returns False for a known id or another recipient."""
        if notification.recipient_id != self.recipient_id:
            logger.warning(
                f"Ignoring notification {notification.id} for {notification.recipient_id}"
            )
            return False
        if any(n.id == notification.id for n in self._items):
            return False
        self._items = reconcile.merge_page(self._items, [notification])
        self._changed()
        return True

    async def mark_read(self, notification_ids: Iterable[str]) -> bool:
        """Mark the given notifications as read. Already-read ids are skipped."""
        wanted = set(notification_ids)
        unread = [n.id for n in self._items if n.id in wanted and not n.read]
        if not unread:
            return True
        try:
            await call_remote(
                lambda: self.source.mark_read(unread), self.config, "mark_read"
            )
        except FeedError as e:
            logger.warning(f"Error marking notifications as read: {e}")
            return False
        except Exception as e:
            logger.error(f"Unexpected error marking notifications as read: {e}", exc_info=True)
            return False
        self._apply_read(set(unread))
        return True

    async def mark_all_read(self) -> bool:
        """Mark every notification of the recipient as read."""
        try:
            updated = await call_remote(
                lambda: self.source.mark_all_read(self.recipient_id),
                self.config,
                "mark_all_read",
            )
        except FeedError as e:
            logger.warning(f"Error marking all notifications as read: {e}")
            return False
        except Exception as e:
            logger.error(
                f"Unexpected error marking all notifications as read: {e}", exc_info=True
            )
            return False
        # Items loaded locally are all read now, whatever the source reports.
        self._apply_read({n.id for n in self._items} | set(updated or []))
        return True

    async def delete(self, notification_id: str) -> bool:
        try:
            await call_remote(
                lambda: self.source.delete_notification(notification_id),
                self.config,
                "delete_notification",
            )
        except NotFoundError:
            logger.info(f"Notification {notification_id} was already deleted")
        except FeedError as e:
            logger.warning(f"Error deleting notification {notification_id}: {e}")
            return False
        except Exception as e:
            logger.error(
                f"Unexpected error deleting notification {notification_id}: {e}", exc_info=True
            )
            return False
        before = len(self._items)
        self._items = [n for n in self._items if n.id != notification_id]
        if len(self._items) != before:
            self._changed()
        return True

    def _apply_read(self, ids: set) -> None:
        self._items = [n.mark_read() if n.id in ids else n for n in self._items]
        self._changed()
