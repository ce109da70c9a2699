"""JSON-over-HTTP adapters for the feed and notification sources."""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, List, Optional, Set

import requests
from dateutil import parser
from pydantic import ValidationError

from ..errors import ConflictError, FatalError, NotFoundError, TransientError
from ..models.feed import FeedPage
from ..models.notification import Notification, NotificationPage
from ..models.post import Comment, Post
from .base import FeedSource, NotificationSource

logger = logging.getLogger(__name__)

TIMESTAMP_FIELDS = ("createdAt", "timestamp")


def parse_timestamp(value: Any) -> datetime:
    """Parse a wire timestamp.

    Accepts ISO-8601 strings, loosely formatted date strings and epoch
    milliseconds.

    Raises:
        FatalError: If the value cannot be interpreted as a timestamp
    """
    if isinstance(value, datetime):
        return value
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    if isinstance(value, str):
        try:
            return parser.isoparse(value)
        except (ValueError, TypeError):
            try:
                return parser.parse(value)
            except (ValueError, OverflowError) as e:
                raise FatalError(f"Invalid timestamp: {value!r}") from e
    raise FatalError(f"Invalid timestamp: {value!r}")


def _normalize_document(data: dict) -> dict:
    if not isinstance(data, dict):
        raise FatalError(f"Expected a JSON object, got {type(data).__name__}")
    doc = dict(data)
    for key in TIMESTAMP_FIELDS:
        if key in doc and doc[key] is not None:
            doc["createdAt"] = parse_timestamp(doc.pop(key))
            break
    return doc


class HttpDocumentClient:
    """Thin requests wrapper that maps failures onto the feed error taxonomy."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 5.0,
        headers: Optional[dict] = None,
        session: Optional[requests.Session] = None,
    ):
        """Initialize HTTP client.

        Args:
            base_url: API base URL, without trailing slash
            timeout: Per-request timeout in seconds
            headers: Extra headers (e.g. Authorization)
            session: Optional session for testing
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        if headers:
            self.session.headers.update(headers)

    def request(self, method: str, path: str, **kwargs) -> Any:
        """Send a request and decode the JSON body.

        Returns:
            Decoded JSON, or None for empty bodies

        Raises:
            TransientError: Connection errors, timeouts, 429 and 5xx
            NotFoundError: 404
            ConflictError: 409
            FatalError: Other 4xx or undecodable body
        """
        url = f"{self.base_url}{path}"
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except (requests.exceptions.ConnectionError, requests.exceptions.Timeout) as e:
            logger.warning(f"{method} {path} failed: {e}")
            raise TransientError(f"{method} {path} failed: {e}") from e
        except requests.exceptions.RequestException as e:
            logger.error(f"{method} {path} failed: {e}")
            raise FatalError(f"{method} {path} failed: {e}") from e

        status = response.status_code
        if status == 404:
            raise NotFoundError(f"{method} {path}: not found")
        if status == 409:
            raise ConflictError(f"{method} {path}: conflict")
        if status == 429 or status >= 500:
            raise TransientError(f"{method} {path}: HTTP {status}")
        if status >= 400:
            raise FatalError(f"{method} {path}: HTTP {status}")

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise FatalError(f"{method} {path}: invalid JSON body") from e


class HttpFeedSource(FeedSource):
    """Feed source talking to a JSON document API."""

    def __init__(self, client: HttpDocumentClient):
        self.client = client

    def _parse_post(self, data: Any) -> Post:
        try:
            return Post.model_validate(_normalize_document(data))
        except ValidationError as e:
            raise FatalError(f"Malformed post document: {e}") from e

    def _get_feed_page(
        self, author_ids: Optional[Set[str]], cursor: Optional[Any], limit: int
    ) -> FeedPage:
        params = {"limit": limit}
        if author_ids is not None:
            params["authorIds"] = ",".join(sorted(author_ids))
        if cursor is not None:
            params["cursor"] = cursor
        body = self.client.request("GET", "/posts", params=params)
        if not isinstance(body, dict) or not isinstance(body.get("items"), list):
            raise FatalError("Malformed feed page: missing 'items'")
        items = tuple(self._parse_post(item) for item in body["items"])
        return FeedPage(
            items=items,
            cursor=body.get("cursor"),
            is_last_page=bool(body.get("isLastPage", False)),
        )

    async def query_feed_page(
        self,
        author_ids: Optional[Set[str]],
        cursor: Optional[Any],
        limit: int,
    ) -> FeedPage:
        return await asyncio.to_thread(self._get_feed_page, author_ids, cursor, limit)

    async def mutate_post_like(self, post_id: str, viewer_id: str, like: bool) -> None:
        if like:
            await asyncio.to_thread(
                self.client.request, "POST", f"/posts/{post_id}/likes", json={"userId": viewer_id}
            )
        else:
            await asyncio.to_thread(
                self.client.request, "DELETE", f"/posts/{post_id}/likes/{viewer_id}"
            )

    async def create_post(self, post: Post) -> Post:
        body = await asyncio.to_thread(self.client.request, "POST", "/posts", json=post.to_wire())
        return self._parse_post(body)

    async def delete_post(self, post_id: str) -> None:
        await asyncio.to_thread(self.client.request, "DELETE", f"/posts/{post_id}")

    async def add_comment(self, comment: Comment) -> Comment:
        body = await asyncio.to_thread(
            self.client.request,
            "POST",
            f"/posts/{comment.post_id}/comments",
            json=comment.to_wire(),
        )
        try:
            return Comment.model_validate(_normalize_document(body))
        except ValidationError as e:
            raise FatalError(f"Malformed comment document: {e}") from e

    async def delete_comment(self, post_id: str, comment_id: str) -> None:
        await asyncio.to_thread(
            self.client.request, "DELETE", f"/posts/{post_id}/comments/{comment_id}"
        )


class HttpNotificationSource(NotificationSource):
    """Notification source talking to a JSON document API."""

    def __init__(self, client: HttpDocumentClient):
        self.client = client

    def _get_page(self, recipient_id: str, cursor: Optional[Any], limit: int) -> NotificationPage:
        params = {"limit": limit}
        if cursor is not None:
            params["cursor"] = cursor
        body = self.client.request("GET", f"/users/{recipient_id}/notifications", params=params)
        if not isinstance(body, dict) or not isinstance(body.get("items"), list):
            raise FatalError("Malformed notification page: missing 'items'")
        try:
            items = tuple(
                Notification.model_validate(_normalize_document(item)) for item in body["items"]
            )
        except ValidationError as e:
            raise FatalError(f"Malformed notification document: {e}") from e
        return NotificationPage(
            items=items,
            cursor=body.get("cursor"),
            is_last_page=bool(body.get("isLastPage", False)),
        )

    async def query_notifications(
        self, recipient_id: str, cursor: Optional[Any], limit: int
    ) -> NotificationPage:
        return await asyncio.to_thread(self._get_page, recipient_id, cursor, limit)

    async def mark_read(self, notification_ids: List[str]) -> None:
        await asyncio.to_thread(
            self.client.request, "POST", "/notifications/read", json={"ids": notification_ids}
        )

    async def mark_all_read(self, recipient_id: str) -> List[str]:
        body = await asyncio.to_thread(
            self.client.request, "POST", f"/users/{recipient_id}/notifications/read-all"
        )
        return list((body or {}).get("ids", []))

    async def delete_notification(self, notification_id: str) -> None:
        await asyncio.to_thread(self.client.request, "DELETE", f"/notifications/{notification_id}")
