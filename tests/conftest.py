"""Shared test fixtures and utilities."""

from datetime import datetime, timedelta, timezone

import pytest

from feedsync.config import FeedConfig
from feedsync.engine.feed_engine import FeedEngine
from feedsync.models.notification import Notification
from feedsync.models.post import Post
from feedsync.sources.memory import InMemoryFeedSource
from feedsync.storage.cache_store import FeedSnapshotCache, MemoryCacheStore

BASE_TIME = datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


def make_post(
    post_id: str,
    author_id: str = "alice",
    t: int = 0,
    like_count: int = 0,
    likes=None,
    comment_count: int = 0,
    **kwargs,
) -> Post:
    """Create a post whose createdAt is BASE_TIME plus t minutes.

    Args:
        post_id: Post id
        author_id: Author user id
        t: Minutes after BASE_TIME
        like_count: Initial likeCount
        likes: Initial like-set
        comment_count: Initial commentCount
    """
    likes = set(likes or [])
    kwargs.setdefault("caption", f"caption {post_id}")
    return Post(
        id=post_id,
        author_id=author_id,
        created_at=BASE_TIME + timedelta(minutes=t),
        like_count=max(like_count, len(likes)),
        likes=likes,
        comment_count=comment_count,
        **kwargs,
    )


def make_notification(
    notification_id: str, t: int = 0, read: bool = False, recipient_id: str = "viewer"
) -> Notification:
    """Create a notification whose createdAt is BASE_TIME plus t minutes."""
    return Notification(
        id=notification_id,
        recipient_id=recipient_id,
        sender_id="bob",
        sender_name="Bob",
        kind="like",
        message=f"Bob liked your post ({notification_id})",
        created_at=BASE_TIME + timedelta(minutes=t),
        read=read,
    )


class FixedClock:
    """Manually advanced clock."""

    def __init__(self, now: datetime = BASE_TIME + timedelta(days=1)):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def config():
    """Fast configuration: no retries, short debounce."""
    return FeedConfig(
        page_size=10,
        retry_attempts=1,
        retry_delay=0,
        request_timeout=1.0,
        reconnect_debounce=0.05,
    )


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def cache_store():
    return MemoryCacheStore()


@pytest.fixture
def snapshot_cache(cache_store, clock):
    return FeedSnapshotCache(cache_store, ttl=timedelta(hours=24), clock=clock)


@pytest.fixture
def sample_posts():
    """Posts from alice, bob and a stranger, newest first by t."""
    return [
        make_post("p1", "alice", t=50),
        make_post("p2", "bob", t=40),
        make_post("p3", "carol", t=30),
        make_post("p4", "alice", t=20),
        make_post("p5", "bob", t=10),
    ]


@pytest.fixture
def memory_source(sample_posts, clock):
    return InMemoryFeedSource(sample_posts, clock=clock)


@pytest.fixture
def engine(memory_source, snapshot_cache, config, clock):
    """Engine over the in-memory source."""
    feed_engine = FeedEngine(memory_source, snapshot_cache, config, clock=clock)
    yield feed_engine
    feed_engine.close()
