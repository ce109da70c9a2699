"""Local cache store for feed snapshots."""

import asyncio
import logging
import os
import re
import tempfile
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Iterable, Optional

from pydantic import ValidationError

from ..models.feed import CachedSnapshot
from ..models.post import Post

logger = logging.getLogger(__name__)

CACHE_KEY_PREFIX = "cachedFeedPosts"


class CacheStore(ABC):
    """Durable key/value storage. Last writer wins per key."""

    @abstractmethod
    async def get(self, key: str) -> Optional[bytes]:
        """Return the stored bytes or None if the key is absent."""
        pass

    @abstractmethod
    async def set(self, key: str, data: bytes) -> None:
        """Store bytes under key, replacing any previous value."""
        pass


class MemoryCacheStore(CacheStore):
    """Process-local cache store."""

    def __init__(self):
        self.data: Dict[str, bytes] = {}

    async def get(self, key: str) -> Optional[bytes]:
        return self.data.get(key)

    async def set(self, key: str, data: bytes) -> None:
        self.data[key] = data


class FileCacheStore(CacheStore):
    """One file per key under a root directory.

    Writes go to a temp file that is atomically renamed over the target.
    """

    def __init__(self, root_dir: str):
        self.root_dir = root_dir

    def _path(self, key: str) -> str:
        safe = re.sub(r"[^A-Za-z0-9._-]", "_", key)
        return os.path.join(self.root_dir, f"{safe}.json")

    def _read(self, key: str) -> Optional[bytes]:
        path = self._path(key)
        if not os.path.exists(path):
            return None
        with open(path, "rb") as f:
            return f.read()

    def _write(self, key: str, data: bytes) -> None:
        os.makedirs(self.root_dir, exist_ok=True)
        fd, tmp = tempfile.mkstemp(prefix=".feed.", suffix=".json.tmp", dir=self.root_dir)
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.replace(tmp, self._path(key))  # atomic on POSIX
        finally:
            if os.path.exists(tmp):
                os.remove(tmp)

    async def get(self, key: str) -> Optional[bytes]:
        return await asyncio.to_thread(self._read, key)

    async def set(self, key: str, data: bytes) -> None:
        await asyncio.to_thread(self._write, key, data)


class FeedSnapshotCache:
    """Reads and writes the viewer's cached first page.

    The engine is the only writer. Read and write failures are logged and
    behave like a cache miss or a skipped write.
    """

    def __init__(
        self,
        store: CacheStore,
        ttl: timedelta = timedelta(hours=24),
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.ttl = ttl
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    @staticmethod
    def key_for(viewer_id: str) -> str:
        return f"{CACHE_KEY_PREFIX}:{viewer_id}"

    async def load(self, viewer_id: str) -> Optional[CachedSnapshot]:
        """Return the cached snapshot if present and within the freshness window."""
        try:
            data = await self.store.get(self.key_for(viewer_id))
        except Exception as e:
            logger.warning(f"Error loading cached posts: {e}")
            return None
        if not data:
            return None

        try:
            snapshot = CachedSnapshot.from_bytes(data)
        except (ValidationError, ValueError) as e:
            logger.warning(f"Discarding corrupt feed cache for {viewer_id}: {e}")
            return None

        if not snapshot.is_fresh(self.clock(), self.ttl):
            logger.info(f"Feed cache for {viewer_id} expired (cached at {snapshot.cached_at})")
            return None
        return snapshot

    async def save(self, viewer_id: str, posts: Iterable[Post]) -> bool:
        """Overwrite the snapshot. Returns False if the write failed."""
        snapshot = CachedSnapshot(posts=list(posts), cached_at=self.clock())
        try:
            await self.store.set(self.key_for(viewer_id), snapshot.to_bytes())
        except Exception as e:
            logger.warning(f"Error caching posts: {e}")
            return False
        logger.debug(f"Cached {len(snapshot.posts)} posts for {viewer_id}")
        return True
