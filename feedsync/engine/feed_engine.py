"""Paginated, cache-backed, deduplicating feed engine with optimistic mutations."""

import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Set, Tuple

from ..config import FeedConfig
from ..errors import FatalError, FeedError, NotFoundError, TransientError
from ..models.feed import FeedQuery, ReconciledFeedState
from ..models.mutation import MutationKind, PendingMutation
from ..models.post import Comment, Post
from ..models.results import LoadResult, MutationOutcome
from ..sources.base import FeedSource
from ..sources.connectivity import ConnectivityMonitor
from ..storage.cache_store import FeedSnapshotCache
from ..utils.retry import call_remote
from ..utils.timer import CancellableTimer
from . import reconcile
from .ledger import MutationLedger, apply_mutation

logger = logging.getLogger(__name__)

StateListener = Callable[[ReconciledFeedState], None]
OutcomeListener = Callable[[MutationOutcome], None]


class MutationHandle:
    """Awaitable handle for an optimistic mutation.

    The optimistic change is already visible when the handle is returned;
    awaiting it yields the MutationOutcome once the remote call settles.
    """

    def __init__(
        self,
        mutation: Optional[PendingMutation],
        task: Optional[asyncio.Task] = None,
        outcome: Optional[MutationOutcome] = None,
    ):
        self.mutation = mutation
        self._task = task
        self._outcome = outcome

    @property
    def done(self) -> bool:
        return self._task is None or self._task.done()

    async def result(self) -> MutationOutcome:
        if self._task is not None:
            return await self._task
        return self._outcome

    def __await__(self):
        return self.result().__await__()


class FeedEngine:
    """Produces and maintains ReconciledFeedState for one viewer.

    Merges the local cache, cursor-paginated remote pages and optimistic
    local mutations into one ordered, duplicate-free sequence. The visible
    sequence is always the authoritative posts (remote pages plus confirmed
    mutations) with the pending-mutation ledger replayed on top, so a
    rollback is simply dropping a ledger entry.

    One instance per screen. All methods must be called from the event loop.
    """

    def __init__(
        self,
        source: FeedSource,
        cache: FeedSnapshotCache,
        config: Optional[FeedConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """Initialize feed engine.

        Args:
            source: Remote paginated document store
            cache: Snapshot cache for the first page
            config: Engine configuration (defaults when omitted)
            clock: Source of local timestamps for provisional posts
        """
        self.source = source
        self.cache = cache
        self.config = config or FeedConfig()
        self.clock = clock or (lambda: datetime.now(timezone.utc))

        self._query: Optional[FeedQuery] = None
        self._base: List[Post] = []
        self._ledger = MutationLedger()
        self._cursor: Optional[Any] = None
        self._has_more = True
        self._offline = False
        self._overflow: List[Post] = []
        self._state = ReconciledFeedState()

        self._online = True
        self._alive = True
        self._refreshing = False
        self._refresh_pending = False
        self._loading_more = False
        self._generation = 0

        self._post_locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}
        self._tasks: Set[asyncio.Task] = set()
        self._watcher: Optional[asyncio.Task] = None
        self._reconnect_timer = CancellableTimer(
            self.config.reconnect_debounce, self._refresh_after_reconnect
        )
        self._listeners: List[StateListener] = []
        self._outcome_listeners: List[OutcomeListener] = []

    # ---------- state ----------

    @property
    def state(self) -> ReconciledFeedState:
        return self._state

    @property
    def pending_mutations(self) -> List[PendingMutation]:
        return self._ledger.entries

    @property
    def online(self) -> bool:
        return self._online

    def add_listener(self, listener: StateListener) -> Callable[[], None]:
        """Subscribe to state changes. Returns an unsubscribe function."""
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    def add_outcome_listener(self, listener: OutcomeListener) -> Callable[[], None]:
        """Subscribe to mutation outcomes. Returns an unsubscribe function."""
        self._outcome_listeners.append(listener)
        return lambda: self._outcome_listeners.remove(listener)

    def _publish(self) -> None:
        if not self._alive:
            return
        self._state = ReconciledFeedState(
            items=tuple(self._ledger.overlay(self._base)),
            cursor=self._cursor,
            has_more=self._has_more,
            offline=self._offline,
        )
        for listener in list(self._listeners):
            try:
                listener(self._state)
            except Exception as e:
                logger.error(f"Feed state listener failed: {e}", exc_info=True)

    def _emit_outcome(self, outcome: MutationOutcome) -> None:
        for listener in list(self._outcome_listeners):
            try:
                listener(outcome)
            except Exception as e:
                logger.error(f"Mutation outcome listener failed: {e}", exc_info=True)

    # ---------- loading ----------

    async def initialize(
        self,
        viewer_id: str,
        followed_ids: Set[str],
        blocked_ids: Set[str],
    ) -> LoadResult:
        """Cold-start the feed.

        Fetches the first remote page for followed users plus the viewer,
        minus blocked users. If the remote call fails or the device is
        offline, falls back to a fresh cache snapshot (offline=True). If both
        fail the state is empty and the result carries the error.

        Args:
            viewer_id: Viewing user id, non-empty
            followed_ids: Users the viewer follows, may be empty
            blocked_ids: Users whose posts must never appear, may be empty

        Returns:
            LoadResult with status "remote", "cache", "empty" or "skipped"

        Raises:
            ValueError: If viewer_id is empty
        """
        if not viewer_id:
            raise ValueError("viewer_id is required")
        if self._refreshing:
            return LoadResult(state=self._state, status="skipped")

        self._query = FeedQuery.for_viewer(viewer_id, set(followed_ids), set(blocked_ids))
        self._base = []
        # Pending mutations belong to the previous feed; in-flight ones settle as superseded.
        dropped = self._ledger.clear()
        if dropped:
            logger.info(f"Dropped {len(dropped)} pending mutations from the previous feed")
        self._cursor = None
        self._overflow = []
        self._has_more = True
        logger.info(
            f"Initializing feed for {viewer_id} ({len(self._query.author_ids)} authors)"
        )
        return await self._load_first_page(cold=True)

    async def refresh(self) -> LoadResult:
        """Reload the first page and make it the new head of the feed.

        The cursor restarts from the fresh page; unconfirmed mutations
        (including locally created posts) are kept and replayed on top.
        A second call while one is outstanding is ignored.
        """
        if self._query is None:
            raise RuntimeError("initialize() must be called before refresh()")
        if self._refreshing:
            return LoadResult(state=self._state, status="skipped")
        if not self._online:
            return LoadResult(
                state=self._state,
                status="error",
                retryable=True,
                errors=["Cannot refresh while offline"],
            )
        return await self._load_first_page(cold=False)

    async def _load_first_page(self, cold: bool) -> LoadResult:
        self._refreshing = True
        self._generation += 1
        generation = self._generation
        viewer_id = self._query.viewer_id
        try:
            error: FeedError
            if self._online:
                try:
                    items, cursor, has_more, overflow = await self._fetch_page(None, [])
                except FeedError as e:
                    logger.warning(f"Error fetching feed for {viewer_id}: {e}")
                    error = e
                except Exception as e:
                    logger.error(f"Unexpected error fetching feed for {viewer_id}: {e}", exc_info=True)
                    error = FatalError(str(e))
                else:
                    if not self._alive or generation != self._generation:
                        return LoadResult(state=self._state, status="skipped")
                    self._base = items
                    self._cursor = cursor
                    self._has_more = has_more
                    self._overflow = overflow
                    self._offline = not self._online
                    self._publish()
                    await self.cache.save(viewer_id, items)
                    logger.info(f"Loaded {len(items)} posts for {viewer_id}")
                    return LoadResult(state=self._state, status="remote")
            else:
                error = TransientError("Device is offline")

            if cold or not self._base:
                snapshot = await self.cache.load(viewer_id)
                if not self._alive:
                    return LoadResult(state=self._state, status="skipped")
                posts = self._usable_cached_posts(snapshot.posts if snapshot else [])
                if posts:
                    self._base = posts
                    self._cursor = None
                    self._has_more = False
                    self._overflow = []
                    self._offline = True
                    self._publish()
                    logger.info(f"Showing {len(posts)} cached posts for {viewer_id}")
                    return LoadResult(
                        state=self._state,
                        status="cache",
                        retryable=True,
                        errors=[str(error)],
                    )

            if cold:
                self._has_more = False
                self._offline = not self._online
                self._publish()
                return LoadResult(
                    state=self._state,
                    status="empty",
                    retryable=error.retryable,
                    errors=[str(error)],
                )
            return LoadResult(
                state=self._state,
                status="error",
                retryable=error.retryable,
                errors=[str(error)],
            )
        finally:
            self._refreshing = False
            if self._refresh_pending and self._online and self._alive:
                # A reconnect arrived while this load was in flight.
                self._refresh_pending = False
                self._reconnect_timer.schedule()

    def _usable_cached_posts(self, posts: List[Post]) -> List[Post]:
        # The blocked list may have changed since the snapshot was written.
        allowed = reconcile.filter_authors(posts, self._query.author_ids)
        return reconcile.order(reconcile.dedupe(allowed))

    async def load_more(self) -> LoadResult:
        """Append the next page after the stored cursor.

        No-op while offline, while any fetch is in flight, or when there is
        nothing more to load. Ids already present are dropped.
        """
        if self._query is None:
            raise RuntimeError("initialize() must be called before load_more()")
        if self._offline or not self._online:
            return LoadResult(state=self._state, status="skipped", errors=["offline"])
        if self._refreshing or self._loading_more or not self._has_more:
            return LoadResult(state=self._state, status="skipped")

        self._loading_more = True
        generation = self._generation
        try:
            items, cursor, has_more, overflow = await self._fetch_page(
                self._cursor, self._overflow
            )
        except FeedError as e:
            logger.warning(f"Error loading more posts: {e}")
            return LoadResult(
                state=self._state, status="error", retryable=e.retryable, errors=[str(e)]
            )
        except Exception as e:
            logger.error(f"Unexpected error loading more posts: {e}", exc_info=True)
            return LoadResult(state=self._state, status="error", errors=[str(e)])
        finally:
            self._loading_more = False

        if not self._alive or generation != self._generation:
            logger.debug("Discarding page fetched before a refresh")
            return LoadResult(state=self._state, status="skipped")

        before = len(self._base)
        self._base = reconcile.merge_page(self._base, items)
        self._cursor = cursor
        self._has_more = has_more
        self._overflow = overflow
        self._publish()
        logger.debug(
            f"Appended {len(self._base) - before} of {len(items)} posts (has_more={has_more})"
        )
        return LoadResult(state=self._state, status="remote")

    async def _fetch_page(
        self, cursor: Optional[Any], overflow: List[Post]
    ) -> Tuple[List[Post], Optional[Any], bool, List[Post]]:
        """Fetch one page under the fan-out policy.

        When the author set fits the source's "in" filter the query is
        filtered remotely. Otherwise an unfiltered page of
        ``page_size * overfetch_factor`` posts is fetched and filtered
        locally; matches beyond the page size are carried over to the next
        call so the advancing cursor never skips them.

        Returns:
            (posts, next cursor, has_more, carried-over posts)
        """
        limit = self.config.page_size
        author_ids = self._query.author_ids

        if len(author_ids) <= self.config.fan_out_limit:
            page = await call_remote(
                lambda: self.source.query_feed_page(set(author_ids), cursor, limit),
                self.config,
                "query_feed_page",
            )
            items = reconcile.order(reconcile.dedupe(page.items))
            return items, page.cursor, reconcile.page_has_more(
                page.count, limit, page.is_last_page
            ), []

        if len(overflow) >= limit:
            kept, rest = reconcile.split_page(overflow, limit)
            return kept, cursor, True, rest

        raw_limit = self.config.overfetch_limit
        page = await call_remote(
            lambda: self.source.query_feed_page(None, cursor, raw_limit),
            self.config,
            "query_feed_page",
        )
        matched = reconcile.order(
            reconcile.dedupe(overflow + reconcile.filter_authors(page.items, author_ids))
        )
        kept, rest = reconcile.split_page(matched, limit)
        has_more = reconcile.page_has_more(page.count, raw_limit, page.is_last_page) or bool(rest)
        logger.debug(
            f"Fan-out query: {page.count} fetched, {len(matched)} matched, {len(rest)} carried over"
        )
        return kept, page.cursor if page.cursor is not None else cursor, has_more, rest

    # ---------- connectivity ----------

    def on_connectivity_change(self, online: bool) -> None:
        """Handle an online/offline transition.

        Going offline freezes remote calls and marks the state offline.
        Coming back online schedules one debounced refresh; flaps inside the
        debounce window restart the countdown instead of adding refreshes.
        """
        if online == self._online:
            return
        self._online = online
        if not online:
            self._reconnect_timer.cancel()
            self._refresh_pending = False
            self._offline = True
            logger.info(f"📴 Offline, holding {len(self._base)} posts")
            self._publish()
        else:
            logger.info("📶 Back online, scheduling refresh")
            self._reconnect_timer.schedule()

    async def _refresh_after_reconnect(self) -> None:
        if not self._alive or self._query is None or not self._online:
            return
        if self._refreshing:
            self._refresh_pending = True
            logger.debug("Refresh in flight, deferring reconnect refresh")
            return
        await self.refresh()

    def watch_connectivity(self, monitor: ConnectivityMonitor) -> asyncio.Task:
        """Consume a connectivity monitor until close()."""

        async def consume():
            async for online in monitor.stream():
                if not self._alive:
                    break
                self.on_connectivity_change(online)

        self._watcher = asyncio.get_running_loop().create_task(consume())
        return self._watcher

    # ---------- optimistic mutations ----------

    def apply_like(self, post_id: str, viewer_id: str) -> MutationHandle:
        """Like a post optimistically.

        A no-op if the visible state already shows the post liked by viewer_id.
        """
        return self._toggle_like(post_id, viewer_id, like=True)

    def apply_unlike(self, post_id: str, viewer_id: str) -> MutationHandle:
        """Unlike a post optimistically."""
        return self._toggle_like(post_id, viewer_id, like=False)

    def _toggle_like(self, post_id: str, viewer_id: str, like: bool) -> MutationHandle:
        post, rejection = self._target(post_id)
        if rejection:
            return rejection
        if post.is_liked_by(viewer_id) == like:
            return self._settled(None, "noop")

        kind = MutationKind.LIKE if like else MutationKind.UNLIKE
        mutation = self._ledger.enqueue(post_id, kind, viewer_id=viewer_id)
        self._publish()
        return self._dispatch(
            mutation, lambda: self.source.mutate_post_like(post_id, viewer_id, like)
        )

    def apply_new_post(self, post: Post) -> MutationHandle:
        """Insert a locally authored post at the head of the feed.

        The post gets a provisional id and local timestamp and is tagged
        pending. On confirmation the stored post replaces it in place; on
        failure it is removed.
        """
        provisional = post.model_copy(
            update={
                "id": f"local-{uuid.uuid4().hex}",
                "created_at": self.clock(),
                "pending": True,
            }
        )
        mutation = self._ledger.enqueue(provisional.id, MutationKind.NEW_POST, post=provisional)
        self._publish()
        return self._dispatch(mutation, lambda: self.source.create_post(provisional))

    def apply_delete(self, post_id: str) -> MutationHandle:
        """Remove a post optimistically. Earlier pending mutations for it are dropped."""
        _, rejection = self._target(post_id)
        if rejection:
            return rejection
        mutation = self._ledger.enqueue(post_id, MutationKind.DELETE)
        self._publish()
        return self._dispatch(mutation, lambda: self.source.delete_post(post_id))

    def apply_comment_count_delta(self, post_id: str, delta: int) -> MutationOutcome:
        """Adjust commentCount for a comment added or removed elsewhere.

        Applied locally without a remote call. The count never drops below zero.
        """
        _, rejection = self._target(post_id)
        if rejection:
            return rejection._outcome
        if delta == 0:
            return MutationOutcome(mutation=None, status="noop")
        mutation = self._ledger.enqueue(post_id, MutationKind.COMMENT_COUNT_DELTA, delta=delta)
        self._fold(self._ledger.confirm(mutation))
        self._publish()
        return MutationOutcome(mutation=mutation, status="confirmed")

    def add_comment(self, comment: Comment) -> MutationHandle:
        """Write a comment and bump the post's commentCount optimistically."""
        _, rejection = self._target(comment.post_id)
        if rejection:
            return rejection
        mutation = self._ledger.enqueue(
            comment.post_id, MutationKind.COMMENT_COUNT_DELTA, delta=1, comment=comment
        )
        self._publish()
        return self._dispatch(mutation, lambda: self.source.add_comment(comment))

    def remove_comment(self, post_id: str, comment_id: str) -> MutationHandle:
        """Delete a comment and decrement the post's commentCount optimistically."""
        _, rejection = self._target(post_id)
        if rejection:
            return rejection
        mutation = self._ledger.enqueue(post_id, MutationKind.COMMENT_COUNT_DELTA, delta=-1)
        self._publish()
        return self._dispatch(mutation, lambda: self.source.delete_comment(post_id, comment_id))

    def _target(self, post_id: str) -> Tuple[Optional[Post], Optional[MutationHandle]]:
        post = self._state.get(post_id)
        if post is None:
            return None, self._settled(None, "rejected", f"Post not found: {post_id}")
        if post.pending:
            return None, self._settled(
                None, "rejected", f"Post {post_id} is not confirmed yet", retryable=True
            )
        return post, None

    def _settled(
        self,
        mutation: Optional[PendingMutation],
        status: str,
        error: Optional[str] = None,
        retryable: bool = False,
    ) -> MutationHandle:
        outcome = MutationOutcome(mutation=mutation, status=status, error=error, retryable=retryable)
        return MutationHandle(mutation, outcome=outcome)

    def _dispatch(
        self, mutation: PendingMutation, remote: Callable[[], Awaitable[Any]]
    ) -> MutationHandle:
        task = asyncio.get_running_loop().create_task(self._confirm(mutation, remote))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return MutationHandle(mutation, task=task)

    @asynccontextmanager
    async def _post_lock(self, post_id: str) -> AsyncIterator[None]:
        """Hold the per-post lock, dropping it once no caller is using it."""
        lock = self._post_locks.get(post_id)
        if lock is None:
            lock = self._post_locks[post_id] = asyncio.Lock()
        self._lock_users[post_id] = self._lock_users.get(post_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[post_id] -= 1
            if self._lock_users[post_id] == 0:
                del self._lock_users[post_id]
                self._post_locks.pop(post_id, None)

    async def _confirm(
        self, mutation: PendingMutation, remote: Callable[[], Awaitable[Any]]
    ) -> MutationOutcome:
        # Remote calls for one post are issued in local sequence order.
        async with self._post_lock(mutation.post_id):
            if not self._ledger.is_live(mutation):
                outcome = MutationOutcome(mutation=mutation, status="superseded")
            else:
                try:
                    result = await call_remote(remote, self.config, str(mutation))
                except NotFoundError as e:
                    outcome = self._remove_vanished(mutation, e)
                except FeedError as e:
                    outcome = self._roll_back(mutation, e)
                except Exception as e:
                    logger.error(f"Unexpected error confirming {mutation}: {e}", exc_info=True)
                    outcome = self._roll_back(mutation, FatalError(str(e)))
                else:
                    outcome = self._settle_confirmed(mutation, result)

        if outcome.status not in ("confirmed", "superseded", "discarded"):
            logger.warning(f"Mutation {mutation} {outcome.status}: {outcome.error}")
        else:
            logger.debug(f"Mutation {mutation} {outcome.status}")
        self._emit_outcome(outcome)
        return outcome

    def _settle_confirmed(self, mutation: PendingMutation, result: Any) -> MutationOutcome:
        if not self._alive:
            return MutationOutcome(mutation=mutation, status="discarded", result=result)
        if not self._ledger.is_live(mutation):
            return MutationOutcome(mutation=mutation, status="superseded", result=result)

        if mutation.kind == MutationKind.NEW_POST:
            self._ledger.discard(mutation)
            stored = result.model_copy(update={"pending": False})
            self._base = reconcile.merge_page(
                [p for p in self._base if p.id != mutation.post_id], [stored]
            )
        else:
            self._fold(self._ledger.confirm(mutation))
        self._publish()
        return MutationOutcome(mutation=mutation, status="confirmed", result=result)

    def _roll_back(self, mutation: PendingMutation, error: FeedError) -> MutationOutcome:
        if not self._alive:
            return MutationOutcome(mutation=mutation, status="discarded", error=str(error))
        if not self._ledger.is_live(mutation):
            return MutationOutcome(mutation=mutation, status="superseded", error=str(error))
        self._fold(self._ledger.discard(mutation))
        self._publish()
        return MutationOutcome(
            mutation=mutation,
            status="rolled_back",
            error=str(error),
            retryable=error.retryable,
        )

    def _remove_vanished(self, mutation: PendingMutation, error: FeedError) -> MutationOutcome:
        if mutation.kind == MutationKind.NEW_POST:
            return self._roll_back(mutation, error)
        if not self._alive:
            return MutationOutcome(mutation=mutation, status="discarded", error=str(error))
        self._ledger.drop_post(mutation.post_id)
        self._base = [p for p in self._base if p.id != mutation.post_id]
        self._publish()
        return MutationOutcome(mutation=mutation, status="removed", error=str(error))

    def _fold(self, mutations: List[PendingMutation]) -> None:
        for mutation in mutations:
            self._base = apply_mutation(self._base, mutation)

    # ---------- lifecycle ----------

    async def wait_idle(self) -> None:
        """Wait for every in-flight mutation confirmation to settle."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def close(self) -> None:
        """Tear down. Results arriving afterwards are never applied.

        In-flight requests are not cancelled.
        """
        self._alive = False
        self._reconnect_timer.cancel()
        if self._watcher is not None:
            self._watcher.cancel()
            self._watcher = None
        self._listeners.clear()
        logger.debug("Feed engine closed")
