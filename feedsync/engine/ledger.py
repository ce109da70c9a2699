"""Pending-mutation ledger and the generic mutation applier."""

import itertools
import logging
from typing import List, Optional, Sequence, Set

from ..models.mutation import MutationKind, PendingMutation
from ..models.post import Post
from .reconcile import order

logger = logging.getLogger(__name__)


def apply_mutation(posts: Sequence[Post], mutation: PendingMutation) -> List[Post]:
    """Apply one mutation to an ordered post sequence.

    This is the only place mutation kinds are interpreted; optimistic
    overlays and confirmed folds both go through it. Mutations targeting an
    absent post leave the sequence unchanged.
    """
    kind = mutation.kind

    if kind == MutationKind.NEW_POST:
        if mutation.post is None or any(p.id == mutation.post_id for p in posts):
            return list(posts)
        return order(list(posts) + [mutation.post])

    if kind == MutationKind.DELETE:
        return [p for p in posts if p.id != mutation.post_id]

    result = []
    for post in posts:
        if post.id == mutation.post_id:
            if kind == MutationKind.LIKE:
                post = post.with_like(mutation.viewer_id)
            elif kind == MutationKind.UNLIKE:
                post = post.without_like(mutation.viewer_id)
            elif kind == MutationKind.COMMENT_COUNT_DELTA:
                post = post.with_comment_delta(mutation.delta)
        result.append(post)
    return result


class MutationLedger:
    """Ordered log of optimistic mutations awaiting confirmation.

    Entries are kept in local sequence order. A confirmed entry is folded
    into the authoritative sequence only once every earlier entry for the
    same post has been confirmed or discarded, so a late confirmation of an
    older mutation can never overwrite a newer one still pending.
    """

    def __init__(self):
        self._seq = itertools.count(1)
        self._entries: List[PendingMutation] = []
        self._confirmed: Set[int] = set()

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def entries(self) -> List[PendingMutation]:
        return list(self._entries)

    def enqueue(self, post_id: str, kind: MutationKind, **fields) -> PendingMutation:
        """Record a new mutation.

        A DELETE invalidates every earlier pending mutation for the same post.
        """
        mutation = PendingMutation(seq=next(self._seq), post_id=post_id, kind=kind, **fields)
        if kind == MutationKind.DELETE:
            superseded = self.drop_post(post_id)
            if superseded:
                logger.debug(f"{mutation} superseded {len(superseded)} pending mutations")
        self._entries.append(mutation)
        return mutation

    def is_live(self, mutation: PendingMutation) -> bool:
        return any(entry.seq == mutation.seq for entry in self._entries)

    def for_post(self, post_id: str) -> List[PendingMutation]:
        return [entry for entry in self._entries if entry.post_id == post_id]

    def confirm(self, mutation: PendingMutation) -> List[PendingMutation]:
        """Mark a mutation confirmed.

        Returns:
            Mutations, in seq order, that are now safe to fold into the
            authoritative sequence (removed from the ledger)
        """
        if not self.is_live(mutation):
            return []
        self._confirmed.add(mutation.seq)
        return self._pop_foldable(mutation.post_id)

    def discard(self, mutation: PendingMutation) -> List[PendingMutation]:
        """Remove a mutation without folding it (rollback).

        Returns:
            Confirmed successors for the same post that became foldable
        """
        self._entries = [entry for entry in self._entries if entry.seq != mutation.seq]
        self._confirmed.discard(mutation.seq)
        return self._pop_foldable(mutation.post_id)

    def drop_post(self, post_id: str) -> List[PendingMutation]:
        """Remove every mutation for a post. Returns the removed entries."""
        removed = self.for_post(post_id)
        self._entries = [entry for entry in self._entries if entry.post_id != post_id]
        for entry in removed:
            self._confirmed.discard(entry.seq)
        return removed

    def clear(self) -> List[PendingMutation]:
        """Drop every entry. Sequence numbers keep counting across a clear."""
        removed = list(self._entries)
        self._entries = []
        self._confirmed.clear()
        return removed

    def overlay(self, posts: Sequence[Post]) -> List[Post]:
        """Apply every outstanding mutation, in seq order, to posts."""
        result = list(posts)
        for entry in self._entries:
            result = apply_mutation(result, entry)
        return result

    def _pop_foldable(self, post_id: str) -> List[PendingMutation]:
        foldable = []
        for entry in self.for_post(post_id):
            if entry.seq not in self._confirmed:
                break
            foldable.append(entry)
        if foldable:
            done = {entry.seq for entry in foldable}
            self._entries = [entry for entry in self._entries if entry.seq not in done]
            self._confirmed -= done
        return foldable

    def find(self, seq: int) -> Optional[PendingMutation]:
        for entry in self._entries:
            if entry.seq == seq:
                return entry
        return None
