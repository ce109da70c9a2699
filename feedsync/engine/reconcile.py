"""Pure ordering, deduplication and filtering functions for feed sequences.

Every function works on any item exposing ``id`` and ``created_at`` (posts
and notifications) and returns a new list. The global order is createdAt
descending with id descending as the tie-break.
"""

from typing import Iterable, List, Sequence, Set, Tuple, TypeVar

T = TypeVar("T")


def sort_key(item) -> tuple:
    return (item.created_at, item.id)


def order(items: Iterable[T]) -> List[T]:
    """Sort newest first; equal keys keep their relative order."""
    return sorted(items, key=sort_key, reverse=True)


def is_ordered(items: Sequence) -> bool:
    return all(sort_key(a) > sort_key(b) for a, b in zip(items, items[1:]))


def dedupe(items: Iterable[T]) -> List[T]:
    """Drop repeated ids, keeping the first occurrence."""
    seen: Set[str] = set()
    unique = []
    for item in items:
        if item.id in seen:
            continue
        seen.add(item.id)
        unique.append(item)
    return unique


def merge_page(existing: Sequence[T], incoming: Iterable[T]) -> List[T]:
    """Append a page to an ordered sequence.

    Ids already present are dropped from the incoming page (overlapping pages
    caused by createdAt ties), then the result is re-ordered so an interleaved
    refresh cannot break the global order.
    """
    return order(dedupe(list(existing) + list(incoming)))


def filter_authors(posts: Iterable[T], author_ids: Set[str]) -> List[T]:
    return [post for post in posts if post.author_id in author_ids]


def split_page(items: Sequence[T], limit: int) -> Tuple[List[T], List[T]]:
    """Split into the first ``limit`` items and the overflow."""
    return list(items[:limit]), list(items[limit:])


def page_has_more(count: int, limit: int, is_last_page: bool = False) -> bool:
    """Short-page heuristic.

    A page shorter than the limit is the last one. An exactly full last page
    reports True and costs one extra empty round trip.
    """
    return not is_last_page and count >= limit
