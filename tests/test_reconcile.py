"""Tests for ordering, deduplication and filtering functions."""

from feedsync.engine import reconcile
from tests.conftest import make_post


class TestOrdering:
    """Tests for the (createdAt desc, id desc) order."""

    def test_order_newest_first(self):
        """Test posts are sorted newest first."""
        posts = [make_post("a", t=1), make_post("b", t=3), make_post("c", t=2)]

        result = reconcile.order(posts)

        assert [p.id for p in result] == ["b", "c", "a"]
        assert reconcile.is_ordered(result)

    def test_ties_broken_by_id_descending(self):
        """Test equal timestamps fall back to id descending."""
        posts = [make_post("a", t=1), make_post("c", t=1), make_post("b", t=1)]

        result = reconcile.order(posts)

        assert [p.id for p in result] == ["c", "b", "a"]

    def test_is_ordered_rejects_duplicates_and_inversions(self):
        """Test is_ordered requires a strictly descending sequence."""
        post = make_post("a", t=1)

        assert not reconcile.is_ordered([post, post])
        assert not reconcile.is_ordered([make_post("a", t=1), make_post("b", t=2)])
        assert reconcile.is_ordered([])


class TestDedupe:
    """Tests for id deduplication."""

    def test_first_occurrence_wins(self):
        """Test the first copy of an id is kept."""
        first = make_post("a", t=1, like_count=5)
        second = make_post("a", t=1, like_count=9)

        result = reconcile.dedupe([first, make_post("b"), second])

        assert [p.id for p in result] == ["a", "b"]
        assert result[0].like_count == 5


class TestMergePage:
    """Tests for appending pages."""

    def test_overlapping_page_is_deduplicated(self):
        """Test a page sharing ids with the existing sequence adds only new ids."""
        existing = [make_post("p1", t=5), make_post("p2", t=3)]
        incoming = [make_post("p2", t=3), make_post("p3", t=1)]

        result = reconcile.merge_page(existing, incoming)

        assert [p.id for p in result] == ["p1", "p2", "p3"]

    def test_merge_restores_global_order(self):
        """Test an interleaved page cannot break ordering."""
        existing = [make_post("p1", t=5), make_post("p3", t=1)]
        incoming = [make_post("p2", t=3)]

        result = reconcile.merge_page(existing, incoming)

        assert [p.id for p in result] == ["p1", "p2", "p3"]

    def test_merge_is_idempotent(self):
        """Test merging the same page twice yields the same sequence."""
        page = [make_post("p1", t=5), make_post("p2", t=3)]

        once = reconcile.merge_page([], page)
        twice = reconcile.merge_page(once, page)

        assert once == twice


class TestHelpers:
    """Tests for filtering, splitting and the has-more heuristic."""

    def test_filter_authors(self):
        posts = [make_post("a", "alice"), make_post("b", "mallory"), make_post("c", "bob")]

        result = reconcile.filter_authors(posts, {"alice", "bob"})

        assert [p.id for p in result] == ["a", "c"]

    def test_split_page(self):
        items = [make_post(str(i), t=i) for i in range(5)]

        kept, rest = reconcile.split_page(items, 3)

        assert len(kept) == 3
        assert len(rest) == 2

    def test_page_has_more(self):
        """Test full pages report more unless the source says otherwise."""
        assert reconcile.page_has_more(10, 10)
        assert not reconcile.page_has_more(9, 10)
        assert not reconcile.page_has_more(10, 10, is_last_page=True)
        assert not reconcile.page_has_more(0, 10)
