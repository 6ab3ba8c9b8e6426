"""
tests/test_threads.py -- Unit tests for content/threads.py and ContentStore.

Covers:
  - replies inherit the parent's article; missing or foreign parents raise
    ParentNotFound and persist nothing
  - CommentThreads yields an acyclic forest, oldest first at every depth,
    with like counts, and re-reads the store on every iteration
  - like_comment() is idempotent, sequentially and under concurrent requests
  - article slugs, listing order, edits and cascading deletes
"""

from __future__ import annotations

import threading

import pytest

from content.models import Article, CommentNode
from content.store import ContentStore, slugify
from content.threads import CommentThreads, create_comment, create_threaded_comment, like_comment
from core.errors import ParentNotFound


@pytest.fixture
def article(content_store: ContentStore) -> Article:
    return content_store.create_article(Article(title="Threads of Thought", body="Body text", author_id=1))


def _walk(nodes: list[CommentNode]) -> list[int]:
    """Depth-first comment ids, iteratively."""
    order: list[int] = []
    stack = list(reversed(nodes))
    while stack:
        node = stack.pop()
        order.append(node.comment.id)
        stack.extend(reversed(node.replies))
    return order


class TestThreadedComments:
    def test_reply_lives_on_parents_article(self, content_store: ContentStore, article: Article) -> None:
        root = create_comment(content_store, article.id, author_id=1, text="root")
        reply = create_threaded_comment(content_store, root.id, author_id=2, text="reply")
        assert reply.article_id == article.id
        assert reply.parent_comment_id == root.id

    def test_missing_parent_persists_nothing(self, content_store: ContentStore, article: Article) -> None:
        create_comment(content_store, article.id, author_id=1, text="root")
        before = content_store.count_comments()
        with pytest.raises(ParentNotFound):
            create_threaded_comment(content_store, 987654, author_id=2, text="orphan")
        assert content_store.count_comments() == before

    def test_parent_on_another_article(self, content_store: ContentStore, article: Article) -> None:
        other = content_store.create_article(Article(title="Other", body="b", author_id=1))
        root = create_comment(content_store, other.id, author_id=1, text="elsewhere")
        before = content_store.count_comments()
        with pytest.raises(ParentNotFound):
            create_threaded_comment(content_store, root.id, author_id=2, text="reply", article_id=article.id)
        assert content_store.count_comments() == before

    def test_non_numeric_comment_id(self, content_store: ContentStore) -> None:
        with pytest.raises(ValueError):
            content_store.get_comment("abc")


class TestCommentThreads:
    def test_forest_shape_and_order(self, content_store: ContentStore, article: Article) -> None:
        first = create_comment(content_store, article.id, 1, "first root")
        second = create_comment(content_store, article.id, 2, "second root")
        a = create_threaded_comment(content_store, first.id, 2, "reply a")
        b = create_threaded_comment(content_store, first.id, 3, "reply b")
        deep = create_threaded_comment(content_store, a.id, 1, "reply to a")

        roots = list(CommentThreads(content_store, article.id))

        assert [r.comment.id for r in roots] == [first.id, second.id]
        assert [r.comment.id for r in roots[0].replies] == [a.id, b.id]
        assert [r.comment.id for r in roots[0].replies[0].replies] == [deep.id]
        assert roots[1].replies == []
        ids = _walk(roots)
        assert len(ids) == len(set(ids)) == 5

    def test_only_this_articles_comments(self, content_store: ContentStore, article: Article) -> None:
        other = content_store.create_article(Article(title="Other", body="b", author_id=1))
        create_comment(content_store, other.id, 1, "not here")
        mine = create_comment(content_store, article.id, 1, "here")
        assert [n.comment.id for n in CommentThreads(content_store, article.id)] == [mine.id]

    def test_like_counts_are_attached(self, content_store: ContentStore, article: Article) -> None:
        root = create_comment(content_store, article.id, 1, "root")
        reply = create_threaded_comment(content_store, root.id, 2, "reply")
        like_comment(content_store, reply.id, 1)
        like_comment(content_store, reply.id, 3)

        (node,) = list(CommentThreads(content_store, article.id))
        assert node.like_count == 0
        assert node.replies[0].like_count == 2

    def test_iteration_is_restartable_and_current(self, content_store: ContentStore, article: Article) -> None:
        threads = CommentThreads(content_store, article.id)
        assert list(threads) == []
        create_comment(content_store, article.id, 1, "late arrival")
        assert len(list(threads)) == 1
        assert len(list(threads)) == 1

    def test_empty_article(self, content_store: ContentStore, article: Article) -> None:
        assert list(CommentThreads(content_store, article.id)) == []


class TestLikes:
    def test_like_is_idempotent(self, content_store: ContentStore, article: Article) -> None:
        comment = create_comment(content_store, article.id, 1, "likeable")
        assert like_comment(content_store, comment.id, 7) is True
        assert like_comment(content_store, comment.id, 7) is False
        assert content_store.count_likes(comment.id) == 1
        assert content_store.has_liked(comment.id, 7)

    def test_likes_from_different_users(self, content_store: ContentStore, article: Article) -> None:
        comment = create_comment(content_store, article.id, 1, "popular")
        for user_id in (1, 2, 3):
            like_comment(content_store, comment.id, user_id)
        assert content_store.count_likes(comment.id) == 3
        assert content_store.like_counts_for_article(article.id) == {comment.id: 3}

    def test_concurrent_identical_likes_collapse(self, tmp_path) -> None:
        """Racing likes from one user on one comment: one row, one True."""
        store = ContentStore(f"sqlite:///{tmp_path / 'likes.db'}")
        try:
            article = store.create_article(Article(title="Race", body="b", author_id=1))
            comment = create_comment(store, article.id, 1, "contested")

            workers = 8
            barrier = threading.Barrier(workers)
            results: list[bool] = []
            unexpected: list[BaseException] = []

            def attempt() -> None:
                barrier.wait()
                try:
                    results.append(like_comment(store, comment.id, 42))
                except Exception as exc:
                    unexpected.append(exc)

            threads = [threading.Thread(target=attempt) for _ in range(workers)]
            for t in threads:
                t.start()
            for t in threads:
                t.join()

            assert unexpected == []
            assert results.count(True) == 1
            assert results.count(False) == workers - 1
            assert store.count_likes(comment.id) == 1
        finally:
            store.close()


class TestArticles:
    def test_slug_from_title(self) -> None:
        slug = slugify("Hello, World!  Again")
        assert slug.startswith("hello-world-again-")
        assert slugify("Hello") != slugify("Hello")

    def test_slug_for_symbol_only_title(self) -> None:
        assert slugify("!!!").startswith("article-")

    def test_lookup_by_slug(self, content_store: ContentStore, article: Article) -> None:
        assert content_store.get_article_by_slug(article.slug) == article
        assert content_store.get_article_by_slug("missing") is None

    def test_update_keeps_slug(self, content_store: ContentStore, article: Article) -> None:
        updated = content_store.update_article(article.id, title="Renamed", slug="ignored")
        assert updated.title == "Renamed"
        assert updated.slug == article.slug
        assert content_store.update_article(424242, title="x") is None

    def test_list_newest_first(self, content_store: ContentStore, article: Article) -> None:
        newer = content_store.create_article(Article(title="Newer", body="b", author_id=1))
        assert [a.id for a in content_store.list_articles()] == [newer.id, article.id]
        assert [a.id for a in content_store.list_articles(limit=1, offset=1)] == [article.id]

    def test_delete_removes_comments_and_likes(self, content_store: ContentStore, article: Article) -> None:
        root = create_comment(content_store, article.id, 1, "root")
        create_threaded_comment(content_store, root.id, 2, "reply")
        like_comment(content_store, root.id, 2)

        assert content_store.delete_article(article.id) is True
        assert content_store.get_article(article.id) is None
        assert content_store.count_comments(article.id) == 0
        assert content_store.count_likes(root.id) == 0
        assert content_store.delete_article(article.id) is False
