"""
content/threads.py -- Comment forest and comment likes.

Every comment either starts a thread (parent_comment_id is None) or replies
to a comment that already exists on the same article. Comments are never
edited, so a new reply cannot close a loop: the parent graph is a forest and
every comment reaches a root in a finite number of hops.

Likes are a set of (comment_id, user_id) pairs. like_comment() is idempotent
whether or not the route's duplicate guard ran first; the unique constraint
in ContentStore is what makes it so.
"""

from __future__ import annotations

from collections.abc import Iterator
from typing import Optional

from content.models import Comment, CommentNode
from content.store import ContentStore
from core.errors import ParentNotFound


def create_comment(store: ContentStore, article_id: int, author_id: int, text: str) -> Comment:
    """Start a new thread on an article."""
    return store.create_comment(Comment(article_id=article_id, author_id=author_id, text=text))


def create_threaded_comment(
    store: ContentStore,
    parent_comment_id: int,
    author_id: int,
    text: str,
    article_id: Optional[int] = None,
) -> Comment:
    """Reply to an existing comment. The reply lives on the parent's article.

    Raises ParentNotFound if the parent does not exist, or if article_id is
    given and the parent belongs to a different article.
    """
    parent = store.get_comment(parent_comment_id)
    if parent is None or (article_id is not None and parent.article_id != article_id):
        raise ParentNotFound()
    return store.create_comment(
        Comment(
            article_id=parent.article_id,
            author_id=author_id,
            text=text,
            parent_comment_id=parent.id,
        )
    )


def like_comment(store: ContentStore, comment_id: int, user_id: int) -> bool:
    """Record that user_id likes comment_id. Returns False if it was already recorded."""
    return store.add_like(comment_id, user_id)


class CommentThreads:
    """Lazy, finite, restartable view of an article's comment forest.

    Iterating yields root CommentNodes, oldest first, each with its replies
    nested oldest first at every depth. Nothing is read until iteration
    starts, and every new iteration reads the current state of the store.

        for root in CommentThreads(store, article.id):
            ...
    """

    def __init__(self, store: ContentStore, article_id: int) -> None:
        self._store = store
        self._article_id = article_id

    def __iter__(self) -> Iterator[CommentNode]:
        like_counts = self._store.like_counts_for_article(self._article_id)
        nodes = [
            CommentNode(comment=c, like_count=like_counts.get(c.id, 0))
            for c in self._store.iter_article_comments(self._article_id)
        ]
        by_id = {node.comment.id: node for node in nodes}
        roots: list[CommentNode] = []
        # nodes is oldest first, so appending in this order keeps every
        # replies list oldest first too.
        for node in nodes:
            parent = by_id.get(node.comment.parent_comment_id)
            if parent is None:
                roots.append(node)
            else:
                parent.replies.append(node)
        yield from roots
