"""
content/models.py -- Domain dataclasses for articles and comments.

Pure data containers. ContentStore persists them; content/threads.py owns
the comment-forest rules.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional


@dataclass
class Article:
    """A published article. id is None before the record is written."""

    title: str
    body: str
    author_id: int
    description: str = ""
    slug: str = ""
    image: Optional[str] = None
    id: Optional[int] = None
    created_at: str = ""  # ISO 8601, set by store on insert
    updated_at: str = ""


@dataclass
class Comment:
    """A comment on an article.

    parent_comment_id is None for a top-level comment. Otherwise it names an
    existing comment on the same article. Comments are never edited, so the
    parent graph stays a forest.
    """

    article_id: int
    author_id: int
    text: str
    parent_comment_id: Optional[int] = None
    id: Optional[int] = None
    created_at: str = ""


@dataclass
class CommentNode:
    """One comment with its like count and direct replies, oldest first."""

    comment: Comment
    like_count: int = 0
    replies: list["CommentNode"] = field(default_factory=list)
