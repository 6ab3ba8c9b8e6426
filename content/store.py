"""
content/store.py -- SQLAlchemy-backed persistence for articles, comments and likes.

Uses SQLAlchemy Core (not ORM) so the dataclasses in content/models.py remain
the authoritative domain representation.

Pattern: Repository + Data Mapper. ContentStore is the repository; the
_row_to_* functions are the mappers.

Likes carry UNIQUE(comment_id, user_id). add_like() relies on that
constraint rather than a read-then-write check, so concurrent identical
like requests collapse into one row.

Usage:
    store = ContentStore()                               # SQLite default
    store = ContentStore("postgresql://user:pw@host/db") # PostgreSQL
    article = store.create_article(Article(title="Hi", body="...", author_id=1))
    store.close()
"""

import re
import secrets
from collections.abc import Iterator
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from sqlalchemy import (
    Column,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    event,
    func,
    select,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from content.models import Article, Comment

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).parent / 'forsetti_content.db'}"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_articles = Table(
    "articles",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("slug", String(300), nullable=False, unique=True),
    Column("title", String(255), nullable=False),
    Column("description", Text, nullable=False, server_default=""),
    Column("body", Text, nullable=False),
    Column("image", Text),
    Column("author_id", Integer, nullable=False),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_comments = Table(
    "comments",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("article_id", Integer, ForeignKey("articles.id", ondelete="CASCADE"), nullable=False),
    Column("author_id", Integer, nullable=False),
    Column("parent_comment_id", Integer, ForeignKey("comments.id", ondelete="CASCADE")),
    Column("text", Text, nullable=False),
    Column("created_at", String(32), nullable=False),
)

_comment_likes = Table(
    "comment_likes",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("comment_id", Integer, ForeignKey("comments.id", ondelete="CASCADE"), nullable=False),
    Column("user_id", Integer, nullable=False),
    Column("created_at", String(32), nullable=False),
    UniqueConstraint("comment_id", "user_id", name="uq_comment_like"),
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


_SLUG_STRIP = re.compile(r"[^a-z0-9]+")


def slugify(title: str) -> str:
    """Lower-case, hyphen-separated title with a short random suffix.

    The suffix keeps slugs unique for articles that share a title.
    """
    base = _SLUG_STRIP.sub("-", title.lower()).strip("-")[:200] or "article"
    return f"{base}-{secrets.token_hex(4)}"


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """WAL for concurrent readers; foreign_keys so deletes cascade to comments and likes."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")
    dbapi_conn.execute("PRAGMA foreign_keys=ON")


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class ContentStore:
    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_sqlite_pragmas)
        metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Articles
    # ------------------------------------------------------------------

    def create_article(self, article: Article) -> Article:
        """Insert a new article, assigning slug and timestamps. Returns the stored record."""
        now = _now_iso()
        slug = article.slug or slugify(article.title)
        with self.engine.connect() as conn:
            result = conn.execute(
                _articles.insert().values(
                    slug=slug,
                    title=article.title,
                    description=article.description,
                    body=article.body,
                    image=article.image,
                    author_id=article.author_id,
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.commit()
            article_id = result.inserted_primary_key[0]
        return self.get_article(article_id)

    def get_article(self, article_id: int) -> Optional[Article]:
        with self.engine.connect() as conn:
            row = conn.execute(_articles.select().where(_articles.c.id == article_id)).fetchone()
        return _row_to_article(row) if row is not None else None

    def get_article_by_slug(self, slug: str) -> Optional[Article]:
        with self.engine.connect() as conn:
            row = conn.execute(_articles.select().where(_articles.c.slug == slug)).fetchone()
        return _row_to_article(row) if row is not None else None

    def list_articles(self, limit: int = 20, offset: int = 0) -> list[Article]:
        """Return articles newest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _articles.select()
                .order_by(_articles.c.created_at.desc(), _articles.c.id.desc())
                .limit(limit)
                .offset(offset)
            ).fetchall()
        return [_row_to_article(r) for r in rows]

    def update_article(self, article_id: int, **fields) -> Optional[Article]:
        """Update mutable fields (title, description, body, image).

        Returns the updated record, or None if article_id was not found. The
        slug is stable across edits so shared links keep working.
        """
        allowed = {k: v for k, v in fields.items() if k in {"title", "description", "body", "image"}}
        allowed["updated_at"] = _now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(_articles.update().where(_articles.c.id == article_id).values(**allowed))
            conn.commit()
        if result.rowcount == 0:
            return None
        return self.get_article(article_id)

    def delete_article(self, article_id: int) -> bool:
        """Delete an article with its comments and likes. Returns False if not found."""
        with self.engine.connect() as conn:
            comment_ids = select(_comments.c.id).where(_comments.c.article_id == article_id)
            conn.execute(_comment_likes.delete().where(_comment_likes.c.comment_id.in_(comment_ids)))
            conn.execute(_comments.delete().where(_comments.c.article_id == article_id))
            result = conn.execute(_articles.delete().where(_articles.c.id == article_id))
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Comments
    # ------------------------------------------------------------------

    def create_comment(self, comment: Comment) -> Comment:
        """Insert a comment and return the stored record.

        The caller is responsible for parent existence; the foreign key is the
        last line of defence.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _comments.insert().values(
                    article_id=comment.article_id,
                    author_id=comment.author_id,
                    parent_comment_id=comment.parent_comment_id,
                    text=comment.text,
                    created_at=_now_iso(),
                )
            )
            conn.commit()
            comment_id = result.inserted_primary_key[0]
        return self.get_comment(comment_id)

    def get_comment(self, comment_id) -> Optional[Comment]:
        """Look up a comment by id. Accepts path-parameter strings.

        Raises ValueError if comment_id is not an integer.
        """
        with self.engine.connect() as conn:
            row = conn.execute(_comments.select().where(_comments.c.id == int(comment_id))).fetchone()
        return _row_to_comment(row) if row is not None else None

    def iter_article_comments(self, article_id: int) -> Iterator[Comment]:
        """Yield every comment on an article, oldest first (id breaks ties)."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _comments.select()
                .where(_comments.c.article_id == article_id)
                .order_by(_comments.c.created_at.asc(), _comments.c.id.asc())
            ).fetchall()
        for row in rows:
            yield _row_to_comment(row)

    def count_comments(self, article_id: Optional[int] = None) -> int:
        query = select(func.count()).select_from(_comments)
        if article_id is not None:
            query = query.where(_comments.c.article_id == article_id)
        with self.engine.connect() as conn:
            return conn.execute(query).scalar() or 0

    # ------------------------------------------------------------------
    # Likes
    # ------------------------------------------------------------------

    def add_like(self, comment_id: int, user_id: int) -> bool:
        """Record a like. Returns False when (comment_id, user_id) already exists."""
        try:
            with self.engine.connect() as conn:
                conn.execute(
                    _comment_likes.insert().values(comment_id=comment_id, user_id=user_id, created_at=_now_iso())
                )
                conn.commit()
        except IntegrityError:
            return False
        return True

    def has_liked(self, comment_id: int, user_id: int) -> bool:
        with self.engine.connect() as conn:
            row = conn.execute(
                select(_comment_likes.c.id).where(
                    (_comment_likes.c.comment_id == comment_id) & (_comment_likes.c.user_id == user_id)
                )
            ).fetchone()
        return row is not None

    def count_likes(self, comment_id: int) -> int:
        with self.engine.connect() as conn:
            return (
                conn.execute(
                    select(func.count()).select_from(_comment_likes).where(_comment_likes.c.comment_id == comment_id)
                ).scalar()
                or 0
            )

    def like_counts_for_article(self, article_id: int) -> dict[int, int]:
        """Return {comment_id: like_count} for every liked comment on an article."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(_comment_likes.c.comment_id, func.count().label("like_count"))
                .join(_comments, _comments.c.id == _comment_likes.c.comment_id)
                .where(_comments.c.article_id == article_id)
                .group_by(_comment_likes.c.comment_id)
            ).fetchall()
        return {row.comment_id: int(row.like_count) for row in rows}

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_article(row) -> Article:
    return Article(
        id=row.id,
        slug=row.slug,
        title=row.title,
        description=row.description,
        body=row.body,
        image=row.image,
        author_id=row.author_id,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_comment(row) -> Comment:
    return Comment(
        id=row.id,
        article_id=row.article_id,
        author_id=row.author_id,
        parent_comment_id=row.parent_comment_id,
        text=row.text,
        created_at=row.created_at,
    )
