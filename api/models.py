"""
API request and response models for Forsetti REST endpoints.

These Pydantic v2 models define the HTTP transport contract. They are kept
separate from the dataclasses in auth/models.py and content/models.py, which
own the internal domain representation. The from_* factory methods map
between the two.

Every response, success or failure, is an Envelope: {status, message, data}
where data is always a list.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Generic, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator

from auth.models import Identity
from content.models import Article, Comment, CommentNode

T = TypeVar("T")

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"

# bcrypt reads at most 72 bytes and refuses longer input; max_length counts characters.
BCRYPT_MAX_BYTES = 72


def _fits_bcrypt(password: str) -> str:
    if len(password.encode("utf-8")) > BCRYPT_MAX_BYTES:
        raise ValueError(f"password must be at most {BCRYPT_MAX_BYTES} bytes when UTF-8 encoded")
    return password


# ---------------------------------------------------------------------------
# Envelope
# ---------------------------------------------------------------------------


class Envelope(BaseModel, Generic[T]):
    """Uniform response body. data is empty for errors and bare acknowledgements."""

    status: int
    message: str
    data: list[T] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class SignupRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    firstname: str = Field(min_length=1, max_length=100)
    lastname: str = Field(min_length=1, max_length=100)
    email: str = Field(pattern=EMAIL_PATTERN, max_length=255)
    password: str = Field(min_length=8, max_length=72)

    @field_validator("password")
    @classmethod
    def password_fits_bcrypt(cls, value: str) -> str:
        return _fits_bcrypt(value)


class SigninRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=255)


class ForgotPasswordRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(pattern=EMAIL_PATTERN, max_length=255)


class ResetPasswordRequest(BaseModel):
    password: str = Field(min_length=8, max_length=72)

    @field_validator("password")
    @classmethod
    def password_fits_bcrypt(cls, value: str) -> str:
        return _fits_bcrypt(value)


class RoleUpdateRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    newrole: str = Field(min_length=1, max_length=30)


class ArticleCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    title: str = Field(min_length=1, max_length=255)
    description: str = Field(default="", max_length=1000)
    body: str = Field(min_length=1)
    image: Optional[str] = Field(default=None, max_length=2048)


class ArticleUpdate(BaseModel):
    """All fields optional; at least one must be present."""

    model_config = ConfigDict(str_strip_whitespace=True)

    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, max_length=1000)
    body: Optional[str] = Field(default=None, min_length=1)
    image: Optional[str] = Field(default=None, max_length=2048)


class CommentCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    text: str = Field(min_length=1, max_length=5000)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserOut(BaseModel):
    id: int
    firstname: str
    lastname: str
    email: str

    @classmethod
    def from_identity(cls, identity: Identity) -> "UserOut":
        return cls(id=identity.id, firstname=identity.firstname, lastname=identity.lastname, email=identity.email)


class AuthPayload(BaseModel):
    token: str
    user: UserOut


class RoleChangeOut(BaseModel):
    id: int
    firstname: str
    lastname: str
    role: str
    updated_at: str


class ArticleOut(BaseModel):
    id: int
    slug: str
    title: str
    description: str
    body: str
    image: Optional[str]
    author_id: int
    created_at: str
    updated_at: str

    @classmethod
    def from_article(cls, article: Article) -> "ArticleOut":
        return cls(
            id=article.id,
            slug=article.slug,
            title=article.title,
            description=article.description,
            body=article.body,
            image=article.image,
            author_id=article.author_id,
            created_at=article.created_at,
            updated_at=article.updated_at,
        )


class CommentOut(BaseModel):
    id: int
    article_id: int
    author_id: int
    parent_comment_id: Optional[int]
    text: str
    created_at: str

    @classmethod
    def from_comment(cls, comment: Comment) -> "CommentOut":
        return cls(
            id=comment.id,
            article_id=comment.article_id,
            author_id=comment.author_id,
            parent_comment_id=comment.parent_comment_id,
            text=comment.text,
            created_at=comment.created_at,
        )


class ThreadedCommentOut(CommentOut):
    """One comment of the forest, flattened.

    The forest is sent as a depth-first list: each reply follows its parent
    and earlier siblings' subtrees, and depth counts hops from the root.
    parent_comment_id links the entries back into a tree. A flat list keeps
    serialization depth constant however deep a thread grows.
    """

    like_count: int = 0
    depth: int = 0
    reply_count: int = 0

    @classmethod
    def from_forest(cls, roots: Iterable[CommentNode]) -> list["ThreadedCommentOut"]:
        out: list[ThreadedCommentOut] = []
        stack = [(root, 0) for root in reversed(list(roots))]
        while stack:
            node, depth = stack.pop()
            out.append(
                cls(
                    **CommentOut.from_comment(node.comment).model_dump(),
                    like_count=node.like_count,
                    depth=depth,
                    reply_count=len(node.replies),
                )
            )
            stack.extend((reply, depth + 1) for reply in reversed(node.replies))
        return out


class LikeOut(BaseModel):
    comment_id: int
    liked: bool
    like_count: int


class HealthResponse(BaseModel):
    status: str = "healthy"
    version: str
