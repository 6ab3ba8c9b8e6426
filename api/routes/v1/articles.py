"""
api/routes/v1/articles.py -- Article, comment and comment-like endpoints.

Routes:
  POST   /api/v1/articles                                        -- create (auth)
  GET    /api/v1/articles                                        -- list, newest first (public)
  GET    /api/v1/articles/{slug}                                 -- read one (public)
  PUT    /api/v1/articles/{slug}                                 -- edit (author only)
  DELETE /api/v1/articles/{slug}                                 -- delete (author only)
  GET    /api/v1/articles/{slug}/comments                        -- comment forest (public)
  POST   /api/v1/articles/{slug}/comment                         -- start a thread (auth)
  POST   /api/v1/articles/{slug}/comment/{comment_id}/thread     -- reply (auth)
  POST   /api/v1/articles/comment/{comment_id}/like              -- like a comment (auth, idempotent)

Guard chains are declared once per route below. Existence guards always run
before check_author, and check_author always runs before the handler.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request
from fastapi.responses import JSONResponse

from api.models import ArticleCreate, ArticleOut, ArticleUpdate, CommentCreate, CommentOut, LikeOut, ThreadedCommentOut
from api.responses import respond
from auth.dependencies import guarded
from auth.guards import GuardContext, check_author, duplicate_guard, resource_exists, sign_in_auth, validate_body
from content.images import image_upload, remove_image
from content.models import Article
from content.threads import CommentThreads, create_comment, create_threaded_comment, like_comment
from core import errors
from core.errors import ParentNotFound

logger = logging.getLogger("forsetti.api.articles")

router = APIRouter()

article_exists = resource_exists("article", "slug")
comment_exists = resource_exists("comment", "comment_id")
parent_comment_exists = resource_exists("parent_comment", "comment_id", error=ParentNotFound)


# ---------------------------------------------------------------------------
# Articles
# ---------------------------------------------------------------------------


@router.post("/articles", status_code=201)
def create_article(
    request: Request,
    ctx: GuardContext = Depends(guarded(sign_in_auth, validate_body(ArticleCreate), image_upload)),
) -> JSONResponse:
    body: ArticleCreate = ctx.payload
    article = request.app.state.content.create_article(
        Article(
            title=body.title,
            description=body.description,
            body=body.body,
            image=body.image or None,
            author_id=ctx.identity.id,
        )
    )
    logger.info("User %s created article %s", ctx.identity.id, article.slug)
    return respond(201, "Article created successfully", [ArticleOut.from_article(article)])


@router.get("/articles")
def list_articles(
    request: Request,
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
) -> JSONResponse:
    articles = request.app.state.content.list_articles(limit=limit, offset=offset)
    return respond(200, "Articles retrieved", [ArticleOut.from_article(a) for a in articles])


@router.get("/articles/{slug}")
def get_article(ctx: GuardContext = Depends(guarded(article_exists))) -> JSONResponse:
    return respond(200, "Article retrieved", [ArticleOut.from_article(ctx.resource)])


@router.put("/articles/{slug}")
def edit_article(
    request: Request,
    ctx: GuardContext = Depends(
        guarded(sign_in_auth, article_exists, check_author, validate_body(ArticleUpdate), image_upload)
    ),
) -> JSONResponse:
    body: ArticleUpdate = ctx.payload
    changes = body.model_dump(exclude_none=True)
    if not changes:
        raise errors.ValidationError("No fields to update.")
    if "image" in changes:
        changes["image"] = changes["image"] or None

    article: Article = ctx.resource
    updated = request.app.state.content.update_article(article.id, **changes)
    if updated is None:
        # Deleted between the existence guard and this write.
        raise errors.NotFound("Article not found.")
    return respond(200, "Article updated successfully", [ArticleOut.from_article(updated)])


@router.delete("/articles/{slug}")
def delete_article(
    request: Request,
    background_tasks: BackgroundTasks,
    ctx: GuardContext = Depends(guarded(sign_in_auth, article_exists, check_author)),
) -> JSONResponse:
    article: Article = ctx.resource
    if not request.app.state.content.delete_article(article.id):
        raise errors.NotFound("Article not found.")
    if article.image:
        background_tasks.add_task(remove_image, request.app.state.images, article.image)
    logger.info("User %s deleted article %s", ctx.identity.id, article.slug)
    return respond(200, "Article deleted successfully")


# ---------------------------------------------------------------------------
# Comments
# ---------------------------------------------------------------------------


@router.get("/articles/{slug}/comments")
def list_comments(request: Request, ctx: GuardContext = Depends(guarded(article_exists))) -> JSONResponse:
    threads = CommentThreads(request.app.state.content, ctx.resource.id)
    return respond(200, "Comments retrieved", ThreadedCommentOut.from_forest(threads))


@router.post("/articles/{slug}/comment", status_code=201)
def create_comment_route(
    request: Request,
    ctx: GuardContext = Depends(guarded(sign_in_auth, article_exists, validate_body(CommentCreate))),
) -> JSONResponse:
    body: CommentCreate = ctx.payload
    comment = create_comment(request.app.state.content, ctx.resource.id, ctx.identity.id, body.text)
    return respond(201, "Comment created successfully", [CommentOut.from_comment(comment)])


@router.post("/articles/{slug}/comment/{comment_id}/thread", status_code=201)
def create_threaded_comment_route(
    request: Request,
    ctx: GuardContext = Depends(
        guarded(validate_body(CommentCreate), sign_in_auth, article_exists, parent_comment_exists)
    ),
) -> JSONResponse:
    body: CommentCreate = ctx.payload
    parent = ctx.resources["parent_comment"]
    article = ctx.resources["article"]
    comment = create_threaded_comment(
        request.app.state.content,
        parent.id,
        ctx.identity.id,
        body.text,
        article_id=article.id,
    )
    return respond(201, "Reply created successfully", [CommentOut.from_comment(comment)])


@router.post("/articles/comment/{comment_id}/like")
def like_comment_route(
    request: Request,
    ctx: GuardContext = Depends(guarded(sign_in_auth, comment_exists, duplicate_guard("like"))),
) -> JSONResponse:
    """Like a comment. Liking twice is not an error and stores nothing new."""
    store = request.app.state.content
    comment = ctx.resource
    if ctx.duplicate:
        created = False
    else:
        created = like_comment(store, comment.id, ctx.identity.id)
    message = "Comment liked" if created else "You have already liked this comment"
    return respond(200, message, [LikeOut(comment_id=comment.id, liked=True, like_count=store.count_likes(comment.id))])
