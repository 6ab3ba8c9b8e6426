"""
auth/dependencies.py -- FastAPI Depends() adapter for guard chains.

Routes declare their guards in order:

    @router.put("/articles/{slug}")
    async def edit_article(ctx: GuardContext = Depends(guarded(sign_in_auth, article_exists, check_author))):
        ...

guarded() snapshots the request into a GuardRequest, builds the base
GuardContext from app.state, and runs the chain in the threadpool (guards
call the synchronous stores). A Halt is raised as its AppError; the
application's AppError handler renders it. Otherwise the handler receives the
enriched context and never re-fetches what the guards already resolved.

app.state must provide:
  user_store -- auth.store.UserStore
  tokens     -- auth.tokens.TokenService
  lookups    -- mapping of resource kind -> lookup callable (see auth/guards.py)

Layer rule: this module may import from fastapi/starlette because it is part
of the FastAPI dependency injection system. No imports from api/ or content/.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable

from fastapi import Request
from starlette.concurrency import run_in_threadpool

from auth.guards import Guard, GuardContext, GuardRequest, Halt, run_chain


async def build_guard_request(request: Request) -> GuardRequest:
    return GuardRequest(
        method=request.method,
        path=request.url.path,
        path_params=dict(request.path_params),
        query=dict(request.query_params),
        headers={k.lower(): v for k, v in request.headers.items()},
        cookies=dict(request.cookies),
        body=await request.body(),
    )


def base_context(request: Request) -> GuardContext:
    state = request.app.state
    return GuardContext(users=state.user_store, tokens=state.tokens, lookups=state.lookups)


def guarded(*guards: Guard) -> Callable[[Request], Awaitable[GuardContext]]:
    """Return a dependency that runs `guards` in order and yields the final context."""

    async def guard_chain(request: Request) -> GuardContext:
        guard_request = await build_guard_request(request)
        outcome = await run_in_threadpool(run_chain, guards, guard_request, base_context(request))
        if isinstance(outcome, Halt):
            raise outcome.error
        return outcome

    return guard_chain
