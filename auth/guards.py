"""
auth/guards.py -- Ordered, short-circuiting request guards.

A guard is a plain function (GuardRequest, GuardContext) -> GuardContext | Halt.
It either passes an enriched copy of the context on to the next guard, or
halts the chain with a domain error. run_chain() executes guards strictly in
order and the first Halt wins: nothing after it runs, including the handler.

Contexts are frozen dataclasses. Guards enrich them with dataclasses.replace(),
so a guard can never observe a half-written context from another guard.

Ordering rule for routes: existence checks before ownership checks before the
mutating handler. check_author on a missing resource would otherwise answer
"forbidden" for something that does not exist.

Resource lookups are injected as callables in GuardContext.lookups, keyed by
resource kind. This keeps auth/ independent of content/: the API layer wires
"article" -> ContentStore.get_article_by_slug and so on.

Layer rule: no imports from api/, content/, or notify/. No FastAPI imports --
auth/dependencies.py adapts these guards to FastAPI's Depends().
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field, replace
from typing import Any, Union

import pydantic

from auth.models import Identity
from auth.store import UserStore
from auth.tokens import TokenService
from core import errors

logger = logging.getLogger("forsetti.auth.guards")


@dataclass(frozen=True)
class GuardRequest:
    """Read-only view of the inbound request that guards are allowed to see."""

    method: str = "GET"
    path: str = "/"
    path_params: Mapping[str, str] = field(default_factory=dict)
    query: Mapping[str, str] = field(default_factory=dict)
    headers: Mapping[str, str] = field(default_factory=dict)  # lower-cased names
    cookies: Mapping[str, str] = field(default_factory=dict)
    body: bytes = b""  # raw request body; validate_body parses it


@dataclass(frozen=True)
class GuardContext:
    """Collaborators plus everything earlier guards established.

    identity  -- set by sign_in_auth
    resource  -- the most recently resolved resource (resource_exists)
    resources -- every resolved resource keyed by kind
    duplicate -- set by duplicate_guard when the operation was already done
    payload   -- the validated request body (validate_body)
    """

    users: UserStore
    tokens: TokenService
    lookups: Mapping[str, Callable[..., Any]] = field(default_factory=dict)
    identity: Identity | None = None
    resource: Any = None
    resources: Mapping[str, Any] = field(default_factory=dict)
    duplicate: bool = False
    payload: Any = None


@dataclass(frozen=True)
class Halt:
    error: errors.AppError


Guard = Callable[[GuardRequest, GuardContext], Union[GuardContext, Halt]]


def run_chain(guards: Sequence[Guard], request: GuardRequest, context: GuardContext) -> GuardContext | Halt:
    """Run guards in order. Returns the final context, or the first Halt."""
    for guard in guards:
        outcome = guard(request, context)
        if isinstance(outcome, Halt):
            logger.info(
                "Guard %s halted %s %s: %s",
                getattr(guard, "__name__", repr(guard)),
                request.method,
                request.path,
                outcome.error.code,
            )
            return outcome
        context = outcome
    return context


# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------


def _extract_credential(request: GuardRequest) -> str | None:
    """Find the session credential: Bearer header first, then the auth cookie.

    A bare token in the Authorization header (no scheme) is accepted too,
    matching clients that send the raw credential.
    """
    auth_header = request.headers.get("authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:].strip() or None
    if auth_header:
        return auth_header.strip()
    return request.cookies.get("access_token") or None


def sign_in_auth(request: GuardRequest, context: GuardContext) -> GuardContext | Halt:
    """Verify the session credential and attach the identity it names."""
    credential = _extract_credential(request)
    if credential is None:
        return Halt(errors.Unauthorized())
    try:
        claims = context.tokens.verify_session(credential)
    except errors.TokenExpired:
        return Halt(errors.Unauthorized("Session has expired. Please sign in again."))
    except errors.TokenInvalid:
        return Halt(errors.Unauthorized("Invalid authentication token."))

    identity = context.users.get_by_id(claims.id)
    if identity is None:
        return Halt(errors.Unauthorized("User not found."))
    return replace(context, identity=identity)


def require_role(role_type: str) -> Guard:
    """Halt with Forbidden unless the signed-in identity holds role_type.

    Must run after sign_in_auth.
    """

    def require_role_guard(request: GuardRequest, context: GuardContext) -> GuardContext | Halt:
        if context.identity is None:
            return Halt(errors.Unauthorized())
        if context.identity.role != role_type:
            return Halt(errors.Forbidden(f"This action requires the {role_type} role."))
        return context

    require_role_guard.__name__ = f"require_role({role_type})"
    return require_role_guard


# ---------------------------------------------------------------------------
# Resources
# ---------------------------------------------------------------------------


def resource_exists(
    kind: str,
    param: str,
    error: type[errors.NotFound] = errors.NotFound,
) -> Guard:
    """Resolve path parameter `param` through lookups[kind] and attach the result.

    Halts with `error` (NotFound by default) when the lookup returns None or
    the parameter cannot be converted by the lookup or is out of the store's
    key range.
    """

    def resource_exists_guard(request: GuardRequest, context: GuardContext) -> GuardContext | Halt:
        lookup = context.lookups[kind]
        value = request.path_params.get(param)
        if value is None:
            return Halt(error())
        try:
            found = lookup(value)
        except (ValueError, OverflowError):
            # Not a key the store can hold: non-numeric, or outside the integer column range.
            found = None
        if found is None:
            return Halt(error(f"{kind.replace('_', ' ').capitalize()} not found."))
        return replace(context, resource=found, resources={**context.resources, kind: found})

    resource_exists_guard.__name__ = f"resource_exists({kind})"
    return resource_exists_guard


def check_author(request: GuardRequest, context: GuardContext) -> GuardContext | Halt:
    """Halt with Forbidden unless the signed-in identity authored the resource."""
    if context.identity is None:
        return Halt(errors.Unauthorized())
    if context.resource is None or context.identity.id != context.resource.author_id:
        return Halt(errors.Forbidden())
    return context


def duplicate_guard(kind: str) -> Guard:
    """Flag the context when lookups[kind](resource, identity) reports a prior record.

    Never halts. The handler reads context.duplicate to answer cheaply, but
    the underlying operation must stay idempotent on its own.
    """

    def duplicate_guard_fn(request: GuardRequest, context: GuardContext) -> GuardContext | Halt:
        if context.identity is None or context.resource is None:
            return context
        if context.lookups[kind](context.resource, context.identity):
            return replace(context, duplicate=True)
        return context

    duplicate_guard_fn.__name__ = f"duplicate_guard({kind})"
    return duplicate_guard_fn


# ---------------------------------------------------------------------------
# Input shape
# ---------------------------------------------------------------------------


def _describe(exc: pydantic.ValidationError) -> str:
    parts = []
    for err in exc.errors():
        location = ".".join(str(p) for p in err.get("loc", ())) or "body"
        parts.append(f"{location}: {err.get('msg', 'invalid')}")
    return "; ".join(parts)


def validate_body(model: type[pydantic.BaseModel]) -> Guard:
    """Parse the JSON body, validate it against a pydantic model and attach the instance.

    The body is parsed here rather than when the request is snapshotted, so a
    malformed body only matters once the chain reaches this guard.
    """

    def validate_body_guard(request: GuardRequest, context: GuardContext) -> GuardContext | Halt:
        try:
            data = json.loads(request.body) if request.body else {}
        except (UnicodeDecodeError, json.JSONDecodeError):
            return Halt(errors.ValidationError("Request body must be valid JSON."))
        try:
            payload = model.model_validate(data)
        except pydantic.ValidationError as exc:
            return Halt(errors.ValidationError(_describe(exc)))
        return replace(context, payload=payload)

    validate_body_guard.__name__ = f"validate_body({model.__name__})"
    return validate_body_guard
