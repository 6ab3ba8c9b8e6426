"""
api/routes/v1/auth.py -- Account, credential and role endpoints.

Routes:
  POST  /api/v1/auth/signup                 -- register; 201 with a session credential
  POST  /api/v1/auth/signin                 -- password sign-in; 200 with a session credential
  POST  /api/v1/auth/forgotpassword         -- mail a 15-minute reset link
  POST  /api/v1/auth/resetpassword?token=   -- consume the reset credential (single use)
  PATCH /api/v1/users/{user_id}/role        -- change a user's role (admin only)
  GET   /api/v1/auth/{provider}             -- start social login (github, google)
  GET   /api/v1/auth/{provider}/callback    -- finish social login; redirects to the frontend

Mail is never sent on the request path: routes queue deliver() on
BackgroundTasks, and delivery failures are logged by the task.

Security:
  [C1] authenticate_user() provides timing equalization -- use it, never inline.
  [M5] Cache-Control: no-store on every response that carries a credential.
"""

from __future__ import annotations

import logging
from urllib.parse import urlencode

from authlib.integrations.starlette_client import OAuthError
from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request
from fastapi.responses import JSONResponse, RedirectResponse
from starlette.concurrency import run_in_threadpool

from api.models import AuthPayload, ForgotPasswordRequest, ResetPasswordRequest, RoleChangeOut, RoleUpdateRequest
from api.models import SigninRequest, SignupRequest, UserOut
from api.responses import respond
from auth.dependencies import guarded
from auth.guards import GuardContext, require_role, resource_exists, sign_in_auth, validate_body
from auth.models import Identity, MissingEmail
from auth.oauth import fetch_social_profile, social_login
from auth.reset import forgot_password, reset_password
from auth.tokens import authenticate_user, hash_password
from core import errors
from core.config import get_settings
from notify.mailer import deliver, signin_alert_mail, welcome_mail

logger = logging.getLogger("forsetti.api.auth")

router = APIRouter()

_NO_STORE = {"Cache-Control": "no-store"}  # [M5]


def _auth_payload(request: Request, identity: Identity) -> AuthPayload:
    token = request.app.state.tokens.issue_session(identity)
    return AuthPayload(token=token, user=UserOut.from_identity(identity))


# ---------------------------------------------------------------------------
# Local accounts
# ---------------------------------------------------------------------------


@router.post("/auth/signup", status_code=201)
def signup(
    request: Request,
    background_tasks: BackgroundTasks,
    ctx: GuardContext = Depends(guarded(validate_body(SignupRequest))),
) -> JSONResponse:
    """Create a local account with the default role. Duplicate email -> 409."""
    body: SignupRequest = ctx.payload
    user_id = ctx.users.create_user(
        Identity(
            email=body.email,
            firstname=body.firstname,
            lastname=body.lastname,
            hashed_password=hash_password(body.password),
        )
    )
    identity = ctx.users.get_by_id(user_id)
    logger.info("Registered user %s", user_id)

    background_tasks.add_task(deliver, request.app.state.notifier, welcome_mail(identity.email, identity.firstname))
    return respond(201, "User registered successfully", [_auth_payload(request, identity)], headers=_NO_STORE)


@router.post("/auth/signin")
def signin(
    request: Request,
    background_tasks: BackgroundTasks,
    ctx: GuardContext = Depends(guarded(validate_body(SigninRequest))),
) -> JSONResponse:
    """Exchange email and password for a 30-day session credential.

    The same InvalidCredentials answer covers unknown emails and wrong
    passwords.
    """
    body: SigninRequest = ctx.payload
    identity = authenticate_user(ctx.users, body.email, body.password)
    if identity is None:
        raise errors.InvalidCredentials()

    background_tasks.add_task(deliver, request.app.state.notifier, signin_alert_mail(identity.email, identity.firstname))
    return respond(200, "Signed in successfully", [_auth_payload(request, identity)], headers=_NO_STORE)


# ---------------------------------------------------------------------------
# Password reset
# ---------------------------------------------------------------------------


@router.post("/auth/forgotpassword")
def forgot_password_route(
    request: Request,
    background_tasks: BackgroundTasks,
    ctx: GuardContext = Depends(guarded(validate_body(ForgotPasswordRequest))),
) -> JSONResponse:
    """Mail a reset link. The response does not depend on mail delivery."""
    body: ForgotPasswordRequest = ctx.payload
    notifier = request.app.state.notifier
    reset_url = f"{get_settings().backend_url}api/v1/auth/resetpassword"
    forgot_password(
        ctx.users,
        ctx.tokens,
        lambda mail: background_tasks.add_task(deliver, notifier, mail),
        body.email,
        reset_url,
    )
    return respond(200, f"A reset password link has been sent to {body.email}. Please check your mail")


@router.post("/auth/resetpassword", status_code=201)
def reset_password_route(
    token: str = Query(min_length=1),
    ctx: GuardContext = Depends(guarded(validate_body(ResetPasswordRequest))),
) -> JSONResponse:
    """Set a new password with a reset credential. A second use -> 409."""
    body: ResetPasswordRequest = ctx.payload
    identity = reset_password(ctx.users, ctx.tokens, token, body.password)
    return respond(201, f"{identity.email} user password has been changed")


# ---------------------------------------------------------------------------
# Roles (admin only)
# ---------------------------------------------------------------------------


@router.patch("/users/{user_id}/role")
def update_user_role(
    ctx: GuardContext = Depends(
        guarded(
            sign_in_auth,
            require_role("admin"),
            resource_exists("user", "user_id"),
            validate_body(RoleUpdateRequest),
        )
    ),
) -> JSONResponse:
    body: RoleUpdateRequest = ctx.payload
    target: Identity = ctx.resource

    role = ctx.users.get_role_by_type(body.newrole)
    if role is None:
        raise errors.ValidationError(f"Unknown role: {body.newrole}")

    ctx.users.update_role(target.id, role.id)
    updated = ctx.users.get_by_id(target.id)
    logger.info("User %s changed role of user %s to %s", ctx.identity.id, target.id, role.type)
    result = RoleChangeOut(
        id=updated.id,
        firstname=updated.firstname,
        lastname=updated.lastname,
        role=updated.role,
        updated_at=updated.updated_at,
    )
    return respond(200, f"The user role has been changed to {role.type}.", [result])


# ---------------------------------------------------------------------------
# Social login
# ---------------------------------------------------------------------------


def _frontend_redirect(**params) -> RedirectResponse:
    url = f"{get_settings().frontend_url}/auth/social?{urlencode(params)}"
    return RedirectResponse(url, status_code=302, headers=_NO_STORE)


def _oauth_client(request: Request, provider: str):
    client = request.app.state.oauth.create_client(provider)
    if client is None:
        raise errors.NotFound(f"Unknown sign-in provider: {provider}")
    return client


@router.get("/auth/{provider}")
async def social_start(request: Request, provider: str):
    client = _oauth_client(request, provider)
    redirect_uri = request.url_for("social_callback", provider=provider)
    return await client.authorize_redirect(request, str(redirect_uri))


@router.get("/auth/{provider}/callback", name="social_callback")
async def social_callback(request: Request, provider: str) -> RedirectResponse:
    """Finish social login and send the browser back to the frontend.

    Missing email -> ?error=400. Provider failures -> ?error=401.
    Success -> ?token=<session credential>.
    """
    client = _oauth_client(request, provider)
    try:
        token = await client.authorize_access_token(request)
        profile = await fetch_social_profile(client, provider, token)
    except (OAuthError, ValueError) as exc:
        logger.warning("%s login failed: %s", provider, exc)
        return _frontend_redirect(error=401)

    result = await run_in_threadpool(social_login, request.app.state.user_store, profile)
    if isinstance(result, MissingEmail):
        return _frontend_redirect(error=400)
    return _frontend_redirect(token=request.app.state.tokens.issue_session(result.identity))
