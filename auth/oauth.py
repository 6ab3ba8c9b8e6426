"""
auth/oauth.py -- Authlib social-login providers and profile mapping.

Reads configuration from core.config.get_settings() at module load to decide
which providers are active. Only providers with both client ID and secret
configured get registered.

The provider-specific responses are normalized into a SocialProfile; the
rest of the system only ever sees that shape. social_login() maps a profile
to an Identity by email (find-or-create) and returns a result variant
instead of calling a completion callback:

  SocialLoginSuccess(identity, created) -- an identity is ready for a session.
  MissingEmail(provider)                -- the provider disclosed no verified
                                           email; the callback redirects the
                                           browser with an error marker.

Security notes:
  Only verified emails are accepted. An unverified address on a provider
  account could belong to somebody else, and email is the join key.

  OAuth state (CSRF protection) is handled by authlib via Starlette's
  SessionMiddleware.

Layer rule: no imports from api/ or content/.
"""

from __future__ import annotations

import logging

from authlib.integrations.starlette_client import OAuth

from auth.models import Identity, MissingEmail, SocialLoginResult, SocialLoginSuccess, SocialProfile
from auth.store import UserStore
from auth.tokens import hash_password, random_password
from core.config import get_settings

logger = logging.getLogger("forsetti.auth.oauth")

# ---------------------------------------------------------------------------
# Authlib OAuth registry
# ---------------------------------------------------------------------------

oauth = OAuth()

_cfg = get_settings()

# GitHub -- static endpoints (no OIDC discovery document)
if _cfg.github_client_id and _cfg.github_client_secret:
    oauth.register(
        name="github",
        client_id=_cfg.github_client_id,
        client_secret=_cfg.github_client_secret,
        access_token_url="https://github.com/login/oauth/access_token",  # noqa: S106 -- URL, not a password
        authorize_url="https://github.com/login/oauth/authorize",
        api_base_url="https://api.github.com/",
        client_kwargs={"scope": "read:user user:email"},
    )
    logger.info("GitHub OAuth provider registered")

# Google -- OIDC discovery
if _cfg.google_client_id and _cfg.google_client_secret:
    oauth.register(
        name="google",
        client_id=_cfg.google_client_id,
        client_secret=_cfg.google_client_secret,
        server_metadata_url="https://accounts.google.com/.well-known/openid-configuration",
        client_kwargs={"scope": "openid email profile"},
    )
    logger.info("Google OAuth provider registered")


# ---------------------------------------------------------------------------
# Profile normalization
# ---------------------------------------------------------------------------


async def fetch_social_profile(client, provider: str, token: dict) -> SocialProfile:
    """Build a SocialProfile from a provider token response.

    Raises ValueError for an unknown provider or a response without a stable
    subject id. A missing email is NOT an error here -- it is reported by
    social_login() as MissingEmail.
    """
    if provider == "github":
        return await _github_profile(client, token)
    if provider == "google":
        return _google_profile(token)
    raise ValueError(f"Unknown OAuth provider: {provider!r}")


async def _github_profile(client, token: dict) -> SocialProfile:
    """GitHub needs two calls: GET /user for the id, GET /user/emails for addresses.

    Only verified emails are kept, primary first.
    """
    resp = await client.get("user", token=token)
    resp.raise_for_status()
    user = resp.json()

    emails_resp = await client.get("user/emails", token=token)
    emails_resp.raise_for_status()
    entries = [e for e in emails_resp.json() if e.get("verified") and e.get("email")]
    entries.sort(key=lambda e: not e.get("primary"))

    return SocialProfile(
        external_id=str(user["id"]),
        display_name=user.get("name") or user.get("login") or "",
        provider="github",
        emails=[e["email"] for e in entries],
        photos=[user["avatar_url"]] if user.get("avatar_url") else [],
    )


def _google_profile(token: dict) -> SocialProfile:
    userinfo = token.get("userinfo")
    if not userinfo or not userinfo.get("sub"):
        raise ValueError("google OAuth: no userinfo in token response")

    emails = []
    if userinfo.get("email") and userinfo.get("email_verified", False):
        emails.append(userinfo["email"])
    return SocialProfile(
        external_id=str(userinfo["sub"]),
        display_name=userinfo.get("name", ""),
        provider="google",
        emails=emails,
        photos=[userinfo["picture"]] if userinfo.get("picture") else [],
    )


# ---------------------------------------------------------------------------
# Profile -> Identity
# ---------------------------------------------------------------------------


def social_login(users: UserStore, profile: SocialProfile) -> SocialLoginResult:
    """Find or create the identity for a social profile, keyed by email.

    New identities get the first two words of the display name as first and
    last name, the first photo as image, and an unusable random password.
    """
    if not profile.emails:
        logger.info("%s login without a verified email (subject %s)", profile.provider, profile.external_id)
        return MissingEmail(provider=profile.provider)

    names = profile.display_name.split()
    candidate = Identity(
        email=profile.emails[0],
        firstname=names[0] if names else profile.emails[0].split("@")[0],
        lastname=names[1] if len(names) > 1 else "",
        hashed_password=hash_password(random_password()),
        social=profile.provider,
        image=profile.photos[0] if profile.photos else None,
    )
    identity, created = users.find_or_create(candidate)
    if created:
        logger.info("Created user %s from %s login", identity.id, profile.provider)
    return SocialLoginSuccess(identity=identity, created=created)
