"""
auth/tokens.py -- Signed credentials and password hashing.

Security design decisions:
  Credentials: python-jose with HS256. The caller's claims are nested under a
       single private claim ("clm") next to the registered iat/exp claims, so
       verify(issue(c, ttl)) returns c exactly -- no reserved names leak into
       or out of the caller's mapping. Expiry is checked against an injectable
       clock instead of jose's built-in check so tests can move time.

  Passwords: bcrypt directly (no passlib wrapper). The _DUMMY_HASH constant
       enables timing equalization in authenticate_user() so response time
       does not reveal whether an email is registered [C1].

  Verification is a pure function of the credential and the signing secret.
       It performs no I/O.

Layer rule: no imports from api/, content/, or notify/. Import from core/
is allowed -- core/ is the kernel and has no reverse dependencies.
"""

from __future__ import annotations

import base64
import binascii
import math
import secrets
from collections.abc import Callable, Mapping
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any

import bcrypt
from jose import JWTError, jwt

from auth.models import Identity, ResetClaims, SessionClaims
from core.errors import TokenExpired, TokenInvalid

if TYPE_CHECKING:
    from auth.store import UserStore
    from core.config import Settings


_ALGORITHM = "HS256"
_CLAIMS_KEY = "clm"

SESSION_TTL = timedelta(days=30)
RESET_TTL = timedelta(minutes=15)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _require_canonical_signature(credential: str) -> None:
    """Reject credentials whose signature segment is not in canonical base64url form.

    The final character of an HS256 signature carries two unused bits, and
    jose ignores them when decoding. Re-encoding the decoded bytes and
    comparing closes that gap: every altered character fails.
    """
    segments = credential.split(".")
    if len(segments) != 3:
        raise TokenInvalid()
    signature = segments[2]
    try:
        raw = base64.urlsafe_b64decode(signature + "=" * (-len(signature) % 4))
    except (binascii.Error, ValueError) as exc:
        raise TokenInvalid() from exc
    if base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii") != signature:
        raise TokenInvalid()


# ---------------------------------------------------------------------------
# Token service
# ---------------------------------------------------------------------------


class TokenService:
    """Issues and verifies signed, expiring credentials.

    Usage:
        tokens = TokenService(settings.secret_key)
        credential = tokens.issue({"id": 7}, timedelta(minutes=5))
        tokens.verify(credential)  # {"id": 7}
    """

    def __init__(
        self,
        secret_key: str,
        *,
        session_ttl: timedelta = SESSION_TTL,
        reset_ttl: timedelta = RESET_TTL,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._secret_key = secret_key
        self.session_ttl = session_ttl
        self.reset_ttl = reset_ttl
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: Settings) -> "TokenService":
        return cls(
            settings.secret_key,
            session_ttl=timedelta(days=settings.session_token_ttl_days),
            reset_ttl=timedelta(minutes=settings.reset_token_ttl_minutes),
        )

    def issue(self, claims: Mapping[str, Any], ttl: timedelta) -> str:
        """Return a signed credential binding claims to now + ttl."""
        issued_at = self._clock()
        payload = {
            _CLAIMS_KEY: dict(claims),
            "iat": int(issued_at.timestamp()),
            # Rounded up so a credential is never rejected before issued_at + ttl.
            "exp": math.ceil((issued_at + ttl).timestamp()),
        }
        return jwt.encode(payload, self._secret_key, algorithm=_ALGORITHM)

    def verify(self, credential: str) -> dict[str, Any]:
        """Return the claims a credential was issued with.

        Raises:
            TokenInvalid: signature mismatch, malformed credential, or a
                payload this service did not produce.
            TokenExpired: the current time is past the credential's expiry.
        """
        _require_canonical_signature(credential)
        try:
            payload = jwt.decode(
                credential,
                self._secret_key,
                algorithms=[_ALGORITHM],
                options={"verify_exp": False, "verify_iat": False},
            )
        except JWTError as exc:
            raise TokenInvalid() from exc

        claims = payload.get(_CLAIMS_KEY)
        expires_at = payload.get("exp")
        if not isinstance(claims, dict) or not isinstance(expires_at, int):
            raise TokenInvalid()
        if self._clock().timestamp() > expires_at:
            raise TokenExpired()
        return claims

    # ------------------------------------------------------------------
    # Flavored helpers
    # ------------------------------------------------------------------

    def issue_session(self, identity: Identity) -> str:
        return self.issue(SessionClaims(id=identity.id, role_id=identity.role_id).to_claims(), self.session_ttl)

    def verify_session(self, credential: str) -> SessionClaims:
        return SessionClaims.from_claims(self.verify(credential))

    def issue_reset(self, identity: Identity) -> str:
        claims = ResetClaims(id=identity.id, email=identity.email, nonce=identity.reset_nonce or "")
        return self.issue(claims.to_claims(), self.reset_ttl)

    def verify_reset(self, credential: str) -> ResetClaims:
        return ResetClaims.from_claims(self.verify(credential))


# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    bcrypt only reads the first 72 bytes; the API layer caps password length
    well below the point where that matters for realistic inputs.
    """
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


def random_password() -> str:
    """Unusable local password for identities created through social login."""
    return secrets.token_urlsafe(32)


# Timing equalization dummy hash [C1]. Computed once at module load.
_DUMMY_HASH: str = hash_password("forsetti_timing_dummy")


def authenticate_user(store: UserStore, email: str, password: str) -> Identity | None:
    """Check an email/password pair with timing equalization.

    Always runs bcrypt whether or not the email exists, so response time does
    not disclose registered addresses. Returns the Identity on success, None
    on any failure.
    """
    identity = store.get_by_email(email)
    if identity is None:
        verify_password(password, _DUMMY_HASH)
        return None
    if not verify_password(password, identity.hashed_password):
        return None
    return identity
