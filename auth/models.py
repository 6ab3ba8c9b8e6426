"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, no I/O). Stores and routes do the
work; these types own the domain shape.

Credential claims are tagged per flavor (SessionClaims / ResetClaims) rather
than passed around as loose dicts. The "typ" discriminator is written into
every credential so a reset link cannot be replayed as a session token and
vice versa.

Layer rule: no imports from api/, content/, or notify/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar, Union

from core.errors import TokenInvalid


@dataclass
class Role:
    type: str  # "user", "admin"
    id: int | None = None


@dataclass
class Identity:
    """A registered user.

    reset_used is the single-use flag of the password-reset state machine.
    reset_nonce identifies the most recently issued reset credential; it is
    rotated by every forgot-password call.

    social is the provider name for identities created through social login,
    None for local sign-ups.
    """

    email: str
    firstname: str
    lastname: str
    hashed_password: str
    role_id: int | None = None
    role: str = "user"
    id: int | None = None
    reset_used: bool = False
    reset_nonce: str | None = None
    social: str | None = None
    image: str | None = None
    created_at: str | None = None
    updated_at: str | None = None


# ---------------------------------------------------------------------------
# Credential claims
# ---------------------------------------------------------------------------


def _require(claims: dict[str, Any], *names: str) -> list[Any]:
    missing = [n for n in names if n not in claims]
    if missing:
        raise TokenInvalid()
    return [claims[n] for n in names]


@dataclass(frozen=True)
class SessionClaims:
    """Claims carried by a long-lived session credential."""

    TYPE: ClassVar[str] = "session"

    id: int
    role_id: int | None

    def to_claims(self) -> dict[str, Any]:
        return {"typ": self.TYPE, "id": self.id, "role_id": self.role_id}

    @classmethod
    def from_claims(cls, claims: dict[str, Any]) -> "SessionClaims":
        typ, user_id, role_id = _require(claims, "typ", "id", "role_id")
        if typ != cls.TYPE:
            raise TokenInvalid()
        return cls(id=user_id, role_id=role_id)


@dataclass(frozen=True)
class ResetClaims:
    """Claims carried by a short-lived password-reset credential."""

    TYPE: ClassVar[str] = "reset"

    id: int
    email: str
    nonce: str

    def to_claims(self) -> dict[str, Any]:
        return {"typ": self.TYPE, "id": self.id, "email": self.email, "nonce": self.nonce}

    @classmethod
    def from_claims(cls, claims: dict[str, Any]) -> "ResetClaims":
        typ, user_id, email, nonce = _require(claims, "typ", "id", "email", "nonce")
        if typ != cls.TYPE:
            raise TokenInvalid()
        return cls(id=user_id, email=email, nonce=nonce)


# ---------------------------------------------------------------------------
# Social login
# ---------------------------------------------------------------------------


@dataclass
class SocialProfile:
    """Provider-neutral profile handed over by the social login flow.

    emails holds verified addresses only, primary first. photos holds avatar
    URLs, possibly empty.
    """

    external_id: str
    display_name: str
    provider: str
    emails: list[str] = field(default_factory=list)
    photos: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class SocialLoginSuccess:
    identity: Identity
    created: bool


@dataclass(frozen=True)
class MissingEmail:
    """The provider did not disclose a usable email address."""

    provider: str


SocialLoginResult = Union[SocialLoginSuccess, MissingEmail]
