"""
auth/reset.py -- Single-use password reset.

State per identity:

  Active  -- reset_used = 0, no credential outstanding
  Issued  -- forgot_password() handed out a credential; reset_used stays 0
  Used    -- reset_password() committed; reset_used = 1 until the next
             forgot_password() re-arms the identity

forgot_password() rotates reset_nonce together with clearing reset_used, and
the nonce travels inside the credential. Re-arming therefore only revives the
newest credential: one that was already used, or superseded by a later
forgot-password call, keeps failing with TokenAlreadyUsed for the rest of its
15-minute lifetime.

The commit is one conditional UPDATE in UserStore.commit_password_reset(), so
two concurrent resets with the same credential produce exactly one winner.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from auth.models import Identity
from auth.store import UserStore
from auth.tokens import TokenService, hash_password
from core.errors import NotFound, TokenAlreadyUsed
from notify.mailer import Mail, reset_password_mail

logger = logging.getLogger("forsetti.auth.reset")


def forgot_password(
    users: UserStore,
    tokens: TokenService,
    notify: Callable[[Mail], None],
    email: str,
    reset_url: str,
) -> str:
    """Arm a reset for `email`, mail the link and return the issued credential.

    notify is called once with the reset mail. It is expected to schedule
    delivery rather than perform it, so delivery failures stay off this path.

    Raises NotFound if no identity has that email.
    """
    identity = users.get_by_email(email)
    if identity is None:
        raise NotFound("User does not exist")

    nonce = users.arm_password_reset(email)
    if nonce is None:
        raise NotFound("User does not exist")
    identity.reset_nonce = nonce
    identity.reset_used = False

    credential = tokens.issue_reset(identity)
    link = f"{reset_url}?token={credential}"
    ttl_minutes = int(tokens.reset_ttl.total_seconds() // 60)
    notify(reset_password_mail(identity.email, identity.firstname, link, ttl_minutes))
    logger.info("Password reset issued for user %s", identity.id)
    return credential


def reset_password(users: UserStore, tokens: TokenService, credential: str, new_password: str) -> Identity:
    """Consume a reset credential and store new_password.

    Raises:
        TokenInvalid / TokenExpired: the credential does not verify.
        NotFound: no identity matches the credential's id and email.
        TokenAlreadyUsed: the credential was used, superseded, or lost the
            race against a concurrent reset.
    """
    claims = tokens.verify_reset(credential)

    identity = users.get_by_id_and_email(claims.id, claims.email)
    if identity is None:
        raise NotFound("User does not exist")

    if identity.reset_used or identity.reset_nonce != claims.nonce:
        raise TokenAlreadyUsed()

    hashed = hash_password(new_password)
    if not users.commit_password_reset(identity.id, identity.email, claims.nonce, hashed):
        raise TokenAlreadyUsed()

    logger.info("Password reset committed for user %s", identity.id)
    identity.hashed_password = hashed
    identity.reset_used = True
    return identity
