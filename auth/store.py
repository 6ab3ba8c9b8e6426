"""
auth/store.py -- SQLAlchemy Core persistence layer for identities and roles.

Pattern: Repository + Data Mapper. UserStore is the repository; _row_to_identity
is the mapper. Route, guard and reset code never touch SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

Concurrency:
  The password-reset commit is a single conditional UPDATE
  (WHERE reset_used = 0 AND reset_nonce = :nonce). Two concurrent commits for
  the same credential race inside the database; exactly one sees rowcount 1.
  No application-level locks are exposed.

DB path: auth/forsetti_auth.db unless DATABASE_URL is configured.

Layer rule: no imports from api/, content/, or notify/.
"""

from __future__ import annotations

import secrets
from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import Column, ForeignKey, Integer, MetaData, String, Table, Text, create_engine, event, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.models import Identity, Role
from core.errors import Conflict

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).parent / 'forsetti_auth.db'}"

DEFAULT_ROLE = "user"
_SEED_ROLES = ("user", "admin")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_roles = Table(
    "roles",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("type", String(30), nullable=False, unique=True),
)

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("firstname", String(100), nullable=False),
    Column("lastname", String(100), nullable=False, server_default=""),
    Column("hashed_password", Text, nullable=False),
    Column("role_id", Integer, ForeignKey("roles.id"), nullable=False),
    Column("reset_used", Integer, nullable=False, server_default="0"),  # boolean stored as 0/1
    Column("reset_nonce", String(64)),
    Column("social", String(30)),  # "github", "google"; NULL for local sign-ups
    Column("image", Text),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers are not blocked by the reset commit."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _identity_query():
    return select(_users, _roles.c.type.label("role")).join(_roles, _roles.c.id == _users.c.role_id)


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for Identity and Role entities.

    Usage:
        store = UserStore()
        user_id = store.create_user(Identity(email="a@x.com", firstname="A", lastname="B",
                                             hashed_password=hash_password("secret")))
        identity = store.get_by_email("a@x.com")
        store.close()
    """

    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)
        self._seed_roles()

    def _seed_roles(self) -> None:
        """Insert the built-in role types if they are missing. Idempotent."""
        with self.engine.connect() as conn:
            existing = {row.type for row in conn.execute(select(_roles.c.type))}
            for role_type in _SEED_ROLES:
                if role_type not in existing:
                    conn.execute(_roles.insert().values(type=role_type))
            conn.commit()

    # ------------------------------------------------------------------
    # Roles
    # ------------------------------------------------------------------

    def get_role_by_type(self, role_type: str) -> Role | None:
        with self.engine.connect() as conn:
            row = conn.execute(_roles.select().where(_roles.c.type == role_type)).fetchone()
        return Role(id=row.id, type=row.type) if row is not None else None

    # ------------------------------------------------------------------
    # Identity queries
    # ------------------------------------------------------------------

    def create_user(self, identity: Identity) -> int:
        """Insert a new identity and return its assigned database ID.

        identity.role_id falls back to the default "user" role.

        Raises Conflict if the email is already registered.
        """
        role_id = identity.role_id
        if role_id is None:
            role_id = self.get_role_by_type(DEFAULT_ROLE).id
        now = _now_iso()
        try:
            with self.engine.connect() as conn:
                result = conn.execute(
                    _users.insert().values(
                        email=identity.email,
                        firstname=identity.firstname,
                        lastname=identity.lastname,
                        hashed_password=identity.hashed_password,
                        role_id=role_id,
                        reset_used=1 if identity.reset_used else 0,
                        reset_nonce=identity.reset_nonce,
                        social=identity.social,
                        image=identity.image,
                        created_at=now,
                        updated_at=now,
                    )
                )
                conn.commit()
                return result.inserted_primary_key[0]
        except IntegrityError as exc:
            raise Conflict(f"A user with email {identity.email} already exists.") from exc

    def get_by_id(self, user_id: int) -> Identity | None:
        """Look up an identity by primary key. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_identity_query().where(_users.c.id == user_id)).fetchone()
        return _row_to_identity(row) if row is not None else None

    def get_by_email(self, email: str) -> Identity | None:
        """Look up an identity by exact email. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_identity_query().where(_users.c.email == email)).fetchone()
        return _row_to_identity(row) if row is not None else None

    def get_by_id_and_email(self, user_id: int, email: str) -> Identity | None:
        """Look up the identity a reset credential was issued for."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _identity_query().where((_users.c.id == user_id) & (_users.c.email == email))
            ).fetchone()
        return _row_to_identity(row) if row is not None else None

    def find_or_create(self, identity: Identity) -> tuple[Identity, bool]:
        """Return the identity registered under identity.email, creating it if absent.

        The second element is True when a new record was written. A concurrent
        insert of the same email surfaces as Conflict inside create_user(); the
        winner's record is returned instead.
        """
        existing = self.get_by_email(identity.email)
        if existing is not None:
            return existing, False
        try:
            user_id = self.create_user(identity)
        except Conflict:
            return self.get_by_email(identity.email), False
        return self.get_by_id(user_id), True

    def update_role(self, user_id: int, role_id: int) -> bool:
        """Point a user at a different role. Returns False if user_id was not found."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update().where(_users.c.id == user_id).values(role_id=role_id, updated_at=_now_iso())
            )
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Password reset
    # ------------------------------------------------------------------

    def arm_password_reset(self, email: str) -> str | None:
        """Rotate the reset nonce and clear reset_used for the given email.

        Returns the new nonce, or None if no identity has that email. Every
        credential issued before this call is superseded.
        """
        nonce = secrets.token_hex(16)
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update()
                .where(_users.c.email == email)
                .values(reset_used=0, reset_nonce=nonce, updated_at=_now_iso())
            )
            conn.commit()
        return nonce if result.rowcount > 0 else None

    def commit_password_reset(self, user_id: int, email: str, nonce: str, hashed_password: str) -> bool:
        """Store a new password and mark the reset as used, atomically.

        The UPDATE only matches while reset_used is still 0 and the nonce is
        the one the credential carries. Returns True for the single caller
        that flipped the flag, False for everyone else.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update()
                .where(
                    (_users.c.id == user_id)
                    & (_users.c.email == email)
                    & (_users.c.reset_used == 0)
                    & (_users.c.reset_nonce == nonce)
                )
                .values(hashed_password=hashed_password, reset_used=1, updated_at=_now_iso())
            )
            conn.commit()
        return result.rowcount == 1

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_identity(row) -> Identity:
    return Identity(
        id=row.id,
        email=row.email,
        firstname=row.firstname,
        lastname=row.lastname,
        hashed_password=row.hashed_password,
        role_id=row.role_id,
        role=row.role,
        reset_used=bool(row.reset_used),
        reset_nonce=row.reset_nonce,
        social=row.social,
        image=row.image,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
