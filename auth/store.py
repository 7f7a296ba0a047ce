"""
auth/store.py -- SQLAlchemy Core persistence layer for accounts, roles and invitations.

Pattern: Repository + Data Mapper (same as social/store.py).
UserStore is the repository; _row_to_user / _row_to_role are the mappers.
Route and dependency code never touches SQL directly.

Transactional workflows:
  create_and_invite() -- role lookup, user insert and invitation insert run in
      one engine.begin() block. Any failure rolls back all of it: there is
      never a user without its invitation or an invitation without its user.

  activate() -- the invitation is consumed with DELETE ... RETURNING as the
      first statement of the transaction, filtered on fingerprint AND expiry.
      Two concurrent redemptions of the same token serialize on that row: the
      first deletes it and verifies the user, the second finds nothing and
      gets NotFoundError. Wrong token and expired token are indistinguishable.

Security:
  All queries use bound parameters. No f-strings in SQL.
  get_by_email() hides unverified accounts behind the same NotFoundError as
  absent ones -- no login before verification, no account enumeration.

Error classification (at this boundary, never above it):
  IntegrityError on the users insert   -> DuplicateEmailError
  OperationalError / pool timeout      -> StorageUnavailableError
  no matching row                      -> NotFoundError

Layer rule: no imports from api/, cache/, or social/.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy import Column, Integer, String, Table, Text, UniqueConstraint, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.models import Invitation, Role, User
from auth.tokens import fingerprint
from core.config import get_settings
from core.database import DEFAULT_TIMEOUT_SECONDS, build_engine, iso, metadata, now_iso, storage_errors
from core.errors import DuplicateEmailError, NotFoundError

logger = logging.getLogger("socialfeed.auth.store")

# Seeded on every startup; insert-if-missing so it is safe to re-run.
DEFAULT_ROLES: tuple[Role, ...] = (
    Role(name="user", level=1, description="A user can create posts and comments"),
    Role(name="moderator", level=2, description="A moderator can update other users posts"),
    Role(name="admin", level=3, description="An admin can update and delete other users posts"),
)

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_roles = Table(
    "roles",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(50), nullable=False, unique=True),
    Column("level", Integer, nullable=False),
    Column("description", Text),
)

users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False),
    Column("hashed_password", Text, nullable=False),
    Column("role_id", Integer, nullable=False),
    Column("email_verified_at", String(32)),  # NULL = unverified
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    UniqueConstraint("email", name="uq_users_email"),
)

_invitations = Table(
    "user_invitations",
    metadata,
    Column("token_hash", String(64), primary_key=True),  # SHA-256 hex
    Column("user_id", Integer, nullable=False, index=True),
    Column("expires_at", String(32), nullable=False),
)

# Users joined to their role. Role columns are labelled to avoid clashing with users.id.
_user_with_role = select(
    users.c.id,
    users.c.email,
    users.c.hashed_password,
    users.c.email_verified_at,
    users.c.created_at,
    users.c.updated_at,
    _roles.c.id.label("role_id"),
    _roles.c.name.label("role_name"),
    _roles.c.level.label("role_level"),
    _roles.c.description.label("role_description"),
).join_from(users, _roles, users.c.role_id == _roles.c.id)


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User, Role and Invitation entities.

    Usage:
        store = UserStore()                                  # settings.database_url
        store = UserStore("postgresql://user:pw@host/db")    # explicit URL
        user = store.create_and_invite(User(email="a@x.com", hashed_password=...), token, timedelta(days=3))
        store.activate(token)
        user = store.get_by_email("a@x.com")
        store.close()
    """

    def __init__(
        self,
        db_url: str | None = None,
        *,
        engine: Engine | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        if engine is None:
            engine = build_engine(db_url or get_settings().database_url, timeout)
        self.engine: Engine = engine
        with storage_errors("schema setup"):
            metadata.create_all(self.engine)
            self._seed_roles()

    def _seed_roles(self) -> None:
        with self.engine.begin() as conn:
            existing = set(conn.execute(select(_roles.c.name)).scalars())
            for role in DEFAULT_ROLES:
                if role.name not in existing:
                    conn.execute(
                        _roles.insert().values(name=role.name, level=role.level, description=role.description)
                    )

    # ------------------------------------------------------------------
    # Registration workflow
    # ------------------------------------------------------------------

    def create_and_invite(self, user: User, plaintext_token: str, invitation_ttl: timedelta) -> User:
        """Create an unverified user and its one-time invitation atomically.

        The user's role is resolved by user.role.name inside the transaction.
        Only fingerprint(plaintext_token) is written; the plaintext stays with
        the caller for out-of-band delivery.

        Returns a new User populated with id, timestamps and the resolved role.
        Raises DuplicateEmailError if the (lowercased) email is taken,
        NotFoundError if the role name is unknown.
        """
        if user.hashed_password is None:
            raise ValueError("create_and_invite requires a hashed password")
        email = user.email.strip().lower()
        now = datetime.now(timezone.utc)
        created_at = iso(now)

        with storage_errors("create_and_invite"):
            try:
                with self.engine.begin() as conn:
                    role_row = conn.execute(select(_roles).where(_roles.c.name == user.role.name)).fetchone()
                    if role_row is None:
                        raise NotFoundError(f"role {user.role.name!r} not found")
                    result = conn.execute(
                        users.insert().values(
                            email=email,
                            hashed_password=user.hashed_password,
                            role_id=role_row.id,
                            email_verified_at=None,
                            created_at=created_at,
                            updated_at=created_at,
                        )
                    )
                    user_id = result.inserted_primary_key[0]
                    invitation = Invitation(
                        token_hash=fingerprint(plaintext_token),
                        user_id=user_id,
                        expires_at=iso(now + invitation_ttl),
                    )
                    conn.execute(
                        _invitations.insert().values(
                            token_hash=invitation.token_hash,
                            user_id=invitation.user_id,
                            expires_at=invitation.expires_at,
                        )
                    )
            except IntegrityError as exc:
                raise DuplicateEmailError() from exc

        logger.info("Registered user %d (verification pending)", user_id)
        return User(
            id=user_id,
            email=email,
            hashed_password=user.hashed_password,
            role=_row_to_role(role_row),
            email_verified_at=None,
            created_at=created_at,
            updated_at=created_at,
        )

    def activate(self, plaintext_token: str) -> int:
        """Redeem an invitation: verify its user and consume it, atomically.

        Returns the activated user's id. Raises NotFoundError when no live
        invitation matches -- wrong token, expired token and already-consumed
        token are deliberately indistinguishable.
        """
        token_hash = fingerprint(plaintext_token)
        now = now_iso()
        with storage_errors("activate"):
            with self.engine.begin() as conn:
                consumed = conn.execute(
                    _invitations.delete()
                    .where((_invitations.c.token_hash == token_hash) & (_invitations.c.expires_at > now))
                    .returning(_invitations.c.user_id)
                ).first()
                if consumed is None:
                    raise NotFoundError()
                user_id = consumed.user_id
                updated = conn.execute(
                    users.update().where(users.c.id == user_id).values(email_verified_at=now, updated_at=now)
                )
                if updated.rowcount == 0:
                    # Orphaned invitation; raising rolls the delete back too.
                    raise NotFoundError()
                # Any other outstanding invitations for this user are now moot.
                conn.execute(_invitations.delete().where(_invitations.c.user_id == user_id))
        logger.info("Activated user %d", user_id)
        return user_id

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_by_email(self, email: str) -> User:
        """Look up a VERIFIED user by email (case-insensitive), including the password hash.

        Unverified and absent accounts both raise NotFoundError.
        """
        with storage_errors("get_by_email"):
            with self.engine.connect() as conn:
                row = conn.execute(
                    _user_with_role.where(
                        (users.c.email == email.strip().lower()) & (users.c.email_verified_at.is_not(None))
                    )
                ).fetchone()
        if row is None:
            raise NotFoundError()
        return _row_to_user(row, with_password=True)

    def get_by_id(self, user_id: int) -> User:
        """Look up a user by primary key. The password hash is not loaded."""
        with storage_errors("get_by_id"):
            with self.engine.connect() as conn:
                row = conn.execute(_user_with_role.where(users.c.id == user_id)).fetchone()
        if row is None:
            raise NotFoundError()
        return _row_to_user(row, with_password=False)

    def get_role_by_name(self, name: str) -> Role:
        with storage_errors("get_role_by_name"):
            with self.engine.connect() as conn:
                row = conn.execute(select(_roles).where(_roles.c.name == name)).fetchone()
        if row is None:
            raise NotFoundError(f"role {name!r} not found")
        return _row_to_role(row)

    def list_roles(self) -> list[Role]:
        """Return all roles, least privileged first."""
        with storage_errors("list_roles"):
            with self.engine.connect() as conn:
                rows = conn.execute(select(_roles).order_by(_roles.c.level)).fetchall()
        return [_row_to_role(r) for r in rows]

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    def set_role(self, user_id: int, role_name: str) -> User:
        """Assign a different role to a user. Used by the CLI (main.py set-role).

        Cached snapshots of the user keep the old role until their TTL expires.
        """
        now = now_iso()
        with storage_errors("set_role"):
            with self.engine.begin() as conn:
                role_row = conn.execute(select(_roles).where(_roles.c.name == role_name)).fetchone()
                if role_row is None:
                    raise NotFoundError(f"role {role_name!r} not found")
                result = conn.execute(
                    users.update().where(users.c.id == user_id).values(role_id=role_row.id, updated_at=now)
                )
                if result.rowcount == 0:
                    raise NotFoundError()
        return self.get_by_id(user_id)

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_role(row) -> Role:
    return Role(id=row.id, name=row.name, level=row.level, description=row.description or "")


def _row_to_user(row, with_password: bool) -> User:
    return User(
        id=row.id,
        email=row.email,
        hashed_password=row.hashed_password if with_password else None,
        email_verified_at=row.email_verified_at,
        created_at=row.created_at,
        updated_at=row.updated_at,
        role=Role(
            id=row.role_id,
            name=row.role_name,
            level=row.role_level,
            description=row.role_description or "",
        ),
    )
