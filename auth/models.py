"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic beyond trivial
predicates). Mirrors social/models.py -- dataclasses own domain shape;
stores and routes do the work.

Layer rule: no imports from api/, cache/, or social/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class Role:
    """A privilege tier. Levels form a total order; higher level = more privilege.

    Seeded by UserStore at startup: user=1, moderator=2, admin=3.
    """

    name: str
    level: int
    description: str = ""
    id: int | None = None


@dataclass
class User:
    """A registered account.

    email is always stored lowercase. hashed_password is the bcrypt verifier;
    it is None on records that were loaded without it (get_by_id, cache
    snapshots) and is never serialized outward.

    email_verified_at is None until the activation token is redeemed. An
    unverified user can never log in: UserStore.get_by_email hides them.
    """

    email: str
    role: Role = field(default_factory=lambda: Role(name="user", level=1))
    id: int | None = None
    hashed_password: str | None = field(default=None, repr=False)
    email_verified_at: str | None = None  # ISO 8601, None = unverified
    created_at: str | None = None
    updated_at: str | None = None

    @property
    def is_verified(self) -> bool:
        return self.email_verified_at is not None

    def to_public_dict(self) -> dict[str, Any]:
        """Outward representation -- everything except the password verifier."""
        return {
            "id": self.id,
            "email": self.email,
            "email_verified_at": self.email_verified_at,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "role": {
                "id": self.role.id,
                "name": self.role.name,
                "level": self.role.level,
                "description": self.role.description,
            },
        }


@dataclass
class Invitation:
    """A one-time activation token, persisted only as its fingerprint.

    The plaintext token is handed to the caller once at registration (for
    email delivery) and never stored. Losing it means the invitation can
    never be redeemed.
    """

    token_hash: str  # SHA-256 hex of the plaintext token
    user_id: int
    expires_at: str  # ISO 8601 UTC
