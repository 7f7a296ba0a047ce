"""
auth/tokens.py -- Session JWTs, password hashing, and one-time invitation tokens.

Security design decisions:
  JWT: python-jose with HS256. Session tokens carry sub (user id as a string),
       iat, nbf, exp, iss and aud. Issuer and audience are fixed per deployment
       and both are checked on validation. Any validation failure raises
       AuthenticationError with the same uniform message -- the caller never
       learns whether the signature, the expiry or the audience was wrong.

  Passwords: bcrypt directly (no passlib wrapper). The _DUMMY_HASH constant
       enables timing equalization in authenticate_user() so response time
       does not reveal whether an email is registered [C1].

  Invitation tokens: uuid4 plaintext (122 random bits from os.urandom).
       Only fingerprint(token) -- SHA-256 hex -- is ever persisted. A plain
       digest is enough here: the input is high-entropy, so it cannot be
       brute-forced the way a password could. Deterministic hashing gives O(1)
       lookup by fingerprint inside the activation transaction.

Layer rule: no imports from api/, cache/, or social/. Import from core/ is allowed.
"""

from __future__ import annotations

import hashlib
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any

import bcrypt
from jose import JWTError, jwt

from core.errors import AuthenticationError, NotFoundError

if TYPE_CHECKING:
    from auth.models import User
    from auth.store import UserStore
    from core.config import Settings

logger = logging.getLogger("socialfeed.auth")

_ALGORITHM = "HS256"

# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    bcrypt truncates input beyond 72 bytes. The API layer caps passwords at
    72 characters (Pydantic field), which keeps ASCII input below the limit.
    """
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Malformed stored hash or over-long input.
        return False


# Timing equalization dummy hash [C1]. Computed once at module load so the
# first login attempt is not measurably slower than subsequent ones.
_DUMMY_HASH: str = hash_password("socialfeed_timing_dummy")


# ---------------------------------------------------------------------------
# Invitation tokens
# ---------------------------------------------------------------------------


def generate_invitation_token() -> str:
    """Return a fresh plaintext activation token (uuid4 string)."""
    return str(uuid.uuid4())


def fingerprint(plaintext_token: str) -> str:
    """Return the storable SHA-256 hex fingerprint of a plaintext token."""
    return hashlib.sha256(plaintext_token.encode("utf-8")).hexdigest()


# ---------------------------------------------------------------------------
# Session tokens
# ---------------------------------------------------------------------------


class Authenticator:
    """Issues and validates signed session tokens for one deployment.

    Usage:
        authenticator = Authenticator.from_settings(get_settings())
        token = authenticator.issue(user.id)
        claims = authenticator.validate(token)     # raises AuthenticationError
        user_id = authenticator.subject_id(claims)
    """

    def __init__(self, secret_key: str, issuer: str, audience: str, expire_seconds: int) -> None:
        self._secret_key = secret_key
        self.issuer = issuer
        self.audience = audience
        self.expire_seconds = expire_seconds

    @classmethod
    def from_settings(cls, settings: Settings) -> Authenticator:
        return cls(
            secret_key=settings.secret_key,
            issuer=settings.token_issuer,
            audience=settings.token_audience,
            expire_seconds=settings.token_expire_seconds,
        )

    def issue(self, user_id: int, expire_seconds: int = 0) -> str:
        """Issue a session token for user_id.

        expire_seconds overrides the configured session lifetime when > 0.
        """
        now = datetime.now(timezone.utc)
        duration = expire_seconds if expire_seconds > 0 else self.expire_seconds
        claims = {
            "sub": str(user_id),
            "iat": now,
            "nbf": now,
            "exp": now + timedelta(seconds=duration),
            "iss": self.issuer,
            "aud": self.audience,
        }
        return self.issue_claims(claims)

    def issue_claims(self, claims: dict[str, Any]) -> str:
        """Sign an arbitrary claim set. Datetime values are encoded as NumericDate."""
        return jwt.encode(claims, self._secret_key, algorithm=_ALGORITHM)

    def validate(self, token: str) -> dict[str, Any]:
        """Verify signature, exp, nbf, iss and aud. Returns the claims dict.

        Every registered claim that issue() writes is required: python-jose
        skips the iss and aud checks when those claims are absent. Raises
        AuthenticationError on any failure, including a missing or non-numeric
        subject.
        """
        try:
            claims = jwt.decode(
                token,
                self._secret_key,
                algorithms=[_ALGORITHM],
                audience=self.audience,
                issuer=self.issuer,
                options={
                    "require_exp": True,
                    "require_sub": True,
                    "require_aud": True,
                    "require_iss": True,
                    "require_nbf": True,
                    "require_iat": True,
                },
            )
        except JWTError as exc:
            raise AuthenticationError() from exc
        try:
            int(claims["sub"])
        except (KeyError, TypeError, ValueError) as exc:
            raise AuthenticationError() from exc
        return claims

    @staticmethod
    def subject_id(claims: dict[str, Any]) -> int:
        """Return the user id carried by validated claims."""
        return int(claims["sub"])


# ---------------------------------------------------------------------------
# Login (constant-time) [C1]
# ---------------------------------------------------------------------------


def authenticate_user(store: UserStore, email: str, password: str) -> User | None:
    """Authenticate an email/password login with timing equalization.

    Always runs bcrypt whether or not the account exists or is verified:
    - Unknown or unverified email: bcrypt runs against _DUMMY_HASH
    - Wrong password: bcrypt runs against the real hash

    Returns the User on success, None on any credential failure.
    StorageUnavailableError propagates -- an outage is not a bad password.
    """
    try:
        user = store.get_by_email(email)
    except NotFoundError:
        verify_password(password, _DUMMY_HASH)
        return None
    if user.hashed_password is None:
        verify_password(password, _DUMMY_HASH)
        return None
    if not verify_password(password, user.hashed_password):
        return None
    return user
