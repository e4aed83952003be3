"""
auth/tokens.py -- JWT issuance / validation and password hashing.

Security design decisions:
  JWT: python-jose with HS256. Tokens are signed with SECRET_KEY and carry
       the login as the subject, issued-at and expiry (10 hours by default).
       There is no refresh or revocation: a token is valid until it expires.

       validate_token() fails closed. Any parse error, bad signature, missing
       claim, subject mismatch or expiry (exp <= now) yields False, never an
       exception. extract_username() is the only function that raises, and
       only InvalidTokenError; callers treat that as "unauthenticated".

       Expiry is checked here rather than by jose because jose still accepts
       a token at the exact exp second. A token is valid strictly before exp.

  Passwords: bcrypt directly (no passlib wrapper). The _DUMMY_HASH constant
       enables timing equalization in authenticate_user() so response time
       does not reveal whether a login exists.

  SECRET_KEY: sourced from core.config.get_settings().

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING

import bcrypt
from jose import JWTError, jwt

from core.config import get_settings

if TYPE_CHECKING:
    from fleet.models import User
    from fleet.store import FleetStore

logger = logging.getLogger("carfleet.auth")

# ---------------------------------------------------------------------------
# Config -- read once at module load via the lru_cache singleton
# ---------------------------------------------------------------------------

_settings = get_settings()

_ALGORITHM = "HS256"

# Decoding never lets jose reject on exp; _is_expired() owns that decision.
_DECODE_OPTIONS = {"verify_exp": False}


class InvalidTokenError(Exception):
    """Raised by extract_username() when a token cannot be parsed or verified."""


# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    bcrypt rejects input longer than 72 bytes. FleetService checks the
    UTF-8 length before calling this, so callers see InvalidFields instead.
    """
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except (ValueError, TypeError):
        return False


# Computed once at module load so the first signin attempt is not measurably
# slower than the ones after it.
_DUMMY_HASH: str = hash_password("carfleet_timing_dummy")


# ---------------------------------------------------------------------------
# JWT encode / decode
# ---------------------------------------------------------------------------


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def create_access_token(username: str, now: datetime | None = None, expire_seconds: int = 0) -> str:
    """Encode a signed JWT for username.

    Args:
        username:       Login stored as the JWT subject claim.
        now:            Issue time. Defaults to the current UTC time.
        expire_seconds: Lifetime in seconds. If 0 (default), uses
                        Settings.token_expire_seconds.
    """
    issued_at = int((now or _utcnow()).timestamp())
    duration = expire_seconds if expire_seconds > 0 else _settings.token_expire_seconds
    payload = {
        "sub": username,
        "iat": issued_at,
        "exp": issued_at + duration,
    }
    return jwt.encode(payload, _settings.secret_key, algorithm=_ALGORITHM)


def _decode(token: str) -> dict:
    return jwt.decode(token, _settings.secret_key, algorithms=[_ALGORITHM], options=_DECODE_OPTIONS)


def _is_expired(payload: dict, now: datetime) -> bool:
    exp = payload.get("exp")
    if not isinstance(exp, (int, float)):
        return True
    return now.timestamp() >= exp


def extract_username(token: str) -> str:
    """Return the subject claim of a correctly signed token.

    Expiry is not checked here -- validate_token() does that. Raises
    InvalidTokenError on any parse or signature failure or a missing subject.
    """
    try:
        payload = _decode(token)
    except JWTError as exc:
        raise InvalidTokenError(str(exc)) from exc
    username = payload.get("sub")
    if not isinstance(username, str) or not username:
        raise InvalidTokenError("Token has no subject")
    return username


def validate_token(token: str, expected_username: str, now: datetime | None = None) -> bool:
    """Return True only if token is correctly signed, unexpired and issued to expected_username."""
    try:
        payload = _decode(token)
    except JWTError:
        return False
    if payload.get("sub") != expected_username:
        return False
    return not _is_expired(payload, now or _utcnow())


# ---------------------------------------------------------------------------
# User authentication (constant-time)
# ---------------------------------------------------------------------------


def authenticate_user(store: FleetStore, login: str, password: str) -> User | None:
    """Check a login/password pair with timing equalization.

    Always runs bcrypt whether or not the login exists:
    - Unknown login: bcrypt runs against _DUMMY_HASH (same cost as real check)
    - Wrong password: bcrypt runs against the real hash (same cost)

    Returns the User on success, None on any failure.
    """
    user = store.get_user_by_login(login)
    if user is None:
        verify_password(password, _DUMMY_HASH)
        return None
    if not verify_password(password, user.password):
        return None
    return user
