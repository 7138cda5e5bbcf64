"""
auth/tokens.py -- JWT and password hashing utilities.

Security design decisions:
  JWT: python-jose with HS256. Tokens are signed with SECRET_KEY and carry
       account_id, username, is_admin and expiry. Verification returns None on
       any failure -- route layer turns that into a 401.

  Passwords: bcrypt directly. Bcrypt is the right choice for low-entropy
       secrets (passwords) because its cost factor makes brute-force
       expensive. The _DUMMY_HASH constant enables timing equalization in
       verify_credentials() so response time does not reveal whether a
       username exists [C1].

  SECRET_KEY: sourced from core.config.get_settings(). The Settings class
       validates the key at startup.

Layer rule: no imports from api/ or licensing/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

import bcrypt
from jose import JWTError, jwt

from core.config import get_settings

if TYPE_CHECKING:
    from auth.models import Account
    from auth.store import CredentialStore

logger = logging.getLogger("keyportal.auth")

_settings = get_settings()

_ALGORITHM = "HS256"
MAX_PASSWORD_BYTES = 72

# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    bcrypt reads at most MAX_PASSWORD_BYTES of input. Longer passwords raise
    ValueError here on every bcrypt release instead of being silently
    truncated by older ones; the API models reject them first with a 422.
    """
    encoded = plain.encode("utf-8")
    if len(encoded) > MAX_PASSWORD_BYTES:
        raise ValueError(f"password cannot be longer than {MAX_PASSWORD_BYTES} bytes")
    return bcrypt.hashpw(encoded, bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except (ValueError, TypeError):
        return False


# Timing equalization dummy hash [C1]. Computed once at module load so the
# first login attempt is not measurably slower than subsequent ones.
_DUMMY_HASH: str = hash_password("keyportal_timing_dummy")


# ---------------------------------------------------------------------------
# Credential checks (constant-time) [C1]
# ---------------------------------------------------------------------------


def verify_credentials(store: CredentialStore, username: str, password: str) -> Account | None:
    """Resolve an account by username and check its password.

    Always runs bcrypt whether or not the account exists:
    - Unknown username: bcrypt runs against _DUMMY_HASH (same cost as real check)
    - Wrong password: bcrypt runs against the real hash (same cost)

    Returns the Account when the password matches, None otherwise. Blocked
    accounts are returned -- callers decide how to report them.
    """
    account = store.get_account_by_username(username)
    if account is None:
        # Equalize timing -- do NOT return early before running bcrypt [C1]
        verify_password(password, _DUMMY_HASH)
        return None
    if not verify_password(password, account.hashed_password):
        return None
    return account


def authenticate_account(store: CredentialStore, username: str, password: str) -> Account | None:
    """Authenticate a web login. Returns None for unknown, wrong-password or blocked accounts."""
    account = verify_credentials(store, username, password)
    if account is None or account.is_blocked:
        return None
    return account


# ---------------------------------------------------------------------------
# JWT encode / decode
# ---------------------------------------------------------------------------


def create_access_token(account_id: int, username: str, is_admin: bool, expire_seconds: int = 0) -> str:
    """Encode a signed JWT with account identity and expiry.

    expire_seconds of 0 (default) uses Settings.token_expire_seconds.
    """
    duration = expire_seconds if expire_seconds > 0 else _settings.token_expire_seconds
    expire = datetime.now(timezone.utc) + timedelta(seconds=duration)
    payload = {
        "sub": username,
        "account_id": account_id,
        "is_admin": is_admin,
        "exp": expire,
    }
    return jwt.encode(payload, _settings.secret_key, algorithm=_ALGORITHM)


def decode_access_token(token: str) -> dict | None:
    """Decode and verify a JWT. Returns the payload dict or None on any failure."""
    try:
        payload = jwt.decode(token, _settings.secret_key, algorithms=[_ALGORITHM])
    except JWTError:
        return None
    if "account_id" not in payload:
        return None
    return payload


# ---------------------------------------------------------------------------
# Cookie helper
# ---------------------------------------------------------------------------


def set_auth_cookie(response, token: str, expire_seconds: int = 0) -> None:
    """Write the JWT access token as an httpOnly cookie on the response.

    httponly=True keeps the token away from page scripts, samesite="lax"
    blocks cross-site POSTs, secure follows SECURE_COOKIES. max_age matches
    the JWT expiry so both expire together.
    """
    duration = expire_seconds if expire_seconds > 0 else _settings.token_expire_seconds
    response.set_cookie(
        "access_token",
        value=token,
        httponly=True,
        samesite="lax",
        secure=_settings.secure_cookies,
        max_age=duration,
    )
