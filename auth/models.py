"""
auth/models.py -- Domain dataclasses for accounts, access keys and login audit.

Pattern: Data class (pure data container, zero logic). Stores and route
handlers do the work; these dataclasses only own the domain shape.

Timestamps are ISO 8601 UTC strings, written by auth/store.py.

Layer rule: no imports from api/ or licensing/.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class Account:
    """A registered identity.

    username and email are both globally unique (UNIQUE constraints in the
    store). hashed_password is a bcrypt hash and is never returned by the API.

    hwid is bound automatically on the first successful desktop
    authentication and then locks the account to that machine until an
    administrator clears it. ip_address and last_login are stamped by the web
    login path only.
    """

    username: str
    email: str
    hashed_password: str
    id: int | None = None
    hwid: str | None = None
    ip_address: str | None = None
    is_admin: bool = False
    is_blocked: bool = False
    created_at: str | None = None
    last_login: str | None = None


@dataclass
class AccessKey:
    """A license token that authorizes the desktop client.

    Keys are minted unowned (user_id is None) by an administrator and claimed
    by exactly one account afterwards. expires_at None means the key never
    expires. used_at is the first successful desktop authentication with the
    key; later authentications leave it untouched.
    """

    key_value: str
    id: int | None = None
    user_id: int | None = None
    is_active: bool = True
    expires_at: str | None = None
    used_at: str | None = None
    prefix: str | None = None
    notes: str | None = None
    created_at: str | None = None


@dataclass
class LoginAttempt:
    """Append-only audit row. username is stored as submitted and may not exist."""

    username: str
    ip_address: str
    success: bool = False
    id: int | None = None
    timestamp: str | None = None


@dataclass
class AccountStats:
    total_users: int = 0
    active_users: int = 0
    blocked_users: int = 0
    total_keys: int = 0
