"""
licensing/desktop.py -- Authorization check for the companion desktop client.

The desktop client sends username, password, access key and a hardware ID.
validate_desktop_auth() runs an ordered list of guards; the first failing
guard decides the message. Nothing is written until every guard has passed,
so a rejected attempt leaves the store untouched.

Guard order:
  1. password verified against the stored hash   -> "Invalid credentials"
     (unknown username gives the same message, with equal bcrypt cost)
  2. account not blocked                           -> "Account is blocked"
  3. key exists and is active                      -> "Invalid or inactive key"
  4. key owned by this account                     -> "Key not associated with this user"
  5. key not expired                               -> "Key has expired"
  6. bound hardware ID matches                     -> "Hardware ID mismatch"

Then the hardware ID is bound if the account has none, and the key's first
use is recorded. Login attempt auditing is the caller's job: the route
writes exactly one record per call.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime, timezone

from auth.models import AccessKey, Account
from auth.store import CredentialStore
from auth.tokens import verify_credentials

logger = logging.getLogger("keyportal.desktop")

INVALID_CREDENTIALS = "Invalid credentials"
ACCOUNT_BLOCKED = "Account is blocked"
INVALID_KEY = "Invalid or inactive key"
KEY_NOT_OWNED = "Key not associated with this user"
KEY_EXPIRED = "Key has expired"
HWID_MISMATCH = "Hardware ID mismatch"


@dataclass(frozen=True)
class DesktopAuthResult:
    success: bool
    message: str | None = None
    account: Account | None = None


def _reject(username: str, message: str) -> DesktopAuthResult:
    logger.info("Desktop auth rejected for %r: %s", username, message)
    return DesktopAuthResult(success=False, message=message)


def parse_timestamp(value: str) -> datetime:
    """Parse a stored ISO 8601 timestamp. Naive values are taken as UTC."""
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def is_expired(key: AccessKey, now: datetime | None = None) -> bool:
    """True when the key has an expiry strictly before now. No expiry never expires."""
    if not key.expires_at:
        return False
    now = now or datetime.now(timezone.utc)
    return parse_timestamp(key.expires_at) < now


def validate_desktop_auth(
    store: CredentialStore,
    username: str,
    password: str,
    key: str,
    hwid: str,
) -> DesktopAuthResult:
    """Decide whether a desktop client session may start.

    Returns a DesktopAuthResult; rejections are never raised. On success the
    returned account reflects the hardware ID binding.
    """
    account = verify_credentials(store, username, password)
    if account is None:
        return _reject(username, INVALID_CREDENTIALS)

    if account.is_blocked:
        return _reject(username, ACCOUNT_BLOCKED)

    access_key = store.get_access_key_by_value(key)
    if access_key is None or not access_key.is_active:
        return _reject(username, INVALID_KEY)

    if access_key.user_id != account.id:
        return _reject(username, KEY_NOT_OWNED)

    if is_expired(access_key):
        return _reject(username, KEY_EXPIRED)

    if account.hwid and account.hwid != hwid:
        return _reject(username, HWID_MISMATCH)

    if not account.hwid:
        if not store.bind_hwid(account.id, hwid):
            # Another request bound the account first; accept only if it bound the same machine.
            current = store.get_account_by_id(account.id)
            if current is None or current.hwid != hwid:
                return _reject(username, HWID_MISMATCH)
        else:
            logger.info("Bound hardware ID for account %d", account.id)
        account = replace(account, hwid=hwid)

    store.mark_key_used(access_key.id)
    logger.info("Desktop auth succeeded for account %d with key %d", account.id, access_key.id)
    return DesktopAuthResult(success=True, account=account)
