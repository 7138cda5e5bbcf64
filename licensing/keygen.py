"""
licensing/keygen.py -- Minting and claiming access keys.

Key lifecycle is two-phase:
  1. minted  -- generate_access_keys() creates unowned, active keys in a batch.
  2. claimed -- claim_access_key() (user redeems a key value) or
                assign_access_key() (administrator assigns by ID) sets the
                owner. Both go through the store's conditional UPDATE, so a
                key can only ever be claimed once.

Token format: {PREFIX}-{16 uppercase hex}-{16 uppercase hex}, 128 bits of
randomness from secrets.token_hex(). Uniqueness is not pre-checked; the
UNIQUE index on key_value is the safety net and a collision is retried with a
fresh token.
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta, timezone

from sqlalchemy.exc import IntegrityError

from auth.models import AccessKey, Account
from auth.store import CredentialStore
from core.config import get_settings
from licensing.desktop import is_expired
from licensing.errors import KeyClaimError, KeyGenerationError, KeyNotFoundError

logger = logging.getLogger("keyportal.keygen")

MIN_QUANTITY = 1
MAX_QUANTITY = 100
MAX_COLLISION_RETRIES = 3


def generate_key_value(prefix: str | None = None) -> str:
    """Return a new random key token, e.g. PUI-3F9A0C21D4E5B6A7-0123456789ABCDEF."""
    prefix = prefix or get_settings().default_key_prefix
    return f"{prefix}-{secrets.token_hex(8).upper()}-{secrets.token_hex(8).upper()}"


def _insert_with_retry(store: CredentialStore, template: AccessKey, prefix: str) -> int:
    """Insert one key, drawing a fresh token on each unique-constraint collision."""
    for attempt in range(1, MAX_COLLISION_RETRIES + 1):
        template.key_value = generate_key_value(prefix)
        try:
            return store.create_access_key(template)
        except IntegrityError:
            logger.warning("Access key collision on attempt %d/%d", attempt, MAX_COLLISION_RETRIES)
    raise KeyGenerationError("Could not generate a unique access key.")


def generate_access_keys(
    store: CredentialStore,
    quantity: int,
    expiration_days: int,
    prefix: str | None = None,
    notes: str | None = None,
) -> list[AccessKey]:
    """Mint quantity unowned, active keys and return them in creation order.

    expiration_days of 0 means the keys never expire. Keys are inserted one
    at a time; if storage fails part-way the keys already written stay in
    place and the exception propagates to the caller.

    Raises ValueError for out-of-range arguments and KeyGenerationError when
    a unique token cannot be found.
    """
    if not MIN_QUANTITY <= quantity <= MAX_QUANTITY:
        raise ValueError(f"quantity must be between {MIN_QUANTITY} and {MAX_QUANTITY}")
    if expiration_days < 0:
        raise ValueError("expiration_days must not be negative")

    effective_prefix = prefix or get_settings().default_key_prefix
    expires_at: str | None = None
    if expiration_days > 0:
        expires_at = (datetime.now(timezone.utc) + timedelta(days=expiration_days)).isoformat()

    keys: list[AccessKey] = []
    for _ in range(quantity):
        template = AccessKey(
            key_value="",
            is_active=True,
            expires_at=expires_at,
            prefix=effective_prefix,
            notes=notes,
        )
        key_id = _insert_with_retry(store, template, effective_prefix)
        created = store.get_access_key_by_id(key_id)
        keys.append(created if created is not None else template)

    logger.info(
        "Generated %d access key(s) with prefix %s (expires_at=%s)",
        len(keys),
        effective_prefix,
        expires_at or "never",
    )
    return keys


def claim_access_key(store: CredentialStore, key_value: str, account: Account) -> AccessKey:
    """Redeem an unowned key for an account and return the updated key.

    Raises KeyClaimError when the key is unknown, inactive, expired or
    already owned (including by this account).
    """
    key = store.get_access_key_by_value(key_value)
    if key is None or not key.is_active:
        raise KeyClaimError("Invalid or inactive key")
    if is_expired(key):
        raise KeyClaimError("Key has expired")
    if key.user_id is not None or not store.claim_access_key(key.id, account.id):
        raise KeyClaimError("Key already claimed")
    logger.info("Account %d claimed key %d", account.id, key.id)
    return store.get_access_key_by_id(key.id) or key


def assign_access_key(store: CredentialStore, key_id: int, account_id: int) -> AccessKey:
    """Administrator path: give an unowned key to a specific account."""
    key = store.get_access_key_by_id(key_id)
    if key is None:
        raise KeyNotFoundError("Key not found")
    if store.get_account_by_id(account_id) is None:
        raise KeyNotFoundError("Account not found")
    if key.user_id is not None or not store.claim_access_key(key_id, account_id):
        raise KeyClaimError("Key already claimed")
    logger.info("Key %d assigned to account %d", key_id, account_id)
    return store.get_access_key_by_id(key_id) or key
