"""
auth/store.py -- SQLAlchemy Core persistence layer for credential entities.

Pattern: Repository + Data Mapper.
CredentialStore is the repository; _row_to_account / _row_to_access_key /
_row_to_login_attempt are the mappers. Route, licensing and dependency code
never touches SQL directly.

A single CredentialStore is created at startup and handed to every consumer
explicitly (app.state.store for the HTTP layer, a constructor argument for the
CLI and tests). Nothing in this module holds module-level mutable state.

Security:
  All queries use bound parameters. No f-strings in SQL.

Concurrency:
  bind_hwid(), mark_key_used() and claim_access_key() are conditional UPDATEs
  (... WHERE column IS NULL). The rowcount tells the caller whether this
  request won; two concurrent requests can never both succeed.

Layer rule: no imports from api/ or licensing/.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import Column, ForeignKey, Integer, MetaData, String, Table, Text, create_engine, event, func, or_, select
from sqlalchemy.engine import Engine

from auth.models import AccessKey, Account, AccountStats, LoginAttempt
from core.config import get_settings

logger = logging.getLogger("keyportal.store")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_accounts = Table(
    "accounts",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(255), nullable=False, unique=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("hashed_password", Text, nullable=False),
    Column("hwid", String(255)),  # bound on first successful desktop auth
    Column("ip_address", String(64)),  # last web login address
    Column("is_admin", Integer, nullable=False, server_default="0"),
    Column("is_blocked", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
    Column("last_login", String(32)),
)

_access_keys = Table(
    "access_keys",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("key_value", String(255), nullable=False, unique=True),
    Column("user_id", Integer, ForeignKey("accounts.id"), index=True),  # NULL until claimed
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("expires_at", String(32)),  # NULL = never expires
    Column("used_at", String(32)),  # first successful desktop auth
    Column("prefix", String(32)),
    Column("notes", Text),
    Column("created_at", String(32), nullable=False),
)

_login_attempts = Table(
    "login_attempts",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(255), index=True),  # as submitted, not a FK
    Column("ip_address", String(64), nullable=False),
    Column("success", Integer, nullable=False, server_default="0"),
    Column("timestamp", String(32), nullable=False),
)

_ACCOUNT_FIELDS = {"username", "email", "hashed_password", "hwid", "ip_address", "is_admin", "is_blocked", "last_login"}
_ACCESS_KEY_FIELDS = {"user_id", "is_active", "expires_at", "used_at", "prefix", "notes"}
_BOOL_FIELDS = {"is_admin", "is_blocked", "is_active"}


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _checked_fields(fields: dict, allowed: set[str]) -> dict:
    """Validate update keys against a whitelist and convert booleans to 0/1.

    Unknown keys raise ValueError rather than being silently dropped.
    """
    unknown = set(fields) - allowed
    if unknown:
        raise ValueError(f"Unknown fields: {sorted(unknown)!r}")
    return {k: (1 if v else 0) if k in _BOOL_FIELDS else v for k, v in fields.items()}


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class CredentialStore:
    """Repository for Account, AccessKey and LoginAttempt entities.

    Usage:
        store = CredentialStore("sqlite:///:memory:")
        account_id = store.create_account(Account(username="ada", email="ada@example.com", hashed_password=h))
        account = store.get_account_by_username("ada")
        store.close()
    """

    def __init__(self, db_url: str | None = None) -> None:
        db_url = db_url or get_settings().database_url
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            # FastAPI runs sync handlers in a thread pool, so the same
            # connection may be used from more than one thread.
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    def has_accounts(self) -> bool:
        """Return True if at least one account exists."""
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(_accounts)).scalar()
        return (result or 0) > 0

    def create_account(self, account: Account) -> int:
        """Insert a new account and return its assigned database ID.

        Raises sqlalchemy.exc.IntegrityError if the username or email already
        exists. Route handlers translate that into HTTP 409.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _accounts.insert().values(
                    username=account.username,
                    email=account.email,
                    hashed_password=account.hashed_password,
                    hwid=account.hwid,
                    ip_address=account.ip_address,
                    is_admin=1 if account.is_admin else 0,
                    is_blocked=1 if account.is_blocked else 0,
                    created_at=_now_iso(),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_account_by_username(self, username: str) -> Account | None:
        """Look up an account by exact username (case-sensitive)."""
        with self.engine.connect() as conn:
            row = conn.execute(_accounts.select().where(_accounts.c.username == username)).fetchone()
        return _row_to_account(row) if row is not None else None

    def get_account_by_email(self, email: str) -> Account | None:
        with self.engine.connect() as conn:
            row = conn.execute(_accounts.select().where(_accounts.c.email == email)).fetchone()
        return _row_to_account(row) if row is not None else None

    def get_account_by_id(self, account_id: int) -> Account | None:
        with self.engine.connect() as conn:
            row = conn.execute(_accounts.select().where(_accounts.c.id == account_id)).fetchone()
        return _row_to_account(row) if row is not None else None

    def update_account(self, account_id: int, **fields) -> bool:
        """Update mutable fields on an existing account.

        Accepted fields: username, email, hashed_password, hwid, ip_address,
        is_admin, is_blocked, last_login. Booleans are converted to 0/1.

        Returns True if a row was updated, False if account_id was not found.
        Raises IntegrityError when a username/email change collides.
        """
        values = _checked_fields(fields, _ACCOUNT_FIELDS)
        if not values:
            return self.get_account_by_id(account_id) is not None
        with self.engine.connect() as conn:
            result = conn.execute(_accounts.update().where(_accounts.c.id == account_id).values(**values))
            conn.commit()
        return result.rowcount > 0

    def set_blocked(self, account_id: int, blocked: bool) -> bool:
        return self.update_account(account_id, is_blocked=blocked)

    def update_last_login(self, account_id: int, ip_address: str) -> None:
        """Stamp last_login and the source address after a successful web login."""
        with self.engine.connect() as conn:
            conn.execute(
                _accounts.update()
                .where(_accounts.c.id == account_id)
                .values(last_login=_now_iso(), ip_address=ip_address)
            )
            conn.commit()

    def bind_hwid(self, account_id: int, hwid: str) -> bool:
        """Bind a hardware ID to an account that has none yet.

        Returns False when the account already carries a hardware ID, which
        includes losing a race against a concurrent first authentication.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _accounts.update()
                .where((_accounts.c.id == account_id) & (_accounts.c.hwid.is_(None)))
                .values(hwid=hwid)
            )
            conn.commit()
        return result.rowcount > 0

    def clear_hwid(self, account_id: int) -> bool:
        """Remove the hardware binding so the next desktop login rebinds it."""
        with self.engine.connect() as conn:
            result = conn.execute(_accounts.update().where(_accounts.c.id == account_id).values(hwid=None))
            conn.commit()
        return result.rowcount > 0

    def list_accounts(
        self,
        limit: int = 50,
        offset: int = 0,
        search: str | None = None,
        status: str = "all",
    ) -> tuple[list[Account], int]:
        """Return one page of accounts (newest first) and the filtered total.

        search matches a case-insensitive substring of username or email.
        status is "all", "active" (not blocked) or "blocked".
        """
        conditions = []
        if search:
            pattern = f"%{search}%"
            conditions.append(or_(_accounts.c.username.ilike(pattern), _accounts.c.email.ilike(pattern)))
        if status == "active":
            conditions.append(_accounts.c.is_blocked == 0)
        elif status == "blocked":
            conditions.append(_accounts.c.is_blocked == 1)
        elif status != "all":
            raise ValueError(f"Unknown status filter: {status!r}")

        page = (
            _accounts.select()
            .where(*conditions)
            .order_by(_accounts.c.created_at.desc(), _accounts.c.id.desc())
            .limit(limit)
            .offset(offset)
        )
        count = select(func.count()).select_from(_accounts).where(*conditions)
        with self.engine.connect() as conn:
            rows = conn.execute(page).fetchall()
            total = conn.execute(count).scalar() or 0
        return [_row_to_account(r) for r in rows], total

    def get_stats(self) -> AccountStats:
        """Return account and key totals for the admin dashboard in two queries."""
        blocked = func.coalesce(func.sum(_accounts.c.is_blocked), 0)
        with self.engine.connect() as conn:
            users_row = conn.execute(
                select(func.count().label("total"), blocked.label("blocked")).select_from(_accounts)
            ).fetchone()
            total_keys = conn.execute(select(func.count()).select_from(_access_keys)).scalar() or 0
        total_users = users_row.total or 0
        blocked_users = int(users_row.blocked or 0)
        return AccountStats(
            total_users=total_users,
            active_users=total_users - blocked_users,
            blocked_users=blocked_users,
            total_keys=total_keys,
        )

    # ------------------------------------------------------------------
    # Access keys
    # ------------------------------------------------------------------

    def create_access_key(self, key: AccessKey) -> int:
        """Insert a new access key and return its ID.

        Raises sqlalchemy.exc.IntegrityError if key_value already exists.
        licensing.keygen retries with a fresh token on that error.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _access_keys.insert().values(
                    key_value=key.key_value,
                    user_id=key.user_id,
                    is_active=1 if key.is_active else 0,
                    expires_at=key.expires_at,
                    used_at=key.used_at,
                    prefix=key.prefix,
                    notes=key.notes,
                    created_at=_now_iso(),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_access_key_by_id(self, key_id: int) -> AccessKey | None:
        with self.engine.connect() as conn:
            row = conn.execute(_access_keys.select().where(_access_keys.c.id == key_id)).fetchone()
        return _row_to_access_key(row) if row is not None else None

    def get_access_key_by_value(self, key_value: str) -> AccessKey | None:
        """Look up a key by its token string. O(1) via the UNIQUE index."""
        with self.engine.connect() as conn:
            row = conn.execute(_access_keys.select().where(_access_keys.c.key_value == key_value)).fetchone()
        return _row_to_access_key(row) if row is not None else None

    def get_access_keys_for_account(self, account_id: int) -> list[AccessKey]:
        """Return every key owned by an account, newest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _access_keys.select()
                .where(_access_keys.c.user_id == account_id)
                .order_by(_access_keys.c.created_at.desc(), _access_keys.c.id.desc())
            ).fetchall()
        return [_row_to_access_key(r) for r in rows]

    def list_recent_access_keys(self, limit: int = 20) -> list[AccessKey]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                _access_keys.select()
                .order_by(_access_keys.c.created_at.desc(), _access_keys.c.id.desc())
                .limit(limit)
            ).fetchall()
        return [_row_to_access_key(r) for r in rows]

    def update_access_key(self, key_id: int, **fields) -> bool:
        """Update mutable fields on a key. key_value itself is immutable.

        Returns True if a row was updated, False if key_id was not found.
        """
        values = _checked_fields(fields, _ACCESS_KEY_FIELDS)
        if not values:
            return self.get_access_key_by_id(key_id) is not None
        with self.engine.connect() as conn:
            result = conn.execute(_access_keys.update().where(_access_keys.c.id == key_id).values(**values))
            conn.commit()
        return result.rowcount > 0

    def mark_key_used(self, key_id: int) -> bool:
        """Record the first use of a key.

        used_at is a first-use marker: the UPDATE only matches while used_at
        IS NULL, so the earliest successful desktop authentication keeps its
        timestamp instead of each call overwriting it. Returns True only for
        the call that set used_at; later calls return False.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _access_keys.update()
                .where((_access_keys.c.id == key_id) & (_access_keys.c.used_at.is_(None)))
                .values(used_at=_now_iso())
            )
            conn.commit()
        return result.rowcount > 0

    def claim_access_key(self, key_id: int, account_id: int) -> bool:
        """Assign an unowned key to an account. False if already owned or missing."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _access_keys.update()
                .where((_access_keys.c.id == key_id) & (_access_keys.c.user_id.is_(None)))
                .values(user_id=account_id)
            )
            conn.commit()
        return result.rowcount > 0

    def delete_access_key(self, key_id: int, user_id: int | None = None) -> bool:
        """Delete a key. Returns True if deleted, False if not found.

        When user_id is given the key must also be owned by that account, so
        a user cannot delete another user's key by guessing its ID.
        """
        condition = _access_keys.c.id == key_id
        if user_id is not None:
            condition = condition & (_access_keys.c.user_id == user_id)
        with self.engine.connect() as conn:
            result = conn.execute(_access_keys.delete().where(condition))
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Login attempts
    # ------------------------------------------------------------------

    def record_login_attempt(self, username: str, ip_address: str, success: bool) -> None:
        with self.engine.connect() as conn:
            conn.execute(
                _login_attempts.insert().values(
                    username=username,
                    ip_address=ip_address,
                    success=1 if success else 0,
                    timestamp=_now_iso(),
                )
            )
            conn.commit()

    def list_login_attempts(self, username: str | None = None, limit: int = 50) -> list[LoginAttempt]:
        """Return the most recent login attempts, optionally for one username."""
        stmt = _login_attempts.select()
        if username is not None:
            stmt = stmt.where(_login_attempts.c.username == username)
        stmt = stmt.order_by(_login_attempts.c.timestamp.desc(), _login_attempts.c.id.desc()).limit(limit)
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        return [_row_to_login_attempt(r) for r in rows]

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_account(row) -> Account:
    return Account(
        id=row.id,
        username=row.username,
        email=row.email,
        hashed_password=row.hashed_password,
        hwid=row.hwid,
        ip_address=row.ip_address,
        is_admin=bool(row.is_admin),
        is_blocked=bool(row.is_blocked),
        created_at=row.created_at,
        last_login=row.last_login,
    )


def _row_to_access_key(row) -> AccessKey:
    return AccessKey(
        id=row.id,
        key_value=row.key_value,
        user_id=row.user_id,
        is_active=bool(row.is_active),
        expires_at=row.expires_at,
        used_at=row.used_at,
        prefix=row.prefix,
        notes=row.notes,
        created_at=row.created_at,
    )


def _row_to_login_attempt(row) -> LoginAttempt:
    return LoginAttempt(
        id=row.id,
        username=row.username,
        ip_address=row.ip_address,
        success=bool(row.success),
        timestamp=row.timestamp,
    )
