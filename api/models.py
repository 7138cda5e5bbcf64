"""
API request and response models for KeyPortal REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

hashed_password never appears in any response model.
"""

from enum import Enum
from typing import Annotated, Optional

from pydantic import BaseModel, ConfigDict, Field, StringConstraints, field_validator

from auth.models import AccessKey, Account, AccountStats, LoginAttempt
from auth.tokens import MAX_PASSWORD_BYTES
from licensing.keygen import MAX_QUANTITY, MIN_QUANTITY

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"
USERNAME_PATTERN = r"^[A-Za-z0-9_.-]+$"
PREFIX_PATTERN = r"^[A-Za-z0-9]+$"

# Identifiers are trimmed. Password fields are plain str and never stripped,
# so the value hashed at registration is exactly the value typed at login.
TrimmedStr = Annotated[str, StringConstraints(strip_whitespace=True)]


def _check_password_bytes(value: str) -> str:
    if len(value.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise ValueError(f"password must be at most {MAX_PASSWORD_BYTES} bytes when UTF-8 encoded")
    return value


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class AccountStatusEnum(str, Enum):
    all = "all"
    active = "active"
    blocked = "blocked"


# ---------------------------------------------------------------------------
# Auth request/response models
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register."""

    username: TrimmedStr = Field(min_length=3, max_length=50, pattern=USERNAME_PATTERN)
    email: TrimmedStr = Field(max_length=255, pattern=EMAIL_PATTERN)
    password: str = Field(min_length=6, max_length=MAX_PASSWORD_BYTES)

    @field_validator("password")
    @classmethod
    def password_fits_bcrypt(cls, value: str) -> str:
        return _check_password_bytes(value)


class LoginRequest(BaseModel):
    username: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=255)


class LoginResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    access_token: str
    token_type: str
    expires_in: int
    username: str
    is_admin: bool


class AccountResponse(BaseModel):
    """Full account view, used by /auth/me and the admin user table."""

    model_config = ConfigDict(frozen=True)

    id: int
    username: str
    email: str
    hwid: Optional[str]
    ip_address: Optional[str]
    is_admin: bool
    is_blocked: bool
    created_at: str
    last_login: Optional[str]

    @classmethod
    def from_account(cls, account: Account) -> "AccountResponse":
        return cls(
            id=account.id,
            username=account.username,
            email=account.email,
            hwid=account.hwid,
            ip_address=account.ip_address,
            is_admin=account.is_admin,
            is_blocked=account.is_blocked,
            created_at=account.created_at or "",
            last_login=account.last_login,
        )


# ---------------------------------------------------------------------------
# Desktop client
# ---------------------------------------------------------------------------


class DesktopAuthRequest(BaseModel):
    """Body sent by the desktop client. All four fields are required and non-empty."""

    username: TrimmedStr = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=255)
    key: TrimmedStr = Field(min_length=1, max_length=255)
    hwid: TrimmedStr = Field(min_length=1, max_length=255)


class DesktopAuthResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool
    message: str


# ---------------------------------------------------------------------------
# Profile
# ---------------------------------------------------------------------------


class ProfileResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    username: str
    email: str
    hwid: Optional[str]
    ip_address: Optional[str]
    last_login: Optional[str]


class ProfileUpdate(BaseModel):
    """Request body for PUT /api/v1/profile. Omitted fields are left unchanged."""

    model_config = ConfigDict(str_strip_whitespace=True)

    username: Optional[str] = Field(default=None, min_length=3, max_length=50, pattern=USERNAME_PATTERN)
    email: Optional[str] = Field(default=None, max_length=255, pattern=EMAIL_PATTERN)


class PasswordChange(BaseModel):
    current_password: str = Field(min_length=1, max_length=255)
    new_password: str = Field(min_length=6, max_length=MAX_PASSWORD_BYTES)

    @field_validator("new_password")
    @classmethod
    def password_fits_bcrypt(cls, value: str) -> str:
        return _check_password_bytes(value)


# ---------------------------------------------------------------------------
# Access keys
# ---------------------------------------------------------------------------


class AccessKeyResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    key_value: str
    user_id: Optional[int]
    is_active: bool
    expires_at: Optional[str]
    used_at: Optional[str]
    prefix: Optional[str]
    notes: Optional[str]
    created_at: str

    @classmethod
    def from_key(cls, key: AccessKey) -> "AccessKeyResponse":
        return cls(
            id=key.id,
            key_value=key.key_value,
            user_id=key.user_id,
            is_active=key.is_active,
            expires_at=key.expires_at,
            used_at=key.used_at,
            prefix=key.prefix,
            notes=key.notes,
            created_at=key.created_at or "",
        )


class KeyRedeemRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    key: str = Field(min_length=1, max_length=255)


class KeyGenerationRequest(BaseModel):
    """Request body for POST /api/v1/admin/generate-keys.

    expiration_days of 0 mints keys that never expire.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    quantity: int = Field(ge=MIN_QUANTITY, le=MAX_QUANTITY)
    expiration_days: int = Field(ge=0, le=3650)
    prefix: Optional[str] = Field(default=None, min_length=1, max_length=16, pattern=PREFIX_PATTERN)
    notes: Optional[str] = Field(default=None, max_length=500)


class KeyAssignRequest(BaseModel):
    user_id: int = Field(ge=1)


# ---------------------------------------------------------------------------
# Admin
# ---------------------------------------------------------------------------


class BlockRequest(BaseModel):
    blocked: bool


class UserListResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    users: list[AccountResponse]
    total: int
    page: int
    limit: int


class StatsResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    total_users: int
    active_users: int
    blocked_users: int
    total_keys: int

    @classmethod
    def from_stats(cls, stats: AccountStats) -> "StatsResponse":
        return cls(
            total_users=stats.total_users,
            active_users=stats.active_users,
            blocked_users=stats.blocked_users,
            total_keys=stats.total_keys,
        )


class LoginAttemptResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    username: Optional[str]
    ip_address: str
    success: bool
    timestamp: str

    @classmethod
    def from_attempt(cls, attempt: LoginAttempt) -> "LoginAttemptResponse":
        return cls(
            id=attempt.id,
            username=attempt.username,
            ip_address=attempt.ip_address,
            success=attempt.success,
            timestamp=attempt.timestamp or "",
        )


# ---------------------------------------------------------------------------
# Errors and health
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
    database: str = "ok"
