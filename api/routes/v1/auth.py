"""
api/routes/v1/auth.py -- Registration, login and session endpoints.

Routes:
  POST /api/v1/auth/register   -- create an account (public, can be disabled)
  POST /api/v1/auth/login      -- password login; sets JWT cookie
  POST /api/v1/auth/logout     -- clears cookie; 200
  GET  /api/v1/auth/me         -- current account (requires auth)

Security:
  [H2] POST /login and /register are rate-limited per IP.
  [C1] authenticate_account() provides timing equalization -- use it, never inline.
  [M5] Cache-Control: no-store on login responses.
  Every login, successful or not, writes one login_attempts row.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError

from api.limiter import limiter
from api.models import AccountResponse, LoginRequest, LoginResponse, RegisterRequest
from auth.dependencies import get_current_account
from auth.models import Account
from auth.store import CredentialStore
from auth.tokens import authenticate_account, create_access_token, hash_password, set_auth_cookie
from core.config import get_settings

logger = logging.getLogger("keyportal.api.auth")

_settings = get_settings()

# Auth policy:
# - POST /api/v1/auth/register: public -- gated by SELF_REGISTRATION_ENABLED
# - POST /api/v1/auth/login:    public
# - POST /api/v1/auth/logout:   public -- clearing a cookie needs no prior auth
# - GET  /api/v1/auth/me:       requires auth (get_current_account)
router = APIRouter()


def client_address(request: Request) -> str:
    return request.client.host if request.client else "unknown"


@router.post("/auth/register", response_model=AccountResponse, status_code=201)
@limiter.limit(_settings.login_rate_limit)  # under @router.post so the registered endpoint is the limited one
def register(request: Request, body: RegisterRequest) -> AccountResponse:
    """Create a regular (non-admin) account.

    Username and email uniqueness is checked up front for a clear message;
    the UNIQUE constraints still catch a concurrent registration.
    """
    if not _settings.self_registration_enabled:
        raise HTTPException(
            status_code=403,
            detail={"code": "registration_disabled", "message": "Self-registration is disabled."},
        )

    store: CredentialStore = request.app.state.store
    if store.get_account_by_username(body.username) is not None:
        raise HTTPException(
            status_code=409,
            detail={"code": "conflict", "message": "Username already exists."},
        )
    if store.get_account_by_email(body.email) is not None:
        raise HTTPException(
            status_code=409,
            detail={"code": "conflict", "message": "Email already registered."},
        )

    try:
        account_id = store.create_account(
            Account(username=body.username, email=body.email, hashed_password=hash_password(body.password))
        )
    except IntegrityError as exc:
        raise HTTPException(
            status_code=409,
            detail={"code": "conflict", "message": "Username or email already exists."},
        ) from exc

    logger.info("Registered account %d (%s)", account_id, body.username)
    created = store.get_account_by_id(account_id)
    if created is None:
        raise HTTPException(
            status_code=500,
            detail={"code": "internal_error", "message": "Account not found after write."},
        )
    return AccountResponse.from_account(created)


@router.post("/auth/login", response_model=LoginResponse)
@limiter.limit(_settings.login_rate_limit)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with username and password; set JWT cookie.

    Returns the same generic error for unknown username, wrong password and
    blocked account so the response does not reveal which one applied.
    """
    store: CredentialStore = request.app.state.store
    address = client_address(request)
    account = authenticate_account(store, body.username, body.password)
    store.record_login_attempt(body.username, address, account is not None)

    if account is None:
        resp = JSONResponse(
            status_code=401,
            content={"error": {"code": "bad_credentials", "message": "Invalid username or password."}},
        )
        resp.headers["Cache-Control"] = "no-store"  # [M5]
        return resp

    store.update_last_login(account.id, address)
    token = create_access_token(account.id, account.username, account.is_admin)
    resp = JSONResponse(
        status_code=200,
        content=LoginResponse(
            access_token=token,
            token_type="bearer",  # noqa: S106 # nosec B106 -- OAuth token type, not a password
            expires_in=_settings.token_expire_seconds,
            username=account.username,
            is_admin=account.is_admin,
        ).model_dump(),
    )
    set_auth_cookie(resp, token)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


@router.post("/auth/logout")
async def logout() -> JSONResponse:
    """Clear the JWT cookie and end the session."""
    resp = JSONResponse(content={"message": "Logged out."})
    resp.delete_cookie("access_token")
    return resp


@router.get("/auth/me", response_model=AccountResponse)
def me(current_account: Account = Depends(get_current_account)) -> AccountResponse:
    """Return the currently authenticated account."""
    return AccountResponse.from_account(current_account)
