"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Two token sources are checked in priority order:
  1. JWT cookie ("access_token") -- set by the web login flow.
  2. Authorization: Bearer <token> header -- API clients using JWTs.

try_get_current_account() is the soft variant (returns None on failure).
get_current_account() wraps it and raises HTTP 401 if unauthenticated.
require_admin() wraps get_current_account() and raises HTTP 403 if not admin.

The account is always re-read from the store, so blocking an account or
revoking admin rights takes effect on the next request even while the
caller still holds an unexpired token.

Layer rule: no imports from api/ or licensing/.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.models import Account
from auth.tokens import decode_access_token


def try_get_current_account(request: Request) -> Account | None:
    """Attempt to authenticate the request via cookie or Bearer token.

    Returns the Account on success, None on any failure. Never raises.
    Blocked accounts are treated as unauthenticated.
    """
    store = request.app.state.store

    token: str | None = request.cookies.get("access_token")
    if not token:
        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            token = auth_header[7:]

    if not token:
        return None

    payload = decode_access_token(token)
    if payload is None:
        return None
    account = store.get_account_by_id(payload["account_id"])
    if account is None or account.is_blocked:
        return None
    return account


def get_current_account(request: Request) -> Account:
    """Require authentication. Raises HTTP 401 if the request is not authenticated.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(account: Account = Depends(get_current_account)): ...
    """
    account = try_get_current_account(request)
    if account is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
        )
    return account


def require_admin(request: Request) -> Account:
    """Require the admin flag. Raises HTTP 401 if unauthenticated, HTTP 403 if not admin."""
    account = get_current_account(request)
    if not account.is_admin:
        raise HTTPException(
            status_code=403,
            detail={"code": "forbidden", "message": "Admin access required."},
        )
    return account
