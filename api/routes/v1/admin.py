"""
api/routes/v1/admin.py -- Administrator endpoints: accounts, keys, audit.

Routes:
  GET    /api/v1/admin/stats                     -- account/key totals
  GET    /api/v1/admin/users                     -- paginated account list
  POST   /api/v1/admin/users/{id}/block          -- block or unblock
  POST   /api/v1/admin/users/{id}/reset-hwid     -- clear hardware binding
  POST   /api/v1/admin/generate-keys             -- mint a batch of keys
  GET    /api/v1/admin/recent-keys               -- newest keys
  POST   /api/v1/admin/keys/{id}/assign          -- give an unowned key to an account
  DELETE /api/v1/admin/keys/{id}                 -- delete any key
  GET    /api/v1/admin/login-attempts            -- recent login audit rows

Safety:
  [M4] An admin cannot block their own account.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response

from api.models import (
    AccessKeyResponse,
    AccountResponse,
    AccountStatusEnum,
    BlockRequest,
    KeyAssignRequest,
    KeyGenerationRequest,
    LoginAttemptResponse,
    StatsResponse,
    UserListResponse,
)
from auth.dependencies import require_admin
from auth.models import Account
from auth.store import CredentialStore
from licensing.errors import KeyClaimError, KeyGenerationError, KeyNotFoundError
from licensing.keygen import assign_access_key, generate_access_keys

logger = logging.getLogger("keyportal.api.admin")

# Auth policy: every route requires admin (router-level dependency).
router = APIRouter(prefix="/admin", dependencies=[Depends(require_admin)])


def _not_found(message: str) -> HTTPException:
    return HTTPException(status_code=404, detail={"code": "not_found", "message": message})


# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------


@router.get("/stats", response_model=StatsResponse)
def get_stats(request: Request) -> StatsResponse:
    store: CredentialStore = request.app.state.store
    return StatsResponse.from_stats(store.get_stats())


@router.get("/users", response_model=UserListResponse)
def list_users(
    request: Request,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1, le=100),
    search: str | None = Query(default=None, max_length=255),
    status: AccountStatusEnum = AccountStatusEnum.all,
) -> UserListResponse:
    """Return one page of accounts, newest first, with the filtered total."""
    store: CredentialStore = request.app.state.store
    accounts, total = store.list_accounts(
        limit=limit,
        offset=(page - 1) * limit,
        search=search or None,
        status=status.value,
    )
    return UserListResponse(
        users=[AccountResponse.from_account(a) for a in accounts],
        total=total,
        page=page,
        limit=limit,
    )


@router.post("/users/{user_id}/block", response_model=AccountResponse)
def block_user(
    request: Request,
    user_id: int,
    body: BlockRequest,
    current_account: Account = Depends(require_admin),
) -> AccountResponse:
    store: CredentialStore = request.app.state.store
    if body.blocked and user_id == current_account.id:  # [M4]
        raise HTTPException(
            status_code=400,
            detail={"code": "self_block", "message": "You cannot block your own account."},
        )
    if not store.set_blocked(user_id, body.blocked):
        raise _not_found("User not found.")
    logger.info(
        "Admin %d %s account %d",
        current_account.id,
        "blocked" if body.blocked else "unblocked",
        user_id,
    )
    updated = store.get_account_by_id(user_id)
    if updated is None:
        raise _not_found("User not found.")
    return AccountResponse.from_account(updated)


@router.post("/users/{user_id}/reset-hwid", response_model=AccountResponse)
def reset_hwid(
    request: Request,
    user_id: int,
    current_account: Account = Depends(require_admin),
) -> AccountResponse:
    """Clear the hardware binding; the next desktop login binds the new machine."""
    store: CredentialStore = request.app.state.store
    if not store.clear_hwid(user_id):
        raise _not_found("User not found.")
    logger.info("Admin %d reset hardware ID of account %d", current_account.id, user_id)
    updated = store.get_account_by_id(user_id)
    if updated is None:
        raise _not_found("User not found.")
    return AccountResponse.from_account(updated)


# ---------------------------------------------------------------------------
# Keys
# ---------------------------------------------------------------------------


@router.post("/generate-keys", response_model=list[AccessKeyResponse], status_code=201)
def generate_keys(
    request: Request,
    body: KeyGenerationRequest,
    current_account: Account = Depends(require_admin),
) -> list[AccessKeyResponse]:
    store: CredentialStore = request.app.state.store
    try:
        keys = generate_access_keys(
            store,
            quantity=body.quantity,
            expiration_days=body.expiration_days,
            prefix=body.prefix,
            notes=body.notes,
        )
    except KeyGenerationError as exc:
        logger.error("Key generation by admin %d failed: %s", current_account.id, exc)
        raise HTTPException(
            status_code=500,
            detail={"code": "key_generation_failed", "message": "Failed to generate keys."},
        ) from exc
    logger.info("Admin %d generated %d key(s)", current_account.id, len(keys))
    return [AccessKeyResponse.from_key(k) for k in keys]


@router.get("/recent-keys", response_model=list[AccessKeyResponse])
def recent_keys(
    request: Request,
    limit: int = Query(default=20, ge=1, le=100),
) -> list[AccessKeyResponse]:
    store: CredentialStore = request.app.state.store
    return [AccessKeyResponse.from_key(k) for k in store.list_recent_access_keys(limit)]


@router.post("/keys/{key_id}/assign", response_model=AccessKeyResponse)
def assign_key(
    request: Request,
    key_id: int,
    body: KeyAssignRequest,
) -> AccessKeyResponse:
    store: CredentialStore = request.app.state.store
    try:
        key = assign_access_key(store, key_id, body.user_id)
    except KeyNotFoundError as exc:
        raise _not_found(str(exc)) from exc
    except KeyClaimError as exc:
        raise HTTPException(
            status_code=409,
            detail={"code": "conflict", "message": str(exc)},
        ) from exc
    return AccessKeyResponse.from_key(key)


@router.delete("/keys/{key_id}", status_code=204)
def delete_key(
    request: Request,
    key_id: int,
    current_account: Account = Depends(require_admin),
) -> Response:
    store: CredentialStore = request.app.state.store
    if not store.delete_access_key(key_id):
        raise _not_found("Access key not found.")
    logger.info("Admin %d deleted key %d", current_account.id, key_id)
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Audit
# ---------------------------------------------------------------------------


@router.get("/login-attempts", response_model=list[LoginAttemptResponse])
def login_attempts(
    request: Request,
    username: str | None = Query(default=None, max_length=255),
    limit: int = Query(default=50, ge=1, le=200),
) -> list[LoginAttemptResponse]:
    store: CredentialStore = request.app.state.store
    return [LoginAttemptResponse.from_attempt(a) for a in store.list_login_attempts(username=username, limit=limit)]
