"""
api/routes/v1/profile.py -- Self-service profile endpoints.

Routes:
  GET  /api/v1/profile           -- own profile
  PUT  /api/v1/profile           -- change username and/or email
  POST /api/v1/profile/password  -- change password (current password required)

All routes act on the authenticated account only; there is no account ID in
the path, so one user can never address another user's profile.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.exc import IntegrityError

from api.models import PasswordChange, ProfileResponse, ProfileUpdate
from auth.dependencies import get_current_account
from auth.models import Account
from auth.store import CredentialStore
from auth.tokens import hash_password, verify_password

logger = logging.getLogger("keyportal.api.profile")

# Auth policy: every route requires auth (router-level dependency).
router = APIRouter(dependencies=[Depends(get_current_account)])


def _to_profile(account: Account) -> ProfileResponse:
    return ProfileResponse(
        id=account.id,
        username=account.username,
        email=account.email,
        hwid=account.hwid,
        ip_address=account.ip_address,
        last_login=account.last_login,
    )


@router.get("/profile", response_model=ProfileResponse)
def get_profile(current_account: Account = Depends(get_current_account)) -> ProfileResponse:
    return _to_profile(current_account)


@router.put("/profile", response_model=ProfileResponse)
def update_profile(
    request: Request,
    body: ProfileUpdate,
    current_account: Account = Depends(get_current_account),
) -> ProfileResponse:
    """Update username and/or email. 409 if either is taken by another account."""
    store: CredentialStore = request.app.state.store

    updates: dict = {}
    if body.username is not None and body.username != current_account.username:
        other = store.get_account_by_username(body.username)
        if other is not None:
            raise HTTPException(
                status_code=409,
                detail={"code": "conflict", "message": "Username already exists."},
            )
        updates["username"] = body.username
    if body.email is not None and body.email != current_account.email:
        other = store.get_account_by_email(body.email)
        if other is not None:
            raise HTTPException(
                status_code=409,
                detail={"code": "conflict", "message": "Email already registered."},
            )
        updates["email"] = body.email

    if updates:
        try:
            store.update_account(current_account.id, **updates)
        except IntegrityError as exc:
            raise HTTPException(
                status_code=409,
                detail={"code": "conflict", "message": "Username or email already exists."},
            ) from exc

    updated = store.get_account_by_id(current_account.id)
    if updated is None:
        raise HTTPException(
            status_code=404,
            detail={"code": "not_found", "message": "Account not found."},
        )
    return _to_profile(updated)


@router.post("/profile/password")
def change_password(
    request: Request,
    body: PasswordChange,
    current_account: Account = Depends(get_current_account),
) -> dict:
    store: CredentialStore = request.app.state.store
    if not verify_password(body.current_password, current_account.hashed_password):
        raise HTTPException(
            status_code=400,
            detail={"code": "bad_password", "message": "Current password is incorrect."},
        )
    store.update_account(current_account.id, hashed_password=hash_password(body.new_password))
    logger.info("Password changed for account %d", current_account.id)
    return {"message": "Password updated."}
