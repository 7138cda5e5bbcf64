"""
api/routes/v1/keys.py -- The authenticated user's own access keys.

Routes:
  GET    /api/v1/keys            -- list own keys (newest first)
  POST   /api/v1/keys/redeem     -- claim an unowned key by its value
  DELETE /api/v1/keys/{key_id}   -- delete an own key

IDOR guard: DELETE passes the caller's account ID to the store, whose WHERE
clause requires both to match. Someone else's key answers 404, the same as
a key that does not exist.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, Response

from api.models import AccessKeyResponse, KeyRedeemRequest
from auth.dependencies import get_current_account
from auth.models import Account
from auth.store import CredentialStore
from licensing.errors import KeyClaimError
from licensing.keygen import claim_access_key

# Auth policy: every route requires auth (router-level dependency).
router = APIRouter(dependencies=[Depends(get_current_account)])


@router.get("/keys", response_model=list[AccessKeyResponse])
def list_keys(
    request: Request,
    current_account: Account = Depends(get_current_account),
) -> list[AccessKeyResponse]:
    store: CredentialStore = request.app.state.store
    return [AccessKeyResponse.from_key(k) for k in store.get_access_keys_for_account(current_account.id)]


@router.post("/keys/redeem", response_model=AccessKeyResponse, status_code=201)
def redeem_key(
    request: Request,
    body: KeyRedeemRequest,
    current_account: Account = Depends(get_current_account),
) -> AccessKeyResponse:
    """Claim a freshly minted key for the current account."""
    store: CredentialStore = request.app.state.store
    try:
        key = claim_access_key(store, body.key, current_account)
    except KeyClaimError as exc:
        raise HTTPException(
            status_code=400,
            detail={"code": "claim_failed", "message": str(exc)},
        ) from exc
    return AccessKeyResponse.from_key(key)


@router.delete("/keys/{key_id}", status_code=204)
def delete_key(
    request: Request,
    key_id: int,
    current_account: Account = Depends(get_current_account),
) -> Response:
    store: CredentialStore = request.app.state.store
    if not store.delete_access_key(key_id, user_id=current_account.id):
        raise HTTPException(
            status_code=404,
            detail={"code": "not_found", "message": "Access key not found."},
        )
    return Response(status_code=204)
