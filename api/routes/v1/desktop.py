"""
api/routes/v1/desktop.py -- Authentication endpoint for the desktop client.

Routes:
  POST /api/v1/desktop-auth -- username + password + access key + hardware ID

Response contract (what the desktop client parses):
  200 {"success": true,  "message": "Authentication successful"}
  401 {"success": false, "message": "<reason>"}
  400 {"success": false, "message": "Invalid request"}  -- malformed body

The body is validated by hand rather than through a typed parameter so a
malformed request answers 400 in the client's format instead of the API's
generic 422 envelope.

Exactly one login_attempts row is written per well-formed request.
"""

from __future__ import annotations

import json

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from starlette.concurrency import run_in_threadpool

from api.limiter import limiter
from api.models import DesktopAuthRequest, DesktopAuthResponse
from api.routes.v1.auth import client_address
from auth.store import CredentialStore
from core.config import get_settings
from licensing.desktop import validate_desktop_auth

_settings = get_settings()

# Auth policy:
# - POST /api/v1/desktop-auth: public -- the credentials are in the body
router = APIRouter()


def _authenticate(store: CredentialStore, body: DesktopAuthRequest, address: str):
    result = validate_desktop_auth(store, body.username, body.password, body.key, body.hwid)
    store.record_login_attempt(body.username, address, result.success)
    return result


@router.post("/desktop-auth", response_model=DesktopAuthResponse)
@limiter.limit(_settings.desktop_auth_rate_limit)
async def desktop_auth(request: Request) -> JSONResponse:
    """Authorize a desktop client session. See licensing.desktop for the guard order."""
    try:
        body = DesktopAuthRequest.model_validate(await request.json())
    except (json.JSONDecodeError, UnicodeDecodeError, ValidationError):
        return JSONResponse(
            status_code=400,
            content=DesktopAuthResponse(success=False, message="Invalid request").model_dump(),
        )

    store: CredentialStore = request.app.state.store
    # bcrypt is CPU-bound; keep it off the event loop.
    result = await run_in_threadpool(_authenticate, store, body, client_address(request))

    if result.success:
        return JSONResponse(
            status_code=200,
            content=DesktopAuthResponse(success=True, message="Authentication successful").model_dump(),
        )
    return JSONResponse(
        status_code=401,
        content=DesktopAuthResponse(success=False, message=result.message or "Authentication failed").model_dump(),
    )
