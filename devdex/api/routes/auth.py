"""Admin authentication routes.

A single shared admin password unlocks write operations for the
browser session. The login time is kept in the signed session cookie
and expires after the configured TTL.
"""

import logging
import time

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel

from devdex.core.auth import AuthContext
from ..deps import SESSION_AUTH_KEY, get_admin_gate, get_auth_context

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


# ── Request/Response models ──────────────────────────────────────────────

class LoginRequest(BaseModel):
    password: str


# ── Routes ───────────────────────────────────────────────────────────────

@router.post("/login")
async def login(data: LoginRequest, request: Request, gate=Depends(get_admin_gate)):
    """Authenticate with the admin password."""
    if not gate.check_password(data.password):
        raise HTTPException(status_code=401, detail="Invalid password")

    now = time.time()
    request.session[SESSION_AUTH_KEY] = now
    logger.info("Admin logged in")
    return {
        "success": True,
        "authenticated": True,
        "expires_at": now + gate.session_ttl_seconds,
    }


@router.post("/logout")
async def logout(request: Request):
    request.session.clear()
    return {"success": True, "message": "Logged out successfully"}


@router.get("/status")
async def status(
    auth: AuthContext = Depends(get_auth_context),
    gate=Depends(get_admin_gate),
):
    """Report whether the current session holds a live admin login."""
    if not auth.is_admin:
        return {"success": True, "authenticated": False, "expires_at": None}
    return {
        "success": True,
        "authenticated": True,
        "expires_at": auth.authenticated_at + gate.session_ttl_seconds,
    }
