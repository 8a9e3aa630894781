"""
Connectors API - Google account authorization lifecycle

The reauthorize endpoint flags the stored credential and returns a consent
URL; Google redirects back to /callback with the code and our state.
"""
import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from apps.api.dependencies import get_context, require_admin_token
from packages.common.context import AppContext
from packages.domain.credentials.oauth_client import decode_state, encode_state

logger = structlog.get_logger()
router = APIRouter()


class UserRequest(BaseModel):
    user: str = Field(..., min_length=1)


@router.post("/google/reauthorize")
async def reauthorize(
    request: UserRequest,
    ctx: AppContext = Depends(get_context),
):
    """Mark the credential reauth_required and hand back a consent URL"""
    user = request.user.strip()
    if not user:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="missing user")

    # Fails on a missing client config before the stored credential is touched
    url = ctx.oauth_client().authorization_url(encode_state(user))
    await ctx.credential_broker().reauthorize(user)
    return {"ok": True, "url": url}


@router.get("/google/callback")
async def callback(
    code: str = Query(..., min_length=1),
    state: str = Query(..., min_length=1),
    ctx: AppContext = Depends(get_context),
):
    """Finish the consent flow: exchange the code and activate the credential"""
    user = decode_state(state)
    if not user:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing or invalid state")

    oauth = ctx.oauth_client()
    now = ctx.clock()
    grant = await ctx.retry_executor().execute(
        lambda: oauth.exchange_code(code, now),
        description="google_code_exchange",
        max_attempts=ctx.settings.retry_max_attempts,
    )
    credential = await ctx.credential_broker().complete_authorization(user, grant)

    return {
        "ok": True,
        "user": user,
        "status": credential.status.value,
        "granted_scopes": credential.granted_scopes,
    }


@router.get("/google/status")
async def connector_status(
    user: str = Query(..., min_length=1),
    ctx: AppContext = Depends(get_context),
):
    """Lifecycle state of the user's Google credential"""
    state = await ctx.credential_broker().state_of(user)
    return {"ok": True, "user": user, "state": state.value}


@router.post("/google/refresh", dependencies=[Depends(require_admin_token)])
async def refresh(
    request: UserRequest,
    ctx: AppContext = Depends(get_context),
):
    """Make sure the user has a live access token (refreshing if needed); the token itself is not returned"""
    broker = ctx.credential_broker()
    await broker.ensure_access_token(request.user)
    credential = await ctx.credentials.get(request.user, broker.provider)
    return {
        "ok": True,
        "user": request.user,
        "expires_at": credential.access_token_expires_at if credential else None,
    }
