"""
Shared FastAPI dependencies
"""
import hmac
from typing import Optional

import structlog
from fastapi import Depends, Header, HTTPException, Request, status

from packages.common.context import AppContext

logger = structlog.get_logger()


def get_context(request: Request) -> AppContext:
    """AppContext built by the application lifespan"""
    return request.app.state.context


def require_admin_token(
    request: Request,
    x_admin_token: Optional[str] = Header(None, alias="X-Admin-Token"),
    ctx: AppContext = Depends(get_context),
) -> None:
    """
    Guard for admin-only endpoints.

    Answers 404 rather than 401 so the endpoint does not advertise itself.
    """
    expected = ctx.settings.admin_token
    # Bytes so a non-ASCII header compares unequal instead of raising TypeError
    if not expected or not x_admin_token or not hmac.compare_digest(
        x_admin_token.encode("utf-8"), expected.encode("utf-8")
    ):
        logger.warning("admin_token_rejected", path=request.url.path)
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not Found")
