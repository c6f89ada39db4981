"""Security dependencies: session authentication and CSRF"""
import logging
from typing import Optional

from fastapi import Depends, Header, HTTPException, Request

from app.db.redis import get_csrf_token, get_session

security_logger = logging.getLogger("security")


def require_auth(request: Request) -> int:
    """Dependency: Require authentication, return user_id"""
    session_id = request.cookies.get("session_id")

    if not session_id:
        raise HTTPException(401, "Not authenticated. Please log in.")

    user_id = get_session(session_id)
    if not user_id:
        raise HTTPException(401, "Session expired. Please log in again.")

    return user_id


async def require_csrf_new(
    request: Request,
    user_id: int = Depends(require_auth),
    x_csrf_token: Optional[str] = Header(None, alias="X-CSRF-Token")
) -> int:
    """Dependency: Require auth + valid CSRF token, return user_id"""
    session_id = request.cookies.get("session_id")

    # Header first; form submissions may carry it as a field instead
    csrf_token = x_csrf_token
    if not csrf_token:
        content_type = request.headers.get("content-type", "")
        if content_type.startswith(("application/x-www-form-urlencoded", "multipart/form-data")):
            form_data = await request.form()
            csrf_token = form_data.get("csrf_token")

    expected_csrf = get_csrf_token(session_id)
    if not expected_csrf or csrf_token != expected_csrf:
        security_logger.warning(
            f"CSRF validation failed - User: {user_id}, "
            f"IP: {request.client.host if request.client else 'unknown'}, "
            f"Path: {request.url.path}"
        )
        raise HTTPException(403, "Invalid or missing CSRF token")

    return user_id
