"""Facebook data deletion callback

Meta calls this endpoint when a user removes the app from their Facebook
settings. The request carries a signed_request that must be verified with the
app secret before anything is deleted.
"""
import hashlib
import logging
import re
import time

from fastapi import APIRouter, Depends, Form, HTTPException
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.metrics import data_deletion_requests_counter
from app.db.helpers import delete_by_external_user_id
from app.db.session import get_db
from app.models.enums import SocialNetwork
from app.utils.signed_request import SignedRequestError, parse_signed_request

logger = logging.getLogger("security")

router = APIRouter(prefix="/data-deletion", tags=["data-deletion"])

CONFIRMATION_CODE_PATTERN = re.compile(r"^[0-9a-f]{16}$")
# Facebook user ids also own the Instagram business connections made through them
META_NETWORKS = (SocialNetwork.FACEBOOK, SocialNetwork.INSTAGRAM)

SIGNED_REQUEST_STATUS = {
    "invalid_format": 400,
    "invalid_signature": 401,
    "invalid_payload": 400,
}


def confirmation_code_for(user_id: str, timestamp: int) -> str:
    return hashlib.sha256(f"{user_id}:{timestamp}".encode()).hexdigest()[:16]


def _error(status_code: int, error: str, message: str) -> HTTPException:
    data_deletion_requests_counter.labels(status=error).inc()
    return HTTPException(status_code, detail={"error": error, "message": message})


@router.post("/facebook")
def facebook_data_deletion(
    signed_request: str = Form(None),
    db: Session = Depends(get_db),
):
    """Delete every Facebook/Instagram connection of the user in the signed request"""
    if not signed_request:
        raise _error(400, "invalid_request", "signed_request is required")

    if not settings.FACEBOOK_APP_SECRET:
        logger.error("Data deletion request received but FACEBOOK_APP_SECRET is not configured")
        raise _error(500, "configuration_error", "Data deletion is not configured")

    try:
        payload = parse_signed_request(signed_request, settings.FACEBOOK_APP_SECRET)
    except SignedRequestError as e:
        logger.warning(f"Rejected data deletion request: {e.code} - {e}")
        raise _error(SIGNED_REQUEST_STATUS.get(e.code, 400), e.code, str(e))

    external_user_id = str(payload["user_id"])
    deleted = delete_by_external_user_id(external_user_id, META_NETWORKS, db)

    code = confirmation_code_for(external_user_id, int(time.time()))
    data_deletion_requests_counter.labels(status="success").inc()
    logger.info(f"Data deletion request {code} processed: {deleted} connection(s) removed")

    return {
        "url": f"{settings.BACKEND_URL.rstrip('/')}/data-deletion/status/{code}",
        "confirmation_code": code,
    }


@router.get("/status/{code}")
def data_deletion_status(code: str):
    """Status page Meta links the user to; deletion runs synchronously so it is always complete"""
    if not CONFIRMATION_CODE_PATTERN.match(code):
        raise HTTPException(404, detail={"error": "not_found", "message": "Unknown confirmation code"})
    return {
        "confirmation_code": code,
        "status": "completed",
        "message": "All data associated with your account has been deleted.",
    }
