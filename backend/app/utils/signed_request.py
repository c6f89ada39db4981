"""Facebook signed_request verification (data deletion callbacks)"""
import base64
import hashlib
import hmac
import json
from typing import Any, Dict


class SignedRequestError(ValueError):
    """Raised when a signed_request cannot be trusted

    `code` is one of invalid_format, invalid_signature, invalid_payload.
    """

    def __init__(self, code: str, message: str):
        super().__init__(message)
        self.code = code


def base64url_decode(value: str) -> bytes:
    padding = "=" * (-len(value) % 4)
    return base64.urlsafe_b64decode(value + padding)


def base64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode()


def parse_signed_request(signed_request: str, app_secret: str) -> Dict[str, Any]:
    """Verify `base64url(signature).base64url(payload)` and return the payload

    The signature is HMAC-SHA256 of the encoded payload keyed by the app secret.
    """
    parts = signed_request.split(".", 1)
    if len(parts) != 2 or not parts[0] or not parts[1]:
        raise SignedRequestError("invalid_format", "signed_request must have two dot-separated parts")

    encoded_sig, encoded_payload = parts
    try:
        signature = base64url_decode(encoded_sig)
    except (ValueError, TypeError):
        raise SignedRequestError("invalid_format", "signature is not valid base64url")

    expected = hmac.new(app_secret.encode(), encoded_payload.encode(), hashlib.sha256).digest()
    if not hmac.compare_digest(signature, expected):
        raise SignedRequestError("invalid_signature", "signature does not match payload")

    try:
        payload = json.loads(base64url_decode(encoded_payload))
    except (ValueError, TypeError):
        raise SignedRequestError("invalid_payload", "payload is not valid JSON")

    if not isinstance(payload, dict) or not payload.get("user_id"):
        raise SignedRequestError("invalid_payload", "payload has no user_id")

    algorithm = str(payload.get("algorithm", "HMAC-SHA256")).upper()
    if algorithm != "HMAC-SHA256":
        raise SignedRequestError("invalid_payload", f"unsupported algorithm {algorithm}")

    return payload
