"""Shared helpers for provider adapters: error envelopes, OAuth 1.0a signing, polling"""
import base64
import hashlib
import hmac
import secrets
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Dict, NamedTuple, Optional
from urllib.parse import parse_qsl, quote, urlsplit, urlunsplit


# ============================================================================
# ERROR ENVELOPES
# ============================================================================

class ProviderErrorInfo(NamedTuple):
    code: Optional[str]
    description: Optional[str]


def _as_str(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


def extract_provider_error(payload: Any) -> ProviderErrorInfo:
    """Pull (code, description) out of any provider error body

    Handles the shapes the six networks use:
    - Graph API: {"error": {"code": 190, "error_subcode": 463, "message": ...}}
    - OAuth 2.0: {"error": "invalid_grant", "error_description": ...}
    - TikTok: {"error": {"code": "access_token_invalid", "message": ...}}
    - X: {"errors": [{"code": 89, "message": ...}]} or {"title": ..., "detail": ...}
    - LinkedIn: {"serviceErrorCode": 65600, "message": ...}
    Missing fields yield None rather than raising.
    """
    if payload is None:
        return ProviderErrorInfo(None, None)
    if isinstance(payload, (str, bytes)):
        text = payload.decode(errors="replace") if isinstance(payload, bytes) else payload
        return ProviderErrorInfo(None, _as_str(text.strip()[:500]))
    if isinstance(payload, list):
        return extract_provider_error(payload[0]) if payload else ProviderErrorInfo(None, None)
    if not isinstance(payload, dict):
        return ProviderErrorInfo(None, _as_str(payload))

    error = payload.get("error")
    if isinstance(error, dict):
        code = _as_str(error.get("code"))
        # TikTok wraps successful responses in {"error": {"code": "ok"}}
        if code == "ok":
            code = None
        if code is None:
            code = _as_str(error.get("error_subcode")) or _as_str(error.get("status"))
        description = _as_str(error.get("message")) or _as_str(error.get("error_user_msg"))
        subcode = error.get("error_subcode")
        if description and subcode is not None and code != _as_str(subcode):
            description = f"{description} (subcode {subcode})"
        return ProviderErrorInfo(code, description)
    if isinstance(error, str):
        return ProviderErrorInfo(
            _as_str(error),
            _as_str(payload.get("error_description")) or _as_str(payload.get("message"))
        )

    errors = payload.get("errors")
    if isinstance(errors, list) and errors:
        first = errors[0] if isinstance(errors[0], dict) else {"message": errors[0]}
        return ProviderErrorInfo(
            _as_str(first.get("code")) or _as_str(payload.get("type")),
            _as_str(first.get("message")) or _as_str(first.get("detail"))
        )

    if "serviceErrorCode" in payload:
        return ProviderErrorInfo(_as_str(payload.get("serviceErrorCode")), _as_str(payload.get("message")))

    if "title" in payload or "detail" in payload:
        return ProviderErrorInfo(
            _as_str(payload.get("type")) or _as_str(payload.get("status")),
            _as_str(payload.get("detail")) or _as_str(payload.get("title"))
        )

    return ProviderErrorInfo(_as_str(payload.get("code")), _as_str(payload.get("message")))


def expires_at_from(expires_in: Any, now: Optional[datetime] = None) -> Optional[datetime]:
    """Convert an `expires_in` seconds value into an absolute UTC datetime"""
    try:
        seconds = int(expires_in)
    except (TypeError, ValueError):
        return None
    if seconds <= 0:
        return None
    return (now or datetime.now(timezone.utc)) + timedelta(seconds=seconds)


# ============================================================================
# OAUTH 1.0a (RFC 5849, HMAC-SHA1)
# ============================================================================

def percent_encode(value: Any) -> str:
    """RFC 3986 percent-encoding (unreserved characters left as is)"""
    return quote(str(value), safe="~")


def oauth1_base_string(method: str, url: str, params: Dict[str, str]) -> str:
    """Signature base string: METHOD&enc(base_url)&enc(sorted normalized params)"""
    parts = urlsplit(url)
    base_url = urlunsplit((parts.scheme.lower(), parts.netloc.lower(), parts.path, "", ""))
    all_params = list(params.items()) + parse_qsl(parts.query, keep_blank_values=True)
    encoded = sorted((percent_encode(k), percent_encode(v)) for k, v in all_params)
    param_string = "&".join(f"{k}={v}" for k, v in encoded)
    return "&".join([method.upper(), percent_encode(base_url), percent_encode(param_string)])


def oauth1_signature(base_string: str, consumer_secret: str, token_secret: str) -> str:
    key = f"{percent_encode(consumer_secret)}&{percent_encode(token_secret)}"
    digest = hmac.new(key.encode(), base_string.encode(), hashlib.sha1).digest()
    return base64.b64encode(digest).decode()


def build_oauth1_header(
    method: str,
    url: str,
    consumer_key: str,
    consumer_secret: str,
    token: str,
    token_secret: str,
    extra_params: Optional[Dict[str, str]] = None,
    nonce: Optional[str] = None,
    timestamp: Optional[str] = None,
) -> str:
    """Authorization header value for an OAuth 1.0a user-context request

    JSON request bodies are not part of the signature; form parameters must be
    passed as `extra_params`.
    """
    oauth_params = {
        "oauth_consumer_key": consumer_key,
        "oauth_nonce": nonce or secrets.token_hex(16),
        "oauth_signature_method": "HMAC-SHA1",
        "oauth_timestamp": timestamp or str(int(time.time())),
        "oauth_token": token,
        "oauth_version": "1.0",
    }
    signing_params = dict(oauth_params)
    signing_params.update(extra_params or {})
    base_string = oauth1_base_string(method, url, signing_params)
    oauth_params["oauth_signature"] = oauth1_signature(base_string, consumer_secret, token_secret)
    header_params = ", ".join(
        f'{percent_encode(k)}="{percent_encode(v)}"' for k, v in sorted(oauth_params.items())
    )
    return f"OAuth {header_params}"


# ============================================================================
# POLLING
# ============================================================================

class PollState(str, Enum):
    IN_PROGRESS = "in_progress"
    FINISHED = "finished"
    ERROR = "error"
    TIMED_OUT = "timed_out"


@dataclass
class PollOutcome:
    state: PollState
    last_response: Any = None
    attempts: int = 0


def poll_until(
    fetch: Callable[[], Any],
    classify: Callable[[Any], PollState],
    max_attempts: int,
    interval: float,
    sleep: Callable[[float], None] = time.sleep,
) -> PollOutcome:
    """Poll a status endpoint until it leaves IN_PROGRESS or attempts run out

    No sleep happens after the last attempt. `sleep` is injectable so tests do
    not wait.
    """
    last = None
    for attempt in range(1, max(1, max_attempts) + 1):
        last = fetch()
        state = classify(last)
        if state in (PollState.FINISHED, PollState.ERROR):
            return PollOutcome(state, last, attempt)
        if attempt < max_attempts:
            sleep(interval)
    return PollOutcome(PollState.TIMED_OUT, last, max(1, max_attempts))
