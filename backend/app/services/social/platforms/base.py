"""Abstract base class for social network provider adapters"""

import logging
import time
import uuid
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional
from urllib.parse import urlencode

import httpx

from app.core.config import ProviderConfig, settings
from app.schemas.oauth import TokenResult, UserInfo
from app.schemas.publish import ChannelCredentials, PublishRequest
from app.services.social.errors import PkceRequiredError, ProviderError
from app.services.social.helpers import expires_at_from, extract_provider_error


def response_json(response: httpx.Response) -> Any:
    """Parsed JSON body, or None when the body is not JSON"""
    try:
        return response.json()
    except ValueError:
        return None


def placeholder_external_id(network: str) -> str:
    """External id recorded when a network has nothing publishable (e.g. no media)"""
    return f"{network}-placeholder-{uuid.uuid4().hex[:12]}"


class BaseProviderAdapter(ABC):
    """Interface contract for one social network.

    Each network implements authorization URL building, code exchange, refresh,
    revoke, user info and publishing. Adding a network means writing one
    subclass and registering it; orchestration code does not change.

    Expected provider failures during authentication come back as a failed
    TokenResult. Publishing raises ProviderError/PublishError, which the
    orchestrator records per item.
    """

    network: str = ""
    authorize_url: str = ""
    # Authorization server mandates PKCE (S256)
    requires_pkce: bool = False
    # Refresh re-presents the access token instead of a refresh token
    refresh_uses_access_token: bool = False

    def __init__(
        self,
        config: ProviderConfig,
        http_client: Optional[httpx.Client] = None,
        sleep: Callable[[float], None] = time.sleep,
        poll_interval: float = 5.0,
        poll_max_attempts: int = 12,
    ):
        self.config = config
        self._http = http_client
        self.sleep = sleep
        self.poll_interval = poll_interval
        self.poll_max_attempts = poll_max_attempts
        self.logger = logging.getLogger(self.network)

    @property
    def http(self) -> httpx.Client:
        if self._http is None:
            self._http = httpx.Client(timeout=settings.HTTP_TIMEOUT_SECONDS)
        return self._http

    # ------------------------------------------------------------------
    # Authorization
    # ------------------------------------------------------------------

    def default_scopes(self) -> str:
        return self.config.scope_string

    def _authorize_params(self, state: str, redirect_uri: str, scopes: str) -> Dict[str, str]:
        return {
            "client_id": self.config.client_id,
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "scope": scopes,
            "state": state,
        }

    def build_authorize_url(
        self,
        state: str,
        redirect_uri: str,
        code_challenge: Optional[str] = None,
        scopes: Optional[str] = None,
    ) -> str:
        """Provider authorize URL for one attempt

        Raises:
            PkceRequiredError: If the network requires PKCE and no challenge was given
        """
        if self.requires_pkce and not code_challenge:
            raise PkceRequiredError(self.network)
        params = self._authorize_params(state, redirect_uri, scopes or self.default_scopes())
        if code_challenge:
            params["code_challenge"] = code_challenge
            params["code_challenge_method"] = "S256"
        return f"{self.authorize_url}?{urlencode(params)}"

    @abstractmethod
    def exchange_code(self, code: str, redirect_uri: str, code_verifier: Optional[str] = None) -> TokenResult:
        """Trade an authorization code for tokens"""

    @abstractmethod
    def refresh(self, token: str) -> TokenResult:
        """Obtain a fresh access token

        Args:
            token: The refresh token, or the access token when
                refresh_uses_access_token is set
        """

    @abstractmethod
    def fetch_user_info(self, access_token: str) -> Optional[UserInfo]:
        """Profile of the authorized user, or None if it cannot be fetched"""

    def fetch_channel_profile(self, credentials: ChannelCredentials) -> Optional[UserInfo]:
        """Profile lookup with a channel's stored credentials, used by the health check"""
        return self.fetch_user_info(credentials.access_token)

    def revoke_token(self, access_token: str) -> bool:
        """Revoke a token at the provider; networks without a revoke endpoint return False"""
        return False

    @abstractmethod
    def publish(self, credentials: ChannelCredentials, request: PublishRequest) -> str:
        """Publish content and return the provider's post id

        Raises:
            ProviderError: If the provider rejects the request
        """

    def _missing_verifier(self) -> TokenResult:
        self.logger.error(f"{self.network} code exchange attempted without a PKCE code verifier")
        return TokenResult.failure(
            "missing_code_verifier",
            f"{self.network} requires a PKCE code verifier for the code exchange"
        )

    # ------------------------------------------------------------------
    # HTTP helpers
    # ------------------------------------------------------------------

    def _parse_token_payload(self, payload: Dict[str, Any]) -> TokenResult:
        refresh_expires_in = payload.get("refresh_token_expires_in", payload.get("refresh_expires_in"))
        return TokenResult(
            success=True,
            access_token=payload.get("access_token"),
            refresh_token=payload.get("refresh_token"),
            expires_at=expires_at_from(payload.get("expires_in")),
            refresh_token_expires_at=expires_at_from(refresh_expires_in),
            scopes=payload.get("scope"),
        )

    def _token_request(
        self,
        url: str,
        data: Dict[str, str],
        method: str = "POST",
        auth: Optional[httpx.Auth] = None,
    ) -> TokenResult:
        """Call a token endpoint and map the response to a TokenResult"""
        try:
            if method == "GET":
                response = self.http.get(url, params=data)
            else:
                response = self.http.post(
                    url, data=data, auth=auth,
                    headers={"Content-Type": "application/x-www-form-urlencoded"}
                )
        except httpx.HTTPError as e:
            self.logger.warning(f"{self.network} token endpoint unreachable: {type(e).__name__}: {e}")
            return TokenResult.failure("network_error", str(e))

        payload = response_json(response)
        if response.status_code >= 400 or not isinstance(payload, dict) or not payload.get("access_token"):
            code, description = extract_provider_error(payload if payload is not None else response.text)
            code = code or f"http_{response.status_code}"
            self.logger.warning(
                f"{self.network} token request failed: HTTP {response.status_code}, code={code}, {description}"
            )
            return TokenResult.failure(code, description)

        return self._parse_token_payload(payload)

    def _request(self, method: str, url: str, **kwargs) -> Dict[str, Any]:
        """Call a provider API and return its JSON body (see _send)"""
        _, payload = self._send(method, url, **kwargs)
        return payload if isinstance(payload, dict) else {}

    def _send(self, method: str, url: str, **kwargs):
        """Call a provider API and return (response, parsed JSON body)

        Raises:
            ProviderError: On transport failure, HTTP error status or an error envelope
        """
        try:
            response = self.http.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise ProviderError(self.network, f"Request failed: {type(e).__name__}: {e}")

        payload = response_json(response)
        if response.status_code >= 400:
            code, description = extract_provider_error(payload if payload is not None else response.text)
            raise ProviderError(
                self.network,
                description or f"HTTP {response.status_code}",
                error_code=code,
                status_code=response.status_code,
            )
        if isinstance(payload, dict) and isinstance(payload.get("error"), dict):
            code, description = extract_provider_error(payload)
            if code:
                raise ProviderError(self.network, description or "Provider error", error_code=code,
                                    status_code=response.status_code)
        return response, payload

    @staticmethod
    def bearer(access_token: str) -> Dict[str, str]:
        return {"Authorization": f"Bearer {access_token.strip()}"}
