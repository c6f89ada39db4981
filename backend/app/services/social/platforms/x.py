"""X (Twitter) adapter: OAuth 2.0 with PKCE, plus OAuth 1.0a signing for API-key connections"""

from typing import Optional

import httpx

from app.core.config import X_API_BASE, X_AUTH_URL, X_REVOKE_URL, X_TOKEN_URL
from app.models.enums import AuthMethod
from app.schemas.oauth import TokenResult, UserInfo
from app.schemas.publish import ChannelCredentials, PublishRequest
from app.services.social.errors import ProviderError, PublishError
from app.services.social.helpers import build_oauth1_header
from app.services.social.platforms.base import BaseProviderAdapter, response_json

TWEETS_URL = f"{X_API_BASE}/2/tweets"
# Query string is part of the URL so OAuth 1.0a signs it
USERS_ME_URL = f"{X_API_BASE}/2/users/me?user.fields=profile_image_url"


class XAdapter(BaseProviderAdapter):
    network = "x"
    authorize_url = X_AUTH_URL
    requires_pkce = True

    def _client_auth(self) -> Optional[httpx.Auth]:
        # Confidential clients authenticate with HTTP Basic; public clients only send client_id
        if self.config.client_secret:
            return httpx.BasicAuth(self.config.client_id, self.config.client_secret)
        return None

    def exchange_code(self, code: str, redirect_uri: str, code_verifier: Optional[str] = None) -> TokenResult:
        if not code_verifier:
            return self._missing_verifier()
        return self._token_request(
            X_TOKEN_URL,
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": redirect_uri,
                "code_verifier": code_verifier,
                "client_id": self.config.client_id,
            },
            auth=self._client_auth(),
        )

    def refresh(self, token: str) -> TokenResult:
        # X rotates refresh tokens; the caller stores the new one
        return self._token_request(
            X_TOKEN_URL,
            {
                "grant_type": "refresh_token",
                "refresh_token": token,
                "client_id": self.config.client_id,
            },
            auth=self._client_auth(),
        )

    def fetch_user_info(self, access_token: str) -> Optional[UserInfo]:
        return self._fetch_me(self.bearer(access_token))

    def fetch_channel_profile(self, credentials: ChannelCredentials) -> Optional[UserInfo]:
        return self._fetch_me(self._auth_headers("GET", USERS_ME_URL, credentials))

    def _fetch_me(self, headers) -> Optional[UserInfo]:
        try:
            payload = self._request("GET", USERS_ME_URL, headers=headers)
        except ProviderError as e:
            self.logger.warning(f"Failed to fetch X profile: {e}")
            return None
        user = payload.get("data") or {}
        if not user.get("id"):
            return None
        return UserInfo(
            id=str(user["id"]),
            username=user.get("username"),
            display_name=user.get("name"),
            avatar_url=user.get("profile_image_url"),
        )

    def _auth_headers(self, method: str, url: str, credentials: ChannelCredentials):
        """OAuth 1.0a signature for API-key connections, bearer token otherwise"""
        if credentials.auth_method != AuthMethod.API_KEY.value:
            return self.bearer(credentials.access_token)
        return {
            "Authorization": build_oauth1_header(
                method, url,
                consumer_key=credentials.api_key,
                consumer_secret=credentials.api_secret,
                token=credentials.access_token,
                token_secret=credentials.access_token_secret,
            )
        }

    def revoke_token(self, access_token: str) -> bool:
        try:
            response = self.http.post(
                X_REVOKE_URL,
                data={
                    "token": access_token,
                    "token_type_hint": "access_token",
                    "client_id": self.config.client_id,
                },
                auth=self._client_auth(),
            )
        except httpx.HTTPError as e:
            self.logger.warning(f"X token revoke failed: {e}")
            return False
        payload = response_json(response) or {}
        return response.status_code == 200 and payload.get("revoked", True) is not False

    def publish(self, credentials: ChannelCredentials, request: PublishRequest) -> str:
        text = (request.text or "").strip()
        if not text:
            raise PublishError(self.network, "X posts require text")
        if request.media:
            self.logger.info(f"X publishing is text only; ignoring {len(request.media)} media attachment(s)")

        headers = self._auth_headers("POST", TWEETS_URL, credentials)
        payload = self._request("POST", TWEETS_URL, json={"text": text}, headers=headers)
        tweet_id = (payload.get("data") or {}).get("id")
        if not tweet_id:
            raise PublishError(self.network, "X API returned no tweet id")
        self.logger.info(f"Published tweet {tweet_id}")
        return str(tweet_id)
