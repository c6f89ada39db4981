"""LinkedIn adapter (OpenID userinfo + UGC text shares)"""

from typing import Optional

from app.core.config import LINKEDIN_API_BASE, LINKEDIN_AUTH_URL, LINKEDIN_TOKEN_URL
from app.schemas.oauth import TokenResult, UserInfo
from app.schemas.publish import ChannelCredentials, PublishRequest
from app.services.social.errors import ProviderError, PublishError
from app.services.social.platforms.base import BaseProviderAdapter

RESTLI_HEADERS = {"X-Restli-Protocol-Version": "2.0.0"}


class LinkedInAdapter(BaseProviderAdapter):
    network = "linkedin"
    authorize_url = LINKEDIN_AUTH_URL

    def exchange_code(self, code: str, redirect_uri: str, code_verifier: Optional[str] = None) -> TokenResult:
        return self._token_request(
            LINKEDIN_TOKEN_URL,
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": redirect_uri,
                "client_id": self.config.client_id,
                "client_secret": self.config.client_secret,
            },
        )

    def refresh(self, token: str) -> TokenResult:
        return self._token_request(
            LINKEDIN_TOKEN_URL,
            {
                "grant_type": "refresh_token",
                "refresh_token": token,
                "client_id": self.config.client_id,
                "client_secret": self.config.client_secret,
            },
        )

    def _userinfo(self, access_token: str) -> dict:
        return self._request("GET", f"{LINKEDIN_API_BASE}/v2/userinfo", headers=self.bearer(access_token))

    def fetch_user_info(self, access_token: str) -> Optional[UserInfo]:
        try:
            user = self._userinfo(access_token)
        except ProviderError as e:
            self.logger.warning(f"Failed to fetch LinkedIn profile: {e}")
            return None
        if not user.get("sub"):
            return None
        return UserInfo(
            id=str(user["sub"]),
            username=user.get("name"),
            display_name=user.get("name"),
            avatar_url=user.get("picture"),
        )

    def resolve_person_urn(self, credentials: ChannelCredentials) -> str:
        urn = credentials.extra_data.get("person_urn")
        if urn:
            return urn
        sub = self._userinfo(credentials.access_token).get("sub")
        if not sub:
            raise PublishError(self.network, "Could not resolve the LinkedIn member id")
        return f"urn:li:person:{sub}"

    def publish(self, credentials: ChannelCredentials, request: PublishRequest) -> str:
        author = self.resolve_person_urn(credentials)
        body = {
            "author": author,
            "lifecycleState": "PUBLISHED",
            "specificContent": {
                "com.linkedin.ugc.ShareContent": {
                    "shareCommentary": {"text": request.text or ""},
                    "shareMediaCategory": "NONE",
                }
            },
            "visibility": {"com.linkedin.ugc.MemberNetworkVisibility": "PUBLIC"},
        }
        headers = dict(self.bearer(credentials.access_token))
        headers.update(RESTLI_HEADERS)
        response, payload = self._send("POST", f"{LINKEDIN_API_BASE}/v2/ugcPosts", json=body, headers=headers)
        post_id = response.headers.get("x-restli-id") or (payload or {}).get("id")
        if not post_id:
            raise PublishError(self.network, "LinkedIn returned no post id")
        self.logger.info(f"Published LinkedIn share {post_id}")
        return str(post_id)
