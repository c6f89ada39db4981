"""Facebook Pages adapter (Meta Graph API)"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from app.core.config import FACEBOOK_AUTH_URL, GRAPH_API_BASE
from app.schemas.oauth import TokenResult, UserInfo
from app.schemas.publish import ChannelCredentials, PublishRequest
from app.services.social.errors import ProviderError, PublishError
from app.services.social.platforms.base import BaseProviderAdapter

# Long-lived user tokens last about 60 days; Graph sometimes omits expires_in
LONG_LIVED_TOKEN_DAYS = 60


class MetaGraphAdapter(BaseProviderAdapter):
    """Shared Graph API behaviour for Facebook and Instagram.

    Meta has no refresh-token grant: the code exchange returns a short-lived
    token that is immediately traded for a long-lived one, and "refresh" is the
    same trade performed again with the current (still valid) access token.
    """

    authorize_url = FACEBOOK_AUTH_URL
    refresh_uses_access_token = True

    def exchange_code(self, code: str, redirect_uri: str, code_verifier: Optional[str] = None) -> TokenResult:
        short_lived = self._token_request(
            f"{GRAPH_API_BASE}/oauth/access_token",
            {
                "client_id": self.config.client_id,
                "client_secret": self.config.client_secret,
                "redirect_uri": redirect_uri,
                "code": code,
            },
            method="GET",
        )
        if not short_lived.success:
            return short_lived

        long_lived = self._exchange_for_long_lived(short_lived.access_token)
        if not long_lived.success:
            # The short-lived token still works for a few hours; the next refresh pass retries
            self.logger.warning(
                f"Long-lived token exchange failed ({long_lived.error_code}), keeping short-lived token"
            )
            return short_lived
        return long_lived

    def refresh(self, token: str) -> TokenResult:
        return self._exchange_for_long_lived(token)

    def _exchange_for_long_lived(self, access_token: str) -> TokenResult:
        result = self._token_request(
            f"{GRAPH_API_BASE}/oauth/access_token",
            {
                "grant_type": "fb_exchange_token",
                "client_id": self.config.client_id,
                "client_secret": self.config.client_secret,
                "fb_exchange_token": access_token,
            },
            method="GET",
        )
        if result.success and result.expires_at is None:
            result.expires_at = datetime.now(timezone.utc) + timedelta(days=LONG_LIVED_TOKEN_DAYS)
        return result

    def _graph(self, method: str, path: str, access_token: str, **params) -> Dict[str, Any]:
        params["access_token"] = access_token
        if method == "GET":
            return self._request("GET", f"{GRAPH_API_BASE}/{path}", params=params)
        return self._request(method, f"{GRAPH_API_BASE}/{path}", data=params)

    def _get_me(self, access_token: str) -> Dict[str, Any]:
        return self._graph("GET", "me", access_token, fields="id,name,picture")

    def list_pages(self, access_token: str) -> List[Dict[str, Any]]:
        """Pages the user manages, each with its page-scoped access token"""
        payload = self._graph("GET", "me/accounts", access_token, fields="id,name,access_token")
        return [page for page in payload.get("data") or [] if isinstance(page, dict) and page.get("id")]


class FacebookAdapter(MetaGraphAdapter):
    network = "facebook"

    def fetch_user_info(self, access_token: str) -> Optional[UserInfo]:
        try:
            me = self._get_me(access_token)
        except ProviderError as e:
            self.logger.warning(f"Failed to fetch Facebook profile: {e}")
            return None
        if not me.get("id"):
            return None
        picture = ((me.get("picture") or {}).get("data") or {}).get("url")
        return UserInfo(
            id=str(me["id"]),
            username=me.get("name"),
            display_name=me.get("name"),
            avatar_url=picture,
        )

    def _select_page(self, pages: List[Dict[str, Any]], credentials: ChannelCredentials) -> Dict[str, Any]:
        preferred = credentials.extra_data.get("page_id")
        if preferred:
            for page in pages:
                if str(page.get("id")) == str(preferred):
                    return page
        return pages[0]

    def publish(self, credentials: ChannelCredentials, request: PublishRequest) -> str:
        pages = self.list_pages(credentials.access_token)
        if not pages:
            raise PublishError(self.network, "No Facebook page is available for this connection")

        page = self._select_page(pages, credentials)
        page_id = str(page["id"])
        # Page-scoped token when Graph provides one, otherwise the user token
        token = page.get("access_token") or credentials.access_token

        image = next((m for m in request.media if m.is_image and m.url), None)
        if image is not None:
            self.logger.info(f"Publishing photo post to Facebook page {page_id}")
            payload = self._graph("POST", f"{page_id}/photos", token, url=image.url, caption=request.text)
            post_id = payload.get("post_id") or payload.get("id")
        else:
            self.logger.info(f"Publishing text post to Facebook page {page_id}")
            payload = self._graph("POST", f"{page_id}/feed", token, message=request.text)
            post_id = payload.get("id")

        if not post_id:
            raise PublishError(self.network, "Graph API returned no post id")
        return str(post_id)
