"""TikTok adapter (Login Kit v2 with PKCE, Content Posting API)"""

from typing import Any, Dict, Optional, Tuple

import httpx

from app.core.config import TIKTOK_API_BASE, TIKTOK_AUTH_URL, TIKTOK_REVOKE_URL, TIKTOK_TOKEN_URL
from app.schemas.oauth import TokenResult, UserInfo
from app.schemas.publish import ChannelCredentials, PublishRequest
from app.services.social.errors import ProviderError, PublishError
from app.services.social.helpers import PollState, extract_provider_error, poll_until
from app.services.social.platforms.base import BaseProviderAdapter, response_json

PHOTO_INIT_URL = f"{TIKTOK_API_BASE}/v2/post/publish/content/init/"
VIDEO_INIT_URL = f"{TIKTOK_API_BASE}/v2/post/publish/video/init/"
STATUS_URL = f"{TIKTOK_API_BASE}/v2/post/publish/status/fetch/"
USER_INFO_URL = f"{TIKTOK_API_BASE}/v2/user/info/"

TITLE_MAX_LENGTH = 90
DESCRIPTION_MAX_LENGTH = 4000
JSON_HEADERS = {"Content-Type": "application/json; charset=UTF-8"}


def classify_publish_status(payload: Dict[str, Any]) -> PollState:
    status = str(((payload or {}).get("data") or {}).get("status") or "").upper()
    if status == "PUBLISH_COMPLETE":
        return PollState.FINISHED
    if status == "FAILED":
        return PollState.ERROR
    # PROCESSING_UPLOAD, PROCESSING_DOWNLOAD, SEND_TO_USER_INBOX
    return PollState.IN_PROGRESS


def public_post_id(data: Dict[str, Any]) -> Optional[str]:
    # The API spells this field "publicaly_available_post_id" and returns a list
    for key in ("publicaly_available_post_id", "publicly_available_post_id"):
        value = data.get(key)
        if isinstance(value, list):
            value = value[0] if value else None
        if value:
            return str(value)
    return None


class TikTokAdapter(BaseProviderAdapter):
    network = "tiktok"
    authorize_url = TIKTOK_AUTH_URL
    requires_pkce = True

    def _authorize_params(self, state: str, redirect_uri: str, scopes: str) -> Dict[str, str]:
        # TikTok names the client id "client_key" and separates scopes with commas
        return {
            "client_key": self.config.client_id,
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "scope": scopes,
            "state": state,
        }

    def exchange_code(self, code: str, redirect_uri: str, code_verifier: Optional[str] = None) -> TokenResult:
        if not code_verifier:
            return self._missing_verifier()
        return self._token_request(
            TIKTOK_TOKEN_URL,
            {
                "client_key": self.config.client_id,
                "client_secret": self.config.client_secret,
                "code": code,
                "grant_type": "authorization_code",
                "redirect_uri": redirect_uri,
                "code_verifier": code_verifier,
            },
        )

    def refresh(self, token: str) -> TokenResult:
        # TikTok may rotate the refresh token
        return self._token_request(
            TIKTOK_TOKEN_URL,
            {
                "client_key": self.config.client_id,
                "client_secret": self.config.client_secret,
                "grant_type": "refresh_token",
                "refresh_token": token,
            },
        )

    def fetch_user_info(self, access_token: str) -> Optional[UserInfo]:
        try:
            payload = self._request(
                "GET", USER_INFO_URL,
                params={"fields": "open_id,union_id,avatar_url,display_name"},
                headers=self.bearer(access_token),
            )
        except ProviderError as e:
            self.logger.warning(f"Failed to fetch TikTok profile: {e}")
            return None
        user = (payload.get("data") or {}).get("user") or {}
        if not user.get("open_id"):
            return None
        return UserInfo(
            id=str(user["open_id"]),
            username=user.get("display_name"),
            display_name=user.get("display_name"),
            avatar_url=user.get("avatar_url"),
        )

    def revoke_token(self, access_token: str) -> bool:
        try:
            response = self.http.post(
                TIKTOK_REVOKE_URL,
                data={
                    "client_key": self.config.client_id,
                    "client_secret": self.config.client_secret,
                    "token": access_token,
                },
                headers={"Content-Type": "application/x-www-form-urlencoded"},
            )
        except httpx.HTTPError as e:
            self.logger.warning(f"TikTok token revoke failed: {e}")
            return False
        payload = response_json(response) or {}
        return response.status_code == 200 and extract_provider_error(payload).code is None

    def _init_body(self, request: PublishRequest) -> Tuple[str, Dict[str, Any]]:
        text = request.text or ""
        title = (request.title or text)[:TITLE_MAX_LENGTH]
        images = [m.url for m in request.media if m.is_image and m.url]
        if images:
            return PHOTO_INIT_URL, {
                "post_info": {
                    "title": title,
                    "description": text[:DESCRIPTION_MAX_LENGTH],
                    "privacy_level": "PUBLIC_TO_EVERYONE",
                    "disable_comment": False,
                },
                "source_info": {
                    "source": "PULL_FROM_URL",
                    "photo_cover_index": 0,
                    "photo_images": images,
                },
                "post_mode": "DIRECT_POST",
                "media_type": "PHOTO",
            }
        video = next((m for m in request.media if m.is_video and m.url), None)
        if video is not None:
            return VIDEO_INIT_URL, {
                "post_info": {"title": text[:2200], "privacy_level": "PUBLIC_TO_EVERYONE"},
                "source_info": {"source": "PULL_FROM_URL", "video_url": video.url},
            }
        raise PublishError(self.network, "TikTok media must be reachable by URL")

    def publish(self, credentials: ChannelCredentials, request: PublishRequest) -> str:
        if not request.media:
            raise PublishError(self.network, "TikTok requires at least one media attachment")

        url, body = self._init_body(request)
        headers = dict(self.bearer(credentials.access_token))
        headers.update(JSON_HEADERS)

        init = self._request("POST", url, json=body, headers=headers)
        publish_id = (init.get("data") or {}).get("publish_id")
        if not publish_id:
            raise PublishError(self.network, "TikTok returned no publish_id")
        self.logger.info(f"Initialized TikTok publish {publish_id}")

        outcome = poll_until(
            fetch=lambda: self._request("POST", STATUS_URL, json={"publish_id": publish_id}, headers=headers),
            classify=classify_publish_status,
            max_attempts=self.poll_max_attempts,
            interval=self.poll_interval,
            sleep=self.sleep,
        )
        data = (outcome.last_response or {}).get("data") or {}

        if outcome.state == PollState.ERROR:
            raise PublishError(self.network, f"TikTok publish {publish_id} failed: {data.get('fail_reason') or 'unknown'}")
        if outcome.state == PollState.TIMED_OUT:
            # TikTok keeps processing server-side; the publish id identifies the post
            self.logger.info(f"TikTok publish {publish_id} still processing after {outcome.attempts} checks")
            return str(publish_id)

        post_id = public_post_id(data) or publish_id
        self.logger.info(f"TikTok publish {publish_id} complete (post {post_id})")
        return str(post_id)
