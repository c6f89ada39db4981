"""YouTube adapter (Google OAuth 2.0, Data API v3 resumable uploads)"""

from pathlib import Path
from typing import Any, Dict, Optional

import httpx
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from googleapiclient.http import MediaFileUpload

from app.core.config import GOOGLE_AUTH_URL, GOOGLE_REVOKE_URL, GOOGLE_TOKEN_URL
from app.schemas.oauth import TokenResult, UserInfo
from app.schemas.publish import ChannelCredentials, PublishRequest
from app.services.social.errors import ProviderError, PublishError
from app.services.social.platforms.base import BaseProviderAdapter, placeholder_external_id

TITLE_MAX_LENGTH = 100
DESCRIPTION_MAX_LENGTH = 5000
UPLOAD_CHUNK_SIZE = 8 * 1024 * 1024


class YouTubeAdapter(BaseProviderAdapter):
    network = "youtube"
    authorize_url = GOOGLE_AUTH_URL

    def _authorize_params(self, state: str, redirect_uri: str, scopes: str) -> Dict[str, str]:
        params = super()._authorize_params(state, redirect_uri, scopes)
        # offline + consent so Google issues a refresh token
        params.update({
            "access_type": "offline",
            "prompt": "consent",
            "include_granted_scopes": "true",
        })
        return params

    def exchange_code(self, code: str, redirect_uri: str, code_verifier: Optional[str] = None) -> TokenResult:
        data = {
            "code": code,
            "client_id": self.config.client_id,
            "client_secret": self.config.client_secret,
            "redirect_uri": redirect_uri,
            "grant_type": "authorization_code",
        }
        if code_verifier:
            data["code_verifier"] = code_verifier
        return self._token_request(GOOGLE_TOKEN_URL, data)

    def refresh(self, token: str) -> TokenResult:
        # Google never returns a new refresh token here; the stored one stays valid
        return self._token_request(
            GOOGLE_TOKEN_URL,
            {
                "client_id": self.config.client_id,
                "client_secret": self.config.client_secret,
                "refresh_token": token,
                "grant_type": "refresh_token",
            },
        )

    def _service(self, access_token: str):
        credentials = Credentials(token=access_token)
        return build("youtube", "v3", credentials=credentials, cache_discovery=False)

    def fetch_user_info(self, access_token: str) -> Optional[UserInfo]:
        try:
            response = self._service(access_token).channels().list(part="snippet", mine=True).execute()
        except HttpError as e:
            self.logger.warning(f"Failed to fetch YouTube channel: {e}")
            return None
        items = response.get("items") or []
        if not items:
            self.logger.warning("Authorized Google account has no YouTube channel")
            return None
        channel = items[0]
        snippet = channel.get("snippet") or {}
        thumbnail = ((snippet.get("thumbnails") or {}).get("default") or {}).get("url")
        return UserInfo(
            id=str(channel["id"]),
            username=snippet.get("customUrl") or snippet.get("title"),
            display_name=snippet.get("title"),
            avatar_url=thumbnail,
        )

    def revoke_token(self, access_token: str) -> bool:
        try:
            response = self.http.post(
                GOOGLE_REVOKE_URL,
                params={"token": access_token},
                headers={"Content-Type": "application/x-www-form-urlencoded"},
            )
        except httpx.HTTPError as e:
            self.logger.warning(f"Google token revoke failed: {e}")
            return False
        return response.status_code == 200

    def _video_body(self, request: PublishRequest) -> Dict[str, Any]:
        text = request.text or ""
        title = (request.title or text.split("\n", 1)[0] or "Untitled")[:TITLE_MAX_LENGTH]
        return {
            "snippet": {
                "title": title,
                "description": text[:DESCRIPTION_MAX_LENGTH],
            },
            "status": {
                "privacyStatus": "public",
                "selfDeclaredMadeForKids": False,
            },
        }

    def publish(self, credentials: ChannelCredentials, request: PublishRequest) -> str:
        video = next((m for m in request.media if m.is_video and m.local_path), None)
        if video is None:
            placeholder = placeholder_external_id(self.network)
            self.logger.info(f"YouTube publish skipped, no local video attached (recorded as {placeholder})")
            return placeholder

        video_path = Path(video.local_path).resolve()
        if not video_path.exists():
            raise PublishError(self.network, f"Video file not found: {video_path}")

        try:
            youtube = self._service(credentials.access_token)
            upload_request = youtube.videos().insert(
                part="snippet,status",
                body=self._video_body(request),
                media_body=MediaFileUpload(
                    str(video_path), mimetype=video.content_type,
                    chunksize=UPLOAD_CHUNK_SIZE, resumable=True
                ),
            )

            self.logger.info(f"Starting resumable upload of {video_path.name}")
            response = None
            chunk_count = 0
            while response is None:
                status, response = upload_request.next_chunk()
                if status:
                    chunk_count += 1
                    if chunk_count % 10 == 0:  # Log every 10 chunks
                        self.logger.info(f"Upload progress: {int(status.progress() * 100)}%")
        except HttpError as e:
            status_code = getattr(e.resp, "status", None)
            raise ProviderError(self.network, f"YouTube upload failed: {e}", error_code=str(status_code or ""),
                                status_code=status_code)

        video_id = (response or {}).get("id")
        if not video_id:
            raise PublishError(self.network, "YouTube returned no video id")
        self.logger.info(f"Uploaded {video_path.name}, YouTube ID: {video_id}")
        return str(video_id)
