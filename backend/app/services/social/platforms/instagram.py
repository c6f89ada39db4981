"""Instagram business account adapter (Meta Graph API content publishing)"""

from typing import Any, Dict, Optional

from app.schemas.oauth import UserInfo
from app.schemas.publish import ChannelCredentials, MediaAttachment, PublishRequest
from app.services.social.errors import ProviderError, PublishError
from app.services.social.helpers import PollState, poll_until
from app.services.social.platforms.base import placeholder_external_id
from app.services.social.platforms.facebook import MetaGraphAdapter

CAPTION_MAX_LENGTH = 2200


def classify_container_status(payload: Dict[str, Any]) -> PollState:
    status = str((payload or {}).get("status_code") or "").upper()
    if status in ("FINISHED", "PUBLISHED"):
        return PollState.FINISHED
    if status in ("ERROR", "EXPIRED"):
        return PollState.ERROR
    return PollState.IN_PROGRESS


class InstagramAdapter(MetaGraphAdapter):
    network = "instagram"

    def resolve_business_account_id(self, access_token: str) -> Optional[str]:
        """Walk pages -> linked Instagram business account; first linked account wins"""
        for page in self.list_pages(access_token):
            payload = self._graph("GET", str(page["id"]), access_token, fields="instagram_business_account")
            account = payload.get("instagram_business_account") or {}
            if account.get("id"):
                return str(account["id"])
        return None

    def fetch_user_info(self, access_token: str) -> Optional[UserInfo]:
        try:
            ig_id = self.resolve_business_account_id(access_token)
            if not ig_id:
                self.logger.warning("No Instagram business account is linked to any Facebook page")
                return None
            profile = self._graph("GET", ig_id, access_token, fields="id,username,name,profile_picture_url")
            owner = self._get_me(access_token)
        except ProviderError as e:
            self.logger.warning(f"Failed to fetch Instagram profile: {e}")
            return None
        return UserInfo(
            id=str(profile.get("id") or ig_id),
            username=profile.get("username"),
            display_name=profile.get("name") or profile.get("username"),
            avatar_url=profile.get("profile_picture_url"),
            owner_id=str(owner["id"]) if owner.get("id") else None,
        )

    def _container_params(self, media: MediaAttachment, caption: str) -> Dict[str, str]:
        if not media.url:
            raise PublishError(self.network, "Instagram requires a publicly reachable media URL")
        if media.is_video:
            return {"video_url": media.url, "media_type": "REELS", "caption": caption}
        return {"image_url": media.url, "caption": caption}

    def publish(self, credentials: ChannelCredentials, request: PublishRequest) -> str:
        if not request.media:
            # Text-only posts do not exist on Instagram
            placeholder = placeholder_external_id(self.network)
            self.logger.info(f"Instagram publish skipped, no media attached (recorded as {placeholder})")
            return placeholder

        token = credentials.access_token
        ig_id = credentials.extra_data.get("instagram_business_account_id") or credentials.external_user_id
        if not ig_id:
            ig_id = self.resolve_business_account_id(token)
        if not ig_id:
            raise PublishError(self.network, "No Instagram business account linked. Please reconnect Instagram.")

        caption = (request.text or "")[:CAPTION_MAX_LENGTH]

        # Step 1: create media container
        container = self._graph("POST", f"{ig_id}/media", token, **self._container_params(request.media[0], caption))
        container_id = container.get("id")
        if not container_id:
            raise PublishError(self.network, "Graph API returned no media container id")
        self.logger.info(f"Created Instagram media container {container_id}")

        # Step 2: wait for the container to finish processing
        outcome = poll_until(
            fetch=lambda: self._graph("GET", str(container_id), token, fields="status_code,status"),
            classify=classify_container_status,
            max_attempts=self.poll_max_attempts,
            interval=self.poll_interval,
            sleep=self.sleep,
        )
        if outcome.state == PollState.ERROR:
            detail = (outcome.last_response or {}).get("status") or "processing failed"
            raise PublishError(self.network, f"Media container {container_id} failed: {detail}")
        if outcome.state == PollState.TIMED_OUT:
            raise PublishError(
                self.network,
                f"Media container {container_id} still processing after {outcome.attempts} checks"
            )

        # Step 3: publish the finished container
        published = self._graph("POST", f"{ig_id}/media_publish", token, creation_id=str(container_id))
        media_id = published.get("id")
        if not media_id:
            raise PublishError(self.network, "Graph API returned no media id on publish")
        self.logger.info(f"Published Instagram media {media_id}")
        return str(media_id)
