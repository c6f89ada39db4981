"""Pydantic schemas passed between the publish orchestrator and adapters"""
from typing import List, Optional

from pydantic import BaseModel, Field


class MediaAttachment(BaseModel):
    url: Optional[str] = None
    local_path: Optional[str] = None
    content_type: str

    @property
    def is_video(self) -> bool:
        return self.content_type.startswith("video/")

    @property
    def is_image(self) -> bool:
        return self.content_type.startswith("image/")


class ChannelCredentials(BaseModel):
    """Decrypted credentials, resolved just-in-time for one provider call"""
    auth_method: str
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    api_key: Optional[str] = None
    api_secret: Optional[str] = None
    access_token_secret: Optional[str] = None
    external_user_id: Optional[str] = None
    extra_data: dict = Field(default_factory=dict)

    def __repr__(self) -> str:
        return f"ChannelCredentials(auth_method={self.auth_method!r}, <redacted>)"

    __str__ = __repr__


class PublishRequest(BaseModel):
    text: str = ""
    title: Optional[str] = None
    media: List[MediaAttachment] = Field(default_factory=list)


class PublishResult(BaseModel):
    success: bool
    item_id: Optional[int] = None
    network: Optional[str] = None
    external_post_id: Optional[str] = None
    error: Optional[str] = None
