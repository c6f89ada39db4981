"""Social network service module - public API exports"""

from app.services.social.errors import (
    PkceRequiredError,
    ProviderError,
    PublishError,
    UnsupportedNetworkError,
)
from app.services.social.registry import ProviderRegistry, get_provider_registry
from app.services.social.orchestrator import (
    aggregate_content_state,
    publish_content,
    publish_due_content,
    publish_one,
    retry_failed_publications,
    run_publish_pass,
)

__all__ = [
    "PkceRequiredError",
    "ProviderError",
    "PublishError",
    "UnsupportedNetworkError",
    "ProviderRegistry",
    "get_provider_registry",
    "aggregate_content_state",
    "publish_content",
    "publish_due_content",
    "publish_one",
    "retry_failed_publications",
    "run_publish_pass",
]
