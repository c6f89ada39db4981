"""Publish orchestrator tests"""
from datetime import datetime, timedelta, timezone
from unittest.mock import Mock

import httpx
import pytest

from app.core.config import settings
from app.db.redis import claim_lease
from app.models.content import ContentItem, ContentMedia, ContentPublishItem
from app.models.notification import Notification
from app.models.social_connection import SocialConnection
from app.services.social.errors import PublishError
from app.services.social.orchestrator import (
    aggregate_content_state, build_publish_request, publish_content, publish_due_content,
    publish_one, retry_failed_publications, run_publish_pass
)
from app.services.social.registry import ProviderRegistry


def make_adapter(network: str, external_id: str = None, error: Exception = None) -> Mock:
    adapter = Mock()
    adapter.network = network
    if error is not None:
        adapter.publish.side_effect = error
    else:
        adapter.publish.return_value = external_id or f"{network}-post-1"
    return adapter


def connect(db_session, vault, account, network, **kwargs):
    connection = SocialConnection(
        account_id=account.id,
        network=network,
        auth_method="oauth",
        access_token=vault.protect(f"{network}-access"),
        refresh_token=vault.protect(f"{network}-refresh"),
        connection_status="connected",
        health_status=kwargs.pop("health_status", "ok"),
        is_enabled=kwargs.pop("is_enabled", True),
        **kwargs
    )
    db_session.add(connection)
    db_session.commit()
    return connection


def make_content(db_session, account, networks, state="adapted", scheduled_at=None, media=()):
    content = ContentItem(
        account_id=account.id,
        title="Launch",
        text="We are live",
        state=state,
        scheduled_at=scheduled_at or datetime.now(timezone.utc) - timedelta(minutes=1),
    )
    for network in networks:
        content.publish_items.append(ContentPublishItem(network=network, state="ready", retry_count=0))
    for index, (url, content_type) in enumerate(media):
        content.media.append(ContentMedia(url=url, content_type=content_type, sort_order=index))
    db_session.add(content)
    db_session.commit()
    db_session.refresh(content)
    return content


def item_for(content, network):
    return next(i for i in content.publish_items if i.network == network)


@pytest.mark.critical
class TestPublishContent:
    """Test fan-out and aggregation of the parent state"""

    def test_partial_success(self, db_session, vault, test_account):
        for network in ("facebook", "linkedin", "x"):
            connect(db_session, vault, test_account, network)
        content = make_content(db_session, test_account, ["facebook", "linkedin", "x"])
        registry = ProviderRegistry({
            "facebook": make_adapter("facebook", "123_456"),
            "linkedin": make_adapter("linkedin", "urn:li:share:1"),
            "x": make_adapter("x", error=PublishError("x", "Duplicate content", error_code="187")),
        })

        counts = publish_content(content, db_session, registry=registry, vault=vault)

        assert counts == {"published": 2, "failed": 1}
        db_session.refresh(content)
        assert content.state == "partially_published"
        assert content.published_at is None
        facebook = item_for(content, "facebook")
        assert facebook.state == "published"
        assert facebook.external_post_id == "123_456"
        x_item = item_for(content, "x")
        assert x_item.state == "failed"
        assert x_item.retry_count == 1
        assert "Duplicate content" in x_item.last_error
        assert len(x_item.error_log) == 1
        # The failing channel is marked unhealthy, the others stay OK
        channels = {c.network: c for c in db_session.query(SocialConnection).all()}
        assert channels["x"].health_status == "ko"
        assert channels["facebook"].health_status == "ok"

    def test_all_published(self, db_session, vault, test_account):
        for network in ("facebook", "linkedin"):
            connect(db_session, vault, test_account, network)
        content = make_content(db_session, test_account, ["facebook", "linkedin"])
        registry = ProviderRegistry({"facebook": make_adapter("facebook"), "linkedin": make_adapter("linkedin")})

        publish_content(content, db_session, registry=registry, vault=vault)

        db_session.refresh(content)
        assert content.state == "published"
        assert content.published_at is not None

    def test_nothing_published_leaves_state_unchanged(self, db_session, vault, test_account):
        content = make_content(db_session, test_account, ["tiktok"])

        counts = publish_content(content, db_session, registry=ProviderRegistry(), vault=vault)

        assert counts == {"published": 0, "failed": 1}
        db_session.refresh(content)
        assert content.state == "adapted"

    def test_adapter_receives_decrypted_credentials_and_media(self, db_session, vault, test_account):
        connect(db_session, vault, test_account, "linkedin", extra_data={"person_urn": "urn:li:person:abc"})
        content = make_content(db_session, test_account, ["linkedin"],
                               media=[("https://cdn.example.com/b.png", "image/png")])
        adapter = make_adapter("linkedin")

        publish_content(content, db_session, registry=ProviderRegistry({"linkedin": adapter}), vault=vault)

        credentials, request = adapter.publish.call_args[0]
        assert credentials.access_token == "linkedin-access"
        assert credentials.extra_data["person_urn"] == "urn:li:person:abc"
        assert request.text == "We are live"
        assert [m.url for m in request.media] == ["https://cdn.example.com/b.png"]


@pytest.mark.critical
class TestPublishOne:
    """Test per-item publish rules"""

    def test_missing_channel_fails_item(self, db_session, vault, test_account):
        content = make_content(db_session, test_account, ["youtube"])
        item = item_for(content, "youtube")

        result = publish_one(item.id, db_session, registry=ProviderRegistry(), vault=vault)

        assert result.success is False
        assert result.error == "No channel configured for youtube"
        db_session.refresh(item)
        assert item.state == "failed"
        assert item.retry_count == 1

    def test_disabled_channel_counts_as_missing(self, db_session, vault, test_account):
        connect(db_session, vault, test_account, "x", is_enabled=False)
        content = make_content(db_session, test_account, ["x"])
        adapter = make_adapter("x")

        result = publish_one(item_for(content, "x").id, db_session, registry=ProviderRegistry({"x": adapter}),
                             vault=vault)

        assert result.error == "No channel configured for x"
        adapter.publish.assert_not_called()

    def test_unhealthy_channel_defers_ready_item(self, db_session, vault, test_account):
        connect(db_session, vault, test_account, "x", health_status="ko", last_error_message="rate limited")
        content = make_content(db_session, test_account, ["x"])
        item = item_for(content, "x")
        adapter = make_adapter("x")

        result = publish_one(item.id, db_session, registry=ProviderRegistry({"x": adapter}), vault=vault)

        assert result.success is False
        assert "rate limited" in result.error
        adapter.publish.assert_not_called()
        db_session.refresh(item)
        assert item.state == "failed"
        # Nothing reached the provider, so no attempt is spent
        assert item.retry_count == 0

    def test_failed_item_is_retried_on_unhealthy_channel(self, db_session, vault, test_account):
        channel = connect(db_session, vault, test_account, "x", health_status="ko", last_error_message="timeout")
        content = make_content(db_session, test_account, ["x"])
        item = item_for(content, "x")
        item.state = "failed"
        item.retry_count = 1
        db_session.commit()
        adapter = make_adapter("x", "1791")

        result = publish_one(item.id, db_session, registry=ProviderRegistry({"x": adapter}), vault=vault)

        assert result.success is True
        adapter.publish.assert_called_once()
        db_session.refresh(channel)
        assert channel.health_status == "ok"

    def test_published_item_is_a_no_op(self, db_session, vault, test_account):
        connect(db_session, vault, test_account, "facebook")
        content = make_content(db_session, test_account, ["facebook"])
        item = item_for(content, "facebook")
        item.state = "published"
        item.external_post_id = "1_2"
        db_session.commit()
        adapter = make_adapter("facebook")

        result = publish_one(item.id, db_session, registry=ProviderRegistry({"facebook": adapter}), vault=vault)

        assert result.success is True
        assert result.external_post_id == "1_2"
        adapter.publish.assert_not_called()

    def test_retry_cap_is_respected(self, db_session, vault, test_account):
        connect(db_session, vault, test_account, "facebook")
        content = make_content(db_session, test_account, ["facebook"])
        item = item_for(content, "facebook")
        item.state = "failed"
        item.retry_count = settings.MAX_PUBLISH_RETRIES
        db_session.commit()
        adapter = make_adapter("facebook")

        result = publish_one(item.id, db_session, registry=ProviderRegistry({"facebook": adapter}), vault=vault)

        assert result.success is False
        assert "Retry limit" in result.error
        adapter.publish.assert_not_called()
        db_session.refresh(item)
        assert item.retry_count == settings.MAX_PUBLISH_RETRIES

    def test_pending_item_is_not_published(self, db_session, vault, test_account):
        connect(db_session, vault, test_account, "facebook")
        content = make_content(db_session, test_account, ["facebook"])
        item = item_for(content, "facebook")
        item.state = "pending"
        db_session.commit()

        result = publish_one(item.id, db_session, registry=ProviderRegistry({"facebook": make_adapter("facebook")}),
                             vault=vault)

        assert result.success is False
        assert "not ready" in result.error

    def test_leased_item_is_skipped(self, db_session, vault, test_account):
        connect(db_session, vault, test_account, "facebook")
        content = make_content(db_session, test_account, ["facebook"])
        item = item_for(content, "facebook")
        adapter = make_adapter("facebook")
        claim_lease("publish", item.id)

        result = publish_one(item.id, db_session, registry=ProviderRegistry({"facebook": adapter}), vault=vault)

        assert result.error == "Publish already in progress"
        adapter.publish.assert_not_called()

    def test_error_log_is_bounded(self, db_session, vault, test_account):
        connect(db_session, vault, test_account, "x")
        content = make_content(db_session, test_account, ["x"])
        item = item_for(content, "x")
        item.error_log = [{"error": f"old {i}"} for i in range(20)]
        db_session.commit()

        publish_one(item.id, db_session, registry=ProviderRegistry({"x": make_adapter("x", error=RuntimeError("boom"))}),
                    vault=vault)

        db_session.refresh(item)
        assert len(item.error_log) == 20
        assert item.error_log[-1]["error"] == "boom"

    def test_instagram_without_media_records_placeholder(self, db_session, vault, test_account, make_registry):
        connect(db_session, vault, test_account, "instagram")
        content = make_content(db_session, test_account, ["instagram"])

        def no_network(request: httpx.Request) -> httpx.Response:
            raise AssertionError(f"Unexpected request to {request.url}")

        result = publish_one(item_for(content, "instagram").id, db_session, registry=make_registry(no_network),
                             vault=vault)

        assert result.success is True
        assert result.external_post_id.startswith("instagram-placeholder-")


@pytest.mark.high
class TestScheduledPublishing:
    """Test the periodic publish and retry passes"""

    def test_only_due_adapted_content_is_published(self, db_session, vault, test_account):
        connect(db_session, vault, test_account, "facebook")
        due = make_content(db_session, test_account, ["facebook"])
        future = make_content(db_session, test_account, ["facebook"],
                              scheduled_at=datetime.now(timezone.utc) + timedelta(hours=1))
        draft = make_content(db_session, test_account, ["facebook"], state="draft")
        adapter = make_adapter("facebook")

        summary = publish_due_content(db_session, registry=ProviderRegistry({"facebook": adapter}), vault=vault)

        assert summary == {"content": 1, "published": 1, "failed": 0}
        for content, expected in ((due, "published"), (future, "adapted"), (draft, "draft")):
            db_session.refresh(content)
            assert content.state == expected

    def test_retry_moves_partial_content_to_published(self, db_session, vault, test_account):
        connect(db_session, vault, test_account, "facebook")
        connect(db_session, vault, test_account, "x")
        content = make_content(db_session, test_account, ["facebook", "x"])
        failing = ProviderRegistry({
            "facebook": make_adapter("facebook"),
            "x": make_adapter("x", error=PublishError("x", "Service unavailable")),
        })
        publish_content(content, db_session, registry=failing, vault=vault)
        db_session.refresh(content)
        assert content.state == "partially_published"

        x_channel = db_session.query(SocialConnection).filter(SocialConnection.network == "x").first()
        assert x_channel.health_status == "ko"

        healthy = ProviderRegistry({"facebook": make_adapter("facebook"), "x": make_adapter("x", "1790")})
        assert retry_failed_publications(db_session, registry=healthy, vault=vault) == 1

        db_session.refresh(content)
        assert content.state == "published"
        x_item = item_for(content, "x")
        assert x_item.external_post_id == "1790"
        assert x_item.retry_count == 1
        db_session.refresh(x_channel)
        assert x_channel.health_status == "ok"

    def test_transient_failure_is_retried_on_the_next_pass(self, db_session, vault, test_account):
        channel = connect(db_session, vault, test_account, "x")
        content = make_content(db_session, test_account, ["x"])
        adapter = make_adapter("x")
        adapter.publish.side_effect = [PublishError("x", "Service unavailable"), "1792"]
        registry = ProviderRegistry({"x": adapter})

        first = run_publish_pass(db_session, registry=registry, vault=vault)

        assert first == {"content": 1, "published": 0, "failed": 1, "retried": 0}
        assert adapter.publish.call_count == 1
        item = item_for(content, "x")
        assert item.state == "failed"
        assert item.retry_count == 1

        second = run_publish_pass(db_session, registry=registry, vault=vault)

        assert second["retried"] == 1
        assert adapter.publish.call_count == 2
        db_session.refresh(content)
        assert content.state == "published"
        assert item_for(content, "x").external_post_id == "1792"
        db_session.refresh(channel)
        assert channel.health_status == "ok"

    def test_last_allowed_attempt_raises_publish_failed_alert(self, db_session, vault, test_account, test_user):
        connect(db_session, vault, test_account, "x")
        content = make_content(db_session, test_account, ["x"])
        item = item_for(content, "x")
        item.state = "failed"
        item.retry_count = settings.MAX_PUBLISH_RETRIES - 1
        db_session.commit()
        registry = ProviderRegistry({"x": make_adapter("x", error=PublishError("x", "Service unavailable"))})

        assert retry_failed_publications(db_session, registry=registry, vault=vault) == 0

        db_session.refresh(item)
        assert item.retry_count == settings.MAX_PUBLISH_RETRIES
        alert = db_session.query(Notification).one()
        assert alert.type == "publish_failed"
        assert alert.user_id == test_user.id
        assert alert.title == "Publishing failed: X"
        assert alert.action_url == f"/content/{content.id}"
        assert "Service unavailable" in alert.message

    def test_earlier_failures_raise_no_alert(self, db_session, vault, test_account):
        connect(db_session, vault, test_account, "x")
        content = make_content(db_session, test_account, ["x"])
        registry = ProviderRegistry({"x": make_adapter("x", error=PublishError("x", "Service unavailable"))})

        publish_content(content, db_session, registry=registry, vault=vault)

        assert db_session.query(Notification).count() == 0

    def test_items_at_the_cap_are_not_retried(self, db_session, vault, test_account):
        connect(db_session, vault, test_account, "x")
        content = make_content(db_session, test_account, ["x"])
        item = item_for(content, "x")
        item.state = "failed"
        item.retry_count = settings.MAX_PUBLISH_RETRIES
        db_session.commit()
        adapter = make_adapter("x")

        assert retry_failed_publications(db_session, registry=ProviderRegistry({"x": adapter}), vault=vault) == 0
        adapter.publish.assert_not_called()


@pytest.mark.medium
class TestAggregation:
    def test_cancelled_content_is_never_moved(self, db_session, test_account):
        content = make_content(db_session, test_account, ["facebook"], state="cancelled")
        item_for(content, "facebook").state = "published"
        db_session.commit()

        assert aggregate_content_state(content, db_session) == "cancelled"

    def test_adapted_text_overrides_base_text(self, db_session, test_account):
        content = make_content(db_session, test_account, ["x"])
        item = item_for(content, "x")
        assert build_publish_request(item).text == "We are live"
        item.text = "We are live #launch"
        assert build_publish_request(item).text == "We are live #launch"
