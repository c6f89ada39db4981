"""Publish orchestration - fan content out to each network and aggregate the outcome"""
import logging
import threading
from datetime import datetime, timezone
from typing import Dict, Optional

from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.metrics import content_published_counter, publish_attempts_counter
from app.db.helpers import (
    get_api_key_credentials, get_connection_for, get_oauth_credentials, update_connection_health
)
from app.db.redis import claim_lease, release_lease
from app.models.content import ContentItem, ContentPublishItem
from app.models.enums import AuthMethod, ContentState, HealthStatus, PublishItemState
from app.schemas.publish import MediaAttachment, PublishRequest, PublishResult
from app.services.notification_service import create_publish_failed_alert
from app.services.social.registry import ProviderRegistry, get_provider_registry
from app.utils.encryption import CredentialVault, get_vault

logger = logging.getLogger("publish")

ERROR_LOG_LIMIT = 20
# Parent states the orchestrator is allowed to move forward
AGGREGATABLE_STATES = (ContentState.ADAPTED.value, ContentState.PARTIALLY_PUBLISHED.value)


def build_publish_request(item: ContentPublishItem) -> PublishRequest:
    """Adapted text (falling back to the base text) plus the content's media, in order"""
    content = item.content
    return PublishRequest(
        text=item.text if item.text is not None else (content.text or ""),
        title=content.title,
        media=[
            MediaAttachment(url=m.url, local_path=m.local_path, content_type=m.content_type)
            for m in content.media
        ],
    )


def _fail(item: ContentPublishItem, message: str, db: Session, connection=None,
          count_attempt: bool = True) -> PublishResult:
    """Record a failed attempt on the item and, if a provider call failed, on the channel

    With count_attempt=False the item is parked as Failed without spending one of
    its retries (nothing was sent to the provider).
    """
    now = datetime.now(timezone.utc)
    attempts = item.retry_count or 0
    item.state = PublishItemState.FAILED.value
    item.last_error = message
    error_log = list(item.error_log or [])
    error_log.append({"at": now.isoformat(), "attempt": attempts + 1 if count_attempt else attempts, "error": message})
    item.error_log = error_log[-ERROR_LOG_LIMIT:]
    if count_attempt:
        item.retry_count = attempts + 1
    db.commit()

    if connection is not None:
        update_connection_health(connection, HealthStatus.KO, db, error_message=message)

    if count_attempt and item.retry_count >= settings.MAX_PUBLISH_RETRIES:
        logger.warning(f"Item {item.id} ({item.network}) gave up after {item.retry_count} attempts: {message}")
        try:
            create_publish_failed_alert(item, message, db)
        except Exception as e:
            db.rollback()
            logger.error(f"Could not raise publish failure alert for item {item.id}: {e}")

    publish_attempts_counter.labels(network=item.network, status="failed").inc()
    return PublishResult(success=False, item_id=item.id, network=item.network, error=message)


def publish_one(
    item_id: int,
    db: Session,
    registry: Optional[ProviderRegistry] = None,
    vault: Optional[CredentialVault] = None,
) -> PublishResult:
    """Publish one per-network item

    Never raises for provider or credential problems: the failure is recorded on
    the item (retry_count + 1) and returned. A Ready item on a KO channel is
    parked as Failed without counting an attempt.
    """
    item = db.query(ContentPublishItem).filter(ContentPublishItem.id == item_id).first()
    if item is None:
        return PublishResult(success=False, item_id=item_id, error="Publish item not found")

    if item.state == PublishItemState.PUBLISHED.value:
        return PublishResult(success=True, item_id=item.id, network=item.network,
                             external_post_id=item.external_post_id)

    if item.retry_count >= settings.MAX_PUBLISH_RETRIES:
        return PublishResult(success=False, item_id=item.id, network=item.network,
                             error=f"Retry limit reached ({item.retry_count} attempts)")

    if item.state not in (PublishItemState.READY.value, PublishItemState.FAILED.value):
        return PublishResult(success=False, item_id=item.id, network=item.network,
                             error=f"Item is not ready for publishing (state {item.state})")

    if not claim_lease("publish", item.id):
        logger.info(f"Publish item {item.id} is being processed by another worker, skipping")
        return PublishResult(success=False, item_id=item.id, network=item.network,
                             error="Publish already in progress")

    try:
        return _publish_claimed(item, db, registry or get_provider_registry(), vault or get_vault())
    finally:
        release_lease("publish", item.id)


def _publish_claimed(
    item: ContentPublishItem,
    db: Session,
    registry: ProviderRegistry,
    vault: CredentialVault,
) -> PublishResult:
    network = item.network
    content = item.content

    connection = get_connection_for(content.account_id, network, db)
    if connection is None or not connection.is_enabled:
        message = f"No channel configured for {network}"
        logger.warning(f"{message} (account {content.account_id}, item {item.id})")
        return _fail(item, message, db)

    # A Failed item on its retry goes to the provider even on a KO channel;
    # a success is what brings the channel back to OK
    if connection.health_status == HealthStatus.KO.value and item.state == PublishItemState.READY.value:
        message = f"Channel for {network} is unhealthy: {connection.last_error_message or 'last check failed'}"
        logger.warning(f"Deferring publish of item {item.id}: {message}")
        return _fail(item, message, db, count_attempt=False)

    try:
        adapter = registry.get(network)
        if connection.auth_method == AuthMethod.API_KEY.value:
            credentials = get_api_key_credentials(connection, vault)
        else:
            credentials = get_oauth_credentials(connection, vault)
        request = build_publish_request(item)

        logger.info(f"Publishing content {content.id} to {network} (item {item.id}, attempt {item.retry_count + 1})")
        external_id = adapter.publish(credentials, request)
    except Exception as e:
        db.rollback()
        message = str(e) or type(e).__name__
        logger.error(
            f"Publish of item {item.id} to {network} failed: {type(e).__name__}: {message}",
            extra={"content_id": content.id, "item_id": item.id, "network": network},
        )
        return _fail(item, message, db, connection=connection)

    item.state = PublishItemState.PUBLISHED.value
    item.published_at = datetime.now(timezone.utc)
    item.external_post_id = external_id
    item.last_error = None
    db.commit()
    update_connection_health(connection, HealthStatus.OK, db)

    publish_attempts_counter.labels(network=network, status="published").inc()
    logger.info(f"Published item {item.id} to {network}: {external_id}")
    return PublishResult(success=True, item_id=item.id, network=network, external_post_id=external_id)


def aggregate_content_state(content: ContentItem, db: Session) -> str:
    """Derive the parent state from its per-network items

    All published -> Published (with timestamp); some -> PartiallyPublished;
    none -> unchanged.
    """
    if content.state not in AGGREGATABLE_STATES:
        return content.state

    items = list(content.publish_items)
    published = sum(1 for i in items if i.state == PublishItemState.PUBLISHED.value)

    if items and published == len(items):
        content.state = ContentState.PUBLISHED.value
        content.published_at = datetime.now(timezone.utc)
    elif published > 0:
        content.state = ContentState.PARTIALLY_PUBLISHED.value
    else:
        return content.state

    db.commit()
    content_published_counter.labels(state=content.state).inc()
    logger.info(f"Content {content.id} is now {content.state} ({published}/{len(items)} networks)")
    return content.state


def publish_content(
    content: ContentItem,
    db: Session,
    registry: Optional[ProviderRegistry] = None,
    vault: Optional[CredentialVault] = None,
    cancel_event: Optional[threading.Event] = None,
) -> Dict[str, int]:
    """Publish every Ready item of one content item, then aggregate its state"""
    ready_ids = [i.id for i in content.publish_items if i.state == PublishItemState.READY.value]
    published = failed = 0
    for item_id in ready_ids:
        if cancel_event is not None and cancel_event.is_set():
            break
        try:
            result = publish_one(item_id, db, registry=registry, vault=vault)
        except Exception as e:
            db.rollback()
            failed += 1
            logger.error(f"Publish of item {item_id} aborted: {e}", exc_info=True)
            continue
        if result.success:
            published += 1
        else:
            failed += 1

    db.refresh(content)
    aggregate_content_state(content, db)
    return {"published": published, "failed": failed}


def publish_due_content(
    db: Session,
    registry: Optional[ProviderRegistry] = None,
    vault: Optional[CredentialVault] = None,
    cancel_event: Optional[threading.Event] = None,
) -> Dict[str, int]:
    """Publish adapted content whose scheduled time has passed (bounded batch)"""
    now = datetime.now(timezone.utc)
    due = db.query(ContentItem).filter(
        ContentItem.state == ContentState.ADAPTED.value,
        ContentItem.scheduled_at.isnot(None),
        ContentItem.scheduled_at <= now,
    ).order_by(ContentItem.scheduled_at).limit(settings.PUBLISH_BATCH_SIZE).all()

    summary = {"content": 0, "published": 0, "failed": 0}
    for content in due:
        if cancel_event is not None and cancel_event.is_set():
            logger.info("Publish run cancelled")
            break
        try:
            counts = publish_content(content, db, registry=registry, vault=vault, cancel_event=cancel_event)
        except Exception as e:
            db.rollback()
            logger.error(f"Publishing content {content.id} aborted: {e}", exc_info=True)
            continue
        summary["content"] += 1
        summary["published"] += counts["published"]
        summary["failed"] += counts["failed"]

    if summary["content"]:
        logger.info(
            f"Publish run: {summary['content']} content item(s), "
            f"{summary['published']} published, {summary['failed']} failed"
        )
    return summary


def retry_failed_publications(
    db: Session,
    registry: Optional[ProviderRegistry] = None,
    vault: Optional[CredentialVault] = None,
    cancel_event: Optional[threading.Event] = None,
) -> int:
    """Retry Failed items still under the retry cap; returns how many now succeeded"""
    failed_ids = [row[0] for row in db.query(ContentPublishItem.id).filter(
        ContentPublishItem.state == PublishItemState.FAILED.value,
        ContentPublishItem.retry_count < settings.MAX_PUBLISH_RETRIES,
    ).order_by(ContentPublishItem.id).limit(settings.RETRY_BATCH_SIZE).all()]

    succeeded = 0
    for item_id in failed_ids:
        if cancel_event is not None and cancel_event.is_set():
            break
        try:
            result = publish_one(item_id, db, registry=registry, vault=vault)
            if result.success:
                succeeded += 1
                item = db.query(ContentPublishItem).filter(ContentPublishItem.id == item_id).first()
                aggregate_content_state(item.content, db)
        except Exception as e:
            db.rollback()
            logger.error(f"Retry of item {item_id} aborted: {e}", exc_info=True)

    if failed_ids:
        logger.info(f"Retried {len(failed_ids)} failed item(s), {succeeded} succeeded")
    return succeeded


def run_publish_pass(
    db: Session,
    registry: Optional[ProviderRegistry] = None,
    vault: Optional[CredentialVault] = None,
    cancel_event: Optional[threading.Event] = None,
) -> Dict[str, int]:
    """One scheduler pass: retry earlier failures, then publish newly due content

    Retries run first so an item that fails in this pass waits for the next
    one instead of being retried straight away.
    """
    retried = retry_failed_publications(db, registry=registry, vault=vault, cancel_event=cancel_event)
    summary = publish_due_content(db, registry=registry, vault=vault, cancel_event=cancel_event)
    summary["retried"] = retried
    return summary
