"""Webhook dedup gate: atomic INSERT ON CONFLICT for concurrent idempotency.

At most one successful processing per (provider, dedup_key), even when the
payment provider redelivers an event concurrently:

  1. INSERT ON CONFLICT (provider, dedup_key) DO NOTHING RETURNING id
       row returned : this request is the first processor, continue
       no row       : conflict, check whether the row can be re-claimed
  2. UPDATE ... WHERE status='failed'
                 OR (status='processing' AND last_seen_at < now - lease)
     RETURNING id
       row returned : previous attempt failed or was abandoned, re-claim it
       no row       : 'done' (duplicate) or a live 'processing' attempt

A 'processing' row whose holder died, or whose failure could not be
recorded, becomes claimable again once its lease expires, so a later
redelivery still reaches the applier.

The subscription upsert behind this gate is itself idempotent; the gate
keeps duplicate deliveries from doing any work at all.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.orm import Session

from propel_api.db.models import WebhookDedupEvent
from propel_api.db.upsert import upsert_insert

logger = logging.getLogger(__name__)

STATUS_PROCESSING = "processing"
STATUS_DONE = "done"
STATUS_FAILED = "failed"

# try_acquire_dedup outcomes
ACQUIRED = "acquired"
DUPLICATE = "duplicate"
IN_PROGRESS = "in_progress"

PROCESSING_LEASE_SECONDS = 300


def get_stripe_dedup_key(event: dict) -> str:
    """Dedup key of a Stripe event: its globally unique ``id``.

    Raises ValueError if the event has no id.
    """
    event_id = event.get("id")
    if not event_id:
        raise ValueError("Cannot derive Stripe dedup_key: event 'id' missing")
    return f"ev_{event_id}"


def try_acquire_dedup(
    db: Session,
    provider: str,
    dedup_key: str,
    request_hash: Optional[str] = None,
    lease_seconds: int = PROCESSING_LEASE_SECONDS,
    now: Optional[datetime] = None,
) -> str:
    """Attempt to atomically claim processing rights for (provider, dedup_key).

    Returns:
        ACQUIRED     if the caller is the first (or re-processing) handler
        DUPLICATE    if the event was already processed
        IN_PROGRESS  if another attempt holds a live lease on the event
    """
    now = now or datetime.now(timezone.utc)
    key_extra = {"provider": provider, "dedup_key_prefix": dedup_key[:16]}

    insert_stmt = (
        upsert_insert(db, WebhookDedupEvent)
        .values(
            id=str(uuid.uuid4()),
            provider=provider,
            dedup_key=dedup_key,
            status=STATUS_PROCESSING,
            request_hash=request_hash,
            first_seen_at=now,
            last_seen_at=now,
        )
        .on_conflict_do_nothing(index_elements=["provider", "dedup_key"])
        .returning(WebhookDedupEvent.id)
    )
    if db.execute(insert_stmt).scalar_one_or_none() is not None:
        db.commit()
        logger.debug("WEBHOOK_DEDUP_ACQUIRED", extra=key_extra)
        return ACQUIRED

    lease_expired_before = now - timedelta(seconds=lease_seconds)
    retry_stmt = (
        update(WebhookDedupEvent)
        .where(
            WebhookDedupEvent.provider == provider,
            WebhookDedupEvent.dedup_key == dedup_key,
            or_(
                WebhookDedupEvent.status == STATUS_FAILED,
                and_(
                    WebhookDedupEvent.status == STATUS_PROCESSING,
                    func.coalesce(WebhookDedupEvent.last_seen_at, WebhookDedupEvent.first_seen_at)
                    < lease_expired_before,
                ),
            ),
        )
        .values(status=STATUS_PROCESSING, last_seen_at=now)
        .returning(WebhookDedupEvent.id)
        .execution_options(synchronize_session=False)
    )
    if db.execute(retry_stmt).scalar_one_or_none() is not None:
        db.commit()
        logger.info("WEBHOOK_DEDUP_RETRY_RECLAIMED", extra=key_extra)
        return ACQUIRED

    status = db.execute(
        select(WebhookDedupEvent.status).where(
            WebhookDedupEvent.provider == provider,
            WebhookDedupEvent.dedup_key == dedup_key,
        )
    ).scalar_one_or_none()
    db.commit()

    if status == STATUS_DONE:
        logger.info("WEBHOOK_DEDUP_DUPLICATE", extra=key_extra)
        return DUPLICATE

    logger.info("WEBHOOK_DEDUP_IN_PROGRESS", extra=key_extra)
    return IN_PROGRESS


def _set_status(db: Session, provider: str, dedup_key: str, status: str) -> None:
    db.execute(
        update(WebhookDedupEvent)
        .where(
            WebhookDedupEvent.provider == provider,
            WebhookDedupEvent.dedup_key == dedup_key,
        )
        .values(status=status, last_seen_at=datetime.now(timezone.utc))
        .execution_options(synchronize_session=False)
    )
    db.commit()


def mark_dedup_done(db: Session, provider: str, dedup_key: str) -> None:
    """Mark dedup record as 'done' after successful business processing."""
    _set_status(db, provider, dedup_key, STATUS_DONE)


def mark_dedup_failed(db: Session, provider: str, dedup_key: str) -> None:
    """Mark dedup record as 'failed' so a redelivery re-processes it."""
    _set_status(db, provider, dedup_key, STATUS_FAILED)
