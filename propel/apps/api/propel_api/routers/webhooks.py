"""Stripe webhook handler.

Error taxonomy (Stripe redelivers on any non-2xx):
  (A) Missing Stripe-Signature header → 400 WEBHOOK_MISSING_HEADERS
  (B) Signature invalid → 400 WEBHOOK_SIGNATURE_INVALID (no state change)
  (C) Verified but malformed body → 400 WEBHOOK_INVALID_PAYLOAD
  (D) Our misconfig (missing webhook secret) → 500 WEBHOOK_PROVIDER_MISCONFIG
  (E) Internal DB/processing error after verification → 500 WEBHOOK_INTERNAL_ERROR
  (F) Same event held by a live attempt → 409 WEBHOOK_IN_PROGRESS
  500 is ONLY for (D)(E). 500 and 409 carry Retry-After: 60.

Acknowledged (200) outcomes include events for missing or unknown
organizations: redelivery cannot fix them.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from propel_api.billing.applier import get_billing_event_applier
from propel_api.billing.webhook_dedup import (
    DUPLICATE,
    IN_PROGRESS,
    get_stripe_dedup_key,
    mark_dedup_done,
    mark_dedup_failed,
    try_acquire_dedup,
)
from propel_api.context import request_id_var
from propel_api.db.session import get_db
from propel_api.errors import BadRequest, SignatureInvalid
from propel_api.utils.sanitize import payload_hash_bytes, sanitize_str

router = APIRouter(prefix="/webhooks", tags=["webhooks"])
logger = logging.getLogger(__name__)

PROVIDER = "stripe"


def _webhook_problem(
    request: Request,
    status: int,
    *,
    code: str,
    title: str,
    detail: Optional[str],
    payload_hash: Optional[str],
    extra: Optional[dict] = None,
) -> JSONResponse:
    """Log once and return an RFC 9457 response with webhook extensions.

    4xx → warning log. 5xx → error log. 5xx and 409 add Retry-After: 60.
    Extensions (provider, payload_hash, error_code) never contain the raw
    payload or secrets.
    """
    request_id = request_id_var.get(None)

    log_extra: dict = {
        "provider": PROVIDER,
        "payload_hash": payload_hash,
        "error_code": code,
    }
    if extra:
        log_extra.update(extra)

    if status >= 500:
        logger.error(code, extra=log_extra)
    else:
        logger.warning(code, extra=log_extra)

    content: dict = {
        "type": f"urn:propel:webhook:{code.lower()}",
        "title": title,
        "status": status,
        "provider": PROVIDER,
        "error_code": code,
        "instance": f"urn:propel:trace:{request_id}" if request_id else str(request.url.path),
    }
    if detail is not None:
        content["detail"] = detail
    if payload_hash is not None:
        content["payload_hash"] = payload_hash

    headers = {"Content-Type": "application/problem+json"}
    if status >= 500 or status == 409:
        headers["Retry-After"] = "60"

    return JSONResponse(status_code=status, content=content, headers=headers)


@router.post("/stripe")
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None, alias="Stripe-Signature"),
    db: Session = Depends(get_db),
):
    """Stripe webhook: verify signature, pass the dedup gate, apply the event."""
    # Step 0: raw body (signature covers the exact bytes)
    raw_body: bytes = await request.body()
    payload_hash = payload_hash_bytes(raw_body)
    request.state.payload_hash = payload_hash

    # Database work is blocking; run it off the event loop
    return await run_in_threadpool(
        _process_stripe_event, request, db, raw_body, payload_hash, stripe_signature
    )


def _process_stripe_event(
    request: Request,
    db: Session,
    raw_body: bytes,
    payload_hash: str,
    stripe_signature: Optional[str],
):
    # Step 1: applier (D → 500 on misconfig)
    try:
        applier = get_billing_event_applier()
    except ValueError:
        return _webhook_problem(
            request, 500,
            code="WEBHOOK_PROVIDER_MISCONFIG",
            title="Webhook provider misconfiguration",
            detail="Stripe webhook secret is not configured",
            payload_hash=payload_hash,
        )

    # Step 2: header (A → 400)
    if not stripe_signature:
        return _webhook_problem(
            request, 400,
            code="WEBHOOK_MISSING_HEADERS",
            title="Missing required webhook headers",
            detail="Stripe-Signature header is absent",
            payload_hash=payload_hash,
        )

    # Step 3: signature and payload (B, C → 400)
    try:
        event = applier.verify(raw_body, stripe_signature)
    except SignatureInvalid:
        return _webhook_problem(
            request, 400,
            code="WEBHOOK_SIGNATURE_INVALID",
            title="Webhook signature verification failed",
            detail="Stripe-Signature does not match the payload",
            payload_hash=payload_hash,
        )
    except BadRequest as exc:
        return _webhook_problem(
            request, 400,
            code="WEBHOOK_INVALID_PAYLOAD",
            title="Invalid webhook payload",
            detail=exc.detail,
            payload_hash=payload_hash,
        )

    logger.info(
        "WEBHOOK_RECEIVED",
        extra={"provider": PROVIDER, "event_type": event["type"], "payload_hash": payload_hash},
    )

    # Step 4: dedup gate (atomic, concurrent-safe)
    dedup_key = get_stripe_dedup_key(event)
    try:
        claim = try_acquire_dedup(db, PROVIDER, dedup_key, payload_hash)
    except SQLAlchemyError as exc:
        db.rollback()
        return _webhook_problem(
            request, 500,
            code="WEBHOOK_INTERNAL_ERROR",
            title="Internal processing error",
            detail="An internal error occurred while processing the webhook",
            payload_hash=payload_hash,
            extra={"error_type": type(exc).__name__},
        )

    if claim == DUPLICATE:
        logger.info(
            "WEBHOOK_ALREADY_PROCESSED",
            extra={"provider": PROVIDER, "payload_hash": payload_hash},
        )
        return {"received": True, "status": "already_processed"}

    # Non-2xx so Stripe redelivers after the holder finishes or its lease lapses
    if claim == IN_PROGRESS:
        return _webhook_problem(
            request, 409,
            code="WEBHOOK_IN_PROGRESS",
            title="Webhook event is being processed",
            detail="Another delivery of this event is still in progress",
            payload_hash=payload_hash,
        )

    # Step 5: business processing (E → 500)
    try:
        result = applier.apply(db, event)
        mark_dedup_done(db, PROVIDER, dedup_key)
    except Exception as exc:
        db.rollback()
        try:
            mark_dedup_failed(db, PROVIDER, dedup_key)
        except SQLAlchemyError as mark_exc:
            # Row stays 'processing' until its lease expires
            db.rollback()
            logger.error(
                "WEBHOOK_DEDUP_MARK_FAILED",
                extra={
                    "provider": PROVIDER,
                    "payload_hash": payload_hash,
                    "error_type": type(mark_exc).__name__,
                },
            )
        return _webhook_problem(
            request, 500,
            code="WEBHOOK_INTERNAL_ERROR",
            title="Internal processing error",
            detail="An internal error occurred while processing the webhook",
            payload_hash=payload_hash,
            extra={
                "error_type": type(exc).__name__,
                "error_msg": sanitize_str(str(exc)),
            },
        )

    return {"received": True, "status": result.status}
