"""Billing Event Applier.

Turns a signed Stripe ``checkout.session.completed`` event into a PRO
subscription for the organization named in the session metadata. The
subscription write is a single upsert keyed on ``org_id``, so replaying the
same event (or a different event for the same org) always converges on one
PRO row.
"""

import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Literal, Optional

import stripe
from pydantic import BaseModel
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from propel_api.config.env import get_stripe_webhook_secret
from propel_api.db.models import PLAN_PRO, Organization, Subscription
from propel_api.db.upsert import upsert_insert
from propel_api.errors import BadRequest, PersistenceError, SignatureInvalid

logger = logging.getLogger(__name__)

CHECKOUT_COMPLETED = "checkout.session.completed"
DEFAULT_TOLERANCE_SECONDS = 300


class ApplyResult(BaseModel):
    """Outcome of applying one event. Every outcome is acknowledged to Stripe."""

    status: Literal["applied", "ignored", "missing_org", "unknown_org"]
    event_type: str
    org_id: Optional[str] = None


def _object_id(value: Any) -> Optional[str]:
    """Stripe fields may hold an id string or an expanded object."""
    if isinstance(value, dict):
        return value.get("id")
    return value or None


def _period_end(session: dict) -> Optional[datetime]:
    ts = session.get("current_period_end")
    if isinstance(ts, int):
        return datetime.fromtimestamp(ts, tz=timezone.utc)
    return None


def extract_org_id(session: dict) -> Optional[str]:
    """Organization id carried by a checkout session, if any."""
    metadata = session.get("metadata") or {}
    return metadata.get("orgId") or metadata.get("org_id") or session.get("client_reference_id")


class BillingEventApplier:
    """Verifies and applies Stripe webhook events."""

    def __init__(self, webhook_secret: str, tolerance: int = DEFAULT_TOLERANCE_SECONDS):
        self.webhook_secret = webhook_secret
        self.tolerance = tolerance

    def verify(self, payload: bytes, signature_header: Optional[str]) -> dict:
        """Check the Stripe-Signature header against the raw body and parse the event.

        Raises:
            SignatureInvalid: If the header is missing or the signature does not verify
            BadRequest: If the verified body is not a JSON event object
        """
        if not signature_header:
            raise SignatureInvalid("Missing Stripe-Signature header")

        try:
            body = payload.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise BadRequest("Webhook body is not valid UTF-8") from exc

        try:
            stripe.WebhookSignature.verify_header(
                body, signature_header, self.webhook_secret, self.tolerance
            )
        except stripe.SignatureVerificationError as exc:
            raise SignatureInvalid("Stripe signature verification failed") from exc

        try:
            event = json.loads(body)
        except json.JSONDecodeError as exc:
            raise BadRequest("Webhook body is not valid JSON") from exc

        if not isinstance(event, dict) or not event.get("id") or not event.get("type"):
            raise BadRequest("Webhook event is missing required fields: id, type")
        return event

    def apply(self, db: Session, event: dict) -> ApplyResult:
        """Dispatch a verified event by type; unrelated types are acknowledged and ignored."""
        event_type = event.get("type", "")
        if event_type == CHECKOUT_COMPLETED:
            return self.apply_checkout_completed(db, event)

        logger.info("BILLING_EVENT_IGNORED", extra={"event_type": event_type})
        return ApplyResult(status="ignored", event_type=event_type)

    def handle(self, db: Session, payload: bytes, signature_header: Optional[str]) -> ApplyResult:
        """Verify then apply. A rejected signature never reaches the database."""
        return self.apply(db, self.verify(payload, signature_header))

    def apply_checkout_completed(self, db: Session, event: dict) -> ApplyResult:
        """
        Upgrade the organization of a completed checkout to PRO.

        Missing or unknown organization ids are acknowledged without a state
        change since redelivery cannot fix them.

        Raises:
            PersistenceError: On database failure (the provider should redeliver)
        """
        session = (event.get("data") or {}).get("object") or {}
        org_id = extract_org_id(session)
        if not org_id:
            logger.warning("BILLING_EVENT_MISSING_ORG", extra={"event_id": event.get("id")})
            return ApplyResult(status="missing_org", event_type=CHECKOUT_COMPLETED)

        now = datetime.now(timezone.utc)
        try:
            if db.get(Organization, org_id) is None:
                logger.warning(
                    "BILLING_EVENT_UNKNOWN_ORG",
                    extra={"event_id": event.get("id"), "org_id": org_id},
                )
                return ApplyResult(status="unknown_org", event_type=CHECKOUT_COMPLETED, org_id=org_id)

            stmt = upsert_insert(db, Subscription).values(
                id=str(uuid.uuid4()),
                org_id=org_id,
                plan=PLAN_PRO,
                stripe_customer_id=_object_id(session.get("customer")),
                stripe_subscription_id=_object_id(session.get("subscription")),
                current_period_end=_period_end(session),
                created_at=now,
                updated_at=now,
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=["org_id"],
                set_={
                    "plan": PLAN_PRO,
                    "stripe_customer_id": func.coalesce(
                        stmt.excluded.stripe_customer_id, Subscription.stripe_customer_id
                    ),
                    "stripe_subscription_id": func.coalesce(
                        stmt.excluded.stripe_subscription_id, Subscription.stripe_subscription_id
                    ),
                    "current_period_end": func.coalesce(
                        stmt.excluded.current_period_end, Subscription.current_period_end
                    ),
                    "updated_at": stmt.excluded.updated_at,
                },
            )
            db.execute(stmt)
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            logger.error(
                "SUBSCRIPTION_UPSERT_FAILED",
                extra={"org_id": org_id, "error_type": type(exc).__name__},
            )
            raise PersistenceError("Could not record subscription change") from exc

        logger.info(
            "SUBSCRIPTION_UPGRADED",
            extra={"org_id": org_id, "event_id": event.get("id"), "plan": PLAN_PRO},
        )
        return ApplyResult(status="applied", event_type=CHECKOUT_COMPLETED, org_id=org_id)


def get_billing_event_applier() -> BillingEventApplier:
    """Build the applier from environment.

    Raises:
        ValueError: If STRIPE_WEBHOOK_SECRET is missing
    """
    return BillingEventApplier(webhook_secret=get_stripe_webhook_secret())
