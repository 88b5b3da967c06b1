"""Stripe checkout, portal and webhook event application."""

from propel_api.billing.applier import (
    CHECKOUT_COMPLETED,
    ApplyResult,
    BillingEventApplier,
    get_billing_event_applier,
)
from propel_api.billing.stripe_client import StripeBillingClient, get_stripe_client

__all__ = [
    "CHECKOUT_COMPLETED",
    "ApplyResult",
    "BillingEventApplier",
    "get_billing_event_applier",
    "StripeBillingClient",
    "get_stripe_client",
]
