"""Stripe client for checkout and billing-portal sessions.

Checkout sessions always carry the organization id in ``metadata.orgId``
(and ``client_reference_id``); the webhook applier relies on it to find the
tenant to upgrade.
"""

import logging
from typing import Optional

import stripe

from propel_api.config.env import get_app_url, get_stripe_price_pro, get_stripe_secret_key
from propel_api.errors import UpstreamProviderError

logger = logging.getLogger(__name__)


class StripeBillingClient:
    """Thin wrapper over the Stripe SDK with per-call API key."""

    def __init__(self, api_key: str, price_pro: str, app_url: str):
        self.api_key = api_key
        self.price_pro = price_pro
        self.app_url = app_url.rstrip("/")

    def create_checkout_session(self, org_id: str, customer_email: Optional[str] = None) -> str:
        """Start a PRO subscription checkout for ``org_id``.

        Returns:
            Hosted checkout URL

        Raises:
            UpstreamProviderError: If Stripe rejects the request or is unreachable
        """
        try:
            session = stripe.checkout.Session.create(
                api_key=self.api_key,
                mode="subscription",
                line_items=[{"price": self.price_pro, "quantity": 1}],
                success_url=f"{self.app_url}/app/billing?success=1",
                cancel_url=f"{self.app_url}/app/billing?canceled=1",
                customer_email=customer_email,
                client_reference_id=org_id,
                metadata={"orgId": org_id},
                subscription_data={"metadata": {"orgId": org_id}},
            )
        except stripe.StripeError as exc:
            logger.error(
                "STRIPE_CHECKOUT_FAILED",
                extra={"org_id": org_id, "error_type": type(exc).__name__},
            )
            raise UpstreamProviderError("Could not start checkout with the payment provider") from exc

        logger.info("STRIPE_CHECKOUT_CREATED", extra={"org_id": org_id, "session_id": session.id})
        return session.url

    def create_portal_session(self, customer_id: str) -> str:
        """Open the customer billing portal.

        Returns:
            Portal URL

        Raises:
            UpstreamProviderError: If Stripe rejects the request or is unreachable
        """
        try:
            session = stripe.billing_portal.Session.create(
                api_key=self.api_key,
                customer=customer_id,
                return_url=f"{self.app_url}/app/billing",
            )
        except stripe.StripeError as exc:
            logger.error("STRIPE_PORTAL_FAILED", extra={"error_type": type(exc).__name__})
            raise UpstreamProviderError("Could not open the billing portal") from exc
        return session.url


def get_stripe_client() -> StripeBillingClient:
    """Build the client from environment.

    Raises:
        ValueError: If STRIPE_SECRET_KEY or STRIPE_PRICE_PRO is missing
    """
    return StripeBillingClient(
        api_key=get_stripe_secret_key(),
        price_pro=get_stripe_price_pro(),
        app_url=get_app_url(),
    )
