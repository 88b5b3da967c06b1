"""Billing entry points: Stripe checkout and customer portal."""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.orm import Session

from propel_api.auth.session_auth import get_current_user, get_tenant_context
from propel_api.billing.stripe_client import StripeBillingClient
from propel_api.db.models import Subscription, User
from propel_api.db.session import get_db
from propel_api.dependencies import get_billing_client
from propel_api.errors import BadRequest
from propel_api.schemas import RedirectResponseBody
from propel_api.tenancy.context import TenantContext
from propel_api.tenancy.identity import UNKNOWN_EMAIL
from propel_api.tenancy.roles import can_manage_billing, require

router = APIRouter(prefix="/v1/billing", tags=["billing"])
logger = logging.getLogger(__name__)


@router.post("/checkout", response_model=RedirectResponseBody)
def create_checkout(
    user: User = Depends(get_current_user),
    ctx: TenantContext = Depends(get_tenant_context),
    client: StripeBillingClient = Depends(get_billing_client),
) -> RedirectResponseBody:
    """
    Start a PRO checkout for the active organization (owners and admins).

    The session carries ``metadata.orgId``; the plan changes only when the
    signed ``checkout.session.completed`` webhook arrives.
    """
    require(can_manage_billing(ctx.role), "Only owners and admins can manage billing.")

    customer_email = user.email if user.email and user.email != UNKNOWN_EMAIL else None
    url = client.create_checkout_session(ctx.org_id, customer_email=customer_email)
    return RedirectResponseBody(url=url)


@router.post("/portal", response_model=RedirectResponseBody)
def create_portal(
    ctx: TenantContext = Depends(get_tenant_context),
    db: Session = Depends(get_db),
    client: StripeBillingClient = Depends(get_billing_client),
) -> RedirectResponseBody:
    """Open the Stripe customer portal (owners and admins; needs a completed checkout)."""
    require(can_manage_billing(ctx.role), "Only owners and admins can manage billing.")

    customer_id = db.execute(
        select(Subscription.stripe_customer_id).where(Subscription.org_id == ctx.org_id)
    ).scalar_one_or_none()
    if not customer_id:
        raise BadRequest("No billing customer for this organization. Complete a checkout first.")

    return RedirectResponseBody(url=client.create_portal_session(customer_id))
