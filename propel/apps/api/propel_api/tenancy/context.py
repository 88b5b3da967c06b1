"""Tenant Context Resolver.

Two phases:

1. ``try_resolve`` is a pure read: the user's earliest-created membership
   joined with its organization, subscription and current usage.
2. ``provision_and_resolve`` provisions a workspace and reads again.

``get_active_tenant_context`` chains them. Calling it may therefore create
an organization for a first-time user; every authenticated handler goes
through it.
"""

import logging
from typing import Optional

from pydantic import BaseModel, ConfigDict
from sqlalchemy import select
from sqlalchemy.orm import Session

from propel_api.context import org_id_var, plan_var
from propel_api.db.models import PLAN_FREE, Membership, Organization, Subscription, User
from propel_api.errors import NoTenantContext
from propel_api.pricing.allowance import ActionKind, evaluate_allowance
from propel_api.pricing.metering import UsageLedger
from propel_api.tenancy.provisioning import provision_tenant
from propel_api.tenancy.roles import is_owner_or_admin

logger = logging.getLogger(__name__)


class UsageSnapshot(BaseModel):
    """Generation usage for the current month. ``limit``/``remaining`` None = unlimited."""

    model_config = ConfigDict(frozen=True)

    month: str
    used: int
    limit: Optional[int]
    remaining: Optional[int]


class TenantContext(BaseModel):
    """Read-only view of the caller's active tenant."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    org_id: str
    org_name: str
    role: str
    plan: str
    is_owner_or_admin: bool
    usage: UsageSnapshot


def try_resolve(db: Session, user: User, ledger: Optional[UsageLedger] = None) -> Optional[TenantContext]:
    """Return the caller's context, or None if they have no membership yet."""
    row = db.execute(
        select(Membership, Organization, Subscription.plan)
        .join(Organization, Organization.id == Membership.org_id)
        .outerjoin(Subscription, Subscription.org_id == Membership.org_id)
        .where(Membership.user_id == user.id)
        .order_by(Membership.created_at.asc(), Membership.id.asc())
        .limit(1)
    ).first()
    if row is None:
        return None

    membership, organization, plan = row
    plan = plan or PLAN_FREE
    ledger = ledger or UsageLedger(db)
    month = ledger.current_month()
    allowance = evaluate_allowance(plan, ledger.get_usage(organization.id, month), ActionKind.GENERATION)

    return TenantContext(
        user_id=user.id,
        org_id=organization.id,
        org_name=organization.name,
        role=membership.role,
        plan=plan,
        is_owner_or_admin=is_owner_or_admin(membership.role),
        usage=UsageSnapshot(
            month=month,
            used=allowance.used,
            limit=allowance.limit,
            remaining=allowance.remaining,
        ),
    )


def provision_and_resolve(db: Session, user: User, ledger: Optional[UsageLedger] = None) -> TenantContext:
    """
    Provision a workspace for ``user`` then resolve it.

    Raises:
        NoTenantContext: If the read still finds no membership
        PersistenceError: If provisioning fails
    """
    provision_tenant(db, user)
    context = try_resolve(db, user, ledger)
    if context is None:
        logger.error("TENANT_CONTEXT_MISSING", extra={"user_id": user.id})
        raise NoTenantContext("No organization could be resolved for this user")
    return context


def get_active_tenant_context(
    db: Session,
    user: User,
    ledger: Optional[UsageLedger] = None,
) -> TenantContext:
    """Resolve the caller's active tenant, provisioning one on first use."""
    context = try_resolve(db, user, ledger)
    if context is None:
        context = provision_and_resolve(db, user, ledger)

    org_id_var.set(context.org_id)
    plan_var.set(context.plan)
    return context
