"""Tenant Provisioner.

Creates the first workspace of a user: Organization + FREE Subscription +
OWNER Membership, all in one transaction.

Race safety comes from the unique ``organizations.bootstrap_user_id``
column. Two concurrent first requests both try to insert an organization
for the same user; exactly one insert wins, the other hits the conflict,
re-reads the winner's organization and converges on it. Subscription and
membership inserts are ``ON CONFLICT DO NOTHING`` so the loser never
duplicates them either.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from propel_api.db.models import (
    PLAN_FREE,
    ROLE_OWNER,
    Membership,
    Organization,
    Subscription,
    User,
)
from propel_api.db.upsert import upsert_insert
from propel_api.errors import PersistenceError

logger = logging.getLogger(__name__)

DEFAULT_FIRST_NAME = "My"


@dataclass
class ProvisionResult:
    organization: Organization
    membership: Membership
    subscription: Subscription
    created: bool


def workspace_name(first_name: Optional[str]) -> str:
    """``"{first_name} Workspace"``, ``"My Workspace"`` when no name is known."""
    name = (first_name or "").strip() or DEFAULT_FIRST_NAME
    return f"{name} Workspace"


def earliest_membership(db: Session, user_id: str) -> Optional[Membership]:
    """The membership that defines the user's active tenant (earliest created wins)."""
    return db.execute(
        select(Membership)
        .where(Membership.user_id == user_id)
        .order_by(Membership.created_at.asc(), Membership.id.asc())
        .limit(1)
    ).scalar_one_or_none()


def provision_tenant(db: Session, user: User) -> ProvisionResult:
    """
    Ensure ``user`` has a workspace, creating one if they have no membership.

    Returns:
        ProvisionResult; ``created`` is False when another request (or an
        invite) already gave the user a membership.

    Raises:
        PersistenceError: On database failure (the transaction is rolled back)
    """
    try:
        result = _provision(db, user)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error(
            "TENANT_PROVISION_FAILED",
            extra={"user_id": user.id, "error_type": type(exc).__name__},
        )
        raise PersistenceError("Could not provision workspace") from exc

    if result.created:
        logger.info(
            "TENANT_PROVISIONED",
            extra={"user_id": user.id, "org_id": result.organization.id},
        )
    else:
        logger.info(
            "TENANT_PROVISION_CONVERGED",
            extra={"user_id": user.id, "org_id": result.organization.id},
        )
    return result


def _provision(db: Session, user: User) -> ProvisionResult:
    existing = earliest_membership(db, user.id)
    if existing is not None:
        return _load(db, existing, created=False)

    now = datetime.now(timezone.utc)
    org_stmt = (
        upsert_insert(db, Organization)
        .values(
            id=str(uuid.uuid4()),
            name=workspace_name(user.first_name),
            bootstrap_user_id=user.id,
            created_at=now,
        )
        .on_conflict_do_nothing(index_elements=["bootstrap_user_id"])
        .returning(Organization.id)
    )
    org_id = db.execute(org_stmt).scalar_one_or_none()
    created = org_id is not None
    if org_id is None:
        org_id = db.execute(
            select(Organization.id).where(Organization.bootstrap_user_id == user.id)
        ).scalar_one()

    db.execute(
        upsert_insert(db, Subscription)
        .values(
            id=str(uuid.uuid4()),
            org_id=org_id,
            plan=PLAN_FREE,
            created_at=now,
            updated_at=now,
        )
        .on_conflict_do_nothing(index_elements=["org_id"])
    )
    db.execute(
        upsert_insert(db, Membership)
        .values(
            id=str(uuid.uuid4()),
            user_id=user.id,
            org_id=org_id,
            role=ROLE_OWNER,
            created_at=now,
        )
        .on_conflict_do_nothing(index_elements=["user_id", "org_id"])
    )

    membership = db.execute(
        select(Membership).where(Membership.user_id == user.id, Membership.org_id == org_id)
    ).scalar_one()
    return _load(db, membership, created=created)


def _load(db: Session, membership: Membership, created: bool) -> ProvisionResult:
    organization = db.get(Organization, membership.org_id)
    subscription = db.execute(
        select(Subscription).where(Subscription.org_id == membership.org_id)
    ).scalar_one_or_none()
    if subscription is None:
        # Missing subscription row reads as FREE
        subscription = Subscription(org_id=membership.org_id, plan=PLAN_FREE)
    return ProvisionResult(
        organization=organization,
        membership=membership,
        subscription=subscription,
        created=created,
    )
