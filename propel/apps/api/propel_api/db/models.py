"""SQLAlchemy ORM Models for Propel."""

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    BIGINT,
    FLOAT,
    JSON,
    TEXT,
    TIMESTAMP,
    CheckConstraint,
    ForeignKey,
    Index,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

ROLE_OWNER = "OWNER"
ROLE_ADMIN = "ADMIN"
ROLE_MEMBER = "MEMBER"
ROLES = (ROLE_OWNER, ROLE_ADMIN, ROLE_MEMBER)

PLAN_FREE = "FREE"
PLAN_PRO = "PRO"
PLANS = (PLAN_FREE, PLAN_PRO)

PROPOSAL_DRAFT = "DRAFT"
PROPOSAL_SENT = "SENT"
PROPOSAL_ACCEPTED = "ACCEPTED"
PROPOSAL_REJECTED = "REJECTED"
PROPOSAL_STATUSES = (PROPOSAL_DRAFT, PROPOSAL_SENT, PROPOSAL_ACCEPTED, PROPOSAL_REJECTED)


def _new_id() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class User(Base):
    """Internal user, one per external identity-provider principal."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(TEXT, primary_key=True, default=_new_id)
    external_id: Mapped[str] = mapped_column(TEXT, nullable=False, unique=True)
    email: Mapped[str] = mapped_column(TEXT, nullable=False)
    first_name: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=_utcnow
    )

    __table_args__ = (Index("idx_users_email", "email"),)


class Organization(Base):
    """Tenant boundary. Append-only."""

    __tablename__ = "organizations"

    id: Mapped[str] = mapped_column(TEXT, primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(TEXT, nullable=False)
    # User whose first action provisioned this org; at most one org per user
    bootstrap_user_id: Mapped[Optional[str]] = mapped_column(
        TEXT, ForeignKey("users.id"), nullable=True, unique=True
    )
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=_utcnow
    )


class Membership(Base):
    """User-to-organization link carrying the user's role."""

    __tablename__ = "memberships"

    id: Mapped[str] = mapped_column(TEXT, primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(TEXT, ForeignKey("users.id"), nullable=False)
    org_id: Mapped[str] = mapped_column(TEXT, ForeignKey("organizations.id"), nullable=False)
    role: Mapped[str] = mapped_column(TEXT, nullable=False, default=ROLE_MEMBER)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=_utcnow
    )

    __table_args__ = (
        UniqueConstraint("user_id", "org_id", name="uq_memberships_user_org"),
        CheckConstraint("role IN ('OWNER', 'ADMIN', 'MEMBER')", name="ck_memberships_role"),
        Index("idx_memberships_user_created", "user_id", "created_at"),
        Index("idx_memberships_org", "org_id"),
    )


class Subscription(Base):
    """Plan state of an organization. Exactly one row per org."""

    __tablename__ = "subscriptions"

    id: Mapped[str] = mapped_column(TEXT, primary_key=True, default=_new_id)
    org_id: Mapped[str] = mapped_column(
        TEXT, ForeignKey("organizations.id"), nullable=False, unique=True
    )
    plan: Mapped[str] = mapped_column(TEXT, nullable=False, default=PLAN_FREE)
    stripe_customer_id: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)
    stripe_subscription_id: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)
    current_period_end: Mapped[Optional[datetime]] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    __table_args__ = (
        CheckConstraint("plan IN ('FREE', 'PRO')", name="ck_subscriptions_plan"),
    )


class UsageRecord(Base):
    """Generation counter per (org, UTC month). Month rollover starts a new row."""

    __tablename__ = "usage_records"

    id: Mapped[str] = mapped_column(TEXT, primary_key=True, default=_new_id)
    org_id: Mapped[str] = mapped_column(TEXT, ForeignKey("organizations.id"), nullable=False)
    month: Mapped[str] = mapped_column(TEXT, nullable=False)  # YYYY-MM (UTC)
    generations: Mapped[int] = mapped_column(BIGINT, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    __table_args__ = (
        UniqueConstraint("org_id", "month", name="uq_usage_records_org_month"),
        CheckConstraint("generations >= 0", name="ck_usage_records_non_negative"),
    )


class Project(Base):
    """Client engagement tracked by an organization."""

    __tablename__ = "projects"

    id: Mapped[str] = mapped_column(TEXT, primary_key=True, default=_new_id)
    org_id: Mapped[str] = mapped_column(TEXT, ForeignKey("organizations.id"), nullable=False)
    owner_id: Mapped[str] = mapped_column(TEXT, ForeignKey("users.id"), nullable=False)
    title: Mapped[str] = mapped_column(TEXT, nullable=False)
    client_name: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)
    status: Mapped[str] = mapped_column(TEXT, nullable=False, default="LEAD")
    estimated_value: Mapped[Optional[float]] = mapped_column(FLOAT, nullable=True)
    last_activity_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=_utcnow
    )
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    __table_args__ = (Index("idx_projects_org_activity", "org_id", "last_activity_at"),)


class Proposal(Base):
    """Versioned proposal document generated for a project."""

    __tablename__ = "proposals"

    id: Mapped[str] = mapped_column(TEXT, primary_key=True, default=_new_id)
    org_id: Mapped[str] = mapped_column(TEXT, ForeignKey("organizations.id"), nullable=False)
    project_id: Mapped[str] = mapped_column(TEXT, ForeignKey("projects.id"), nullable=False)
    version: Mapped[int] = mapped_column(BIGINT, nullable=False, default=1)
    status: Mapped[str] = mapped_column(TEXT, nullable=False, default=PROPOSAL_DRAFT)
    sections: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    public_token: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True, unique=True)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    __table_args__ = (
        UniqueConstraint("project_id", "version", name="uq_proposals_project_version"),
        Index("idx_proposals_org", "org_id"),
    )


class WebhookDedupEvent(Base):
    """Webhook dedup gate.

    At most one business-processing per (provider, dedup_key), even under
    concurrent redelivery:

      INSERT ON CONFLICT (provider, dedup_key) DO NOTHING RETURNING id
        row returned : first (or re-processing) handler, continue
        no row       : done, or held by a live attempt

    last_seen_at is refreshed on every claim. A processing row older than
    the lease is treated as abandoned and can be re-claimed.
    """

    __tablename__ = "webhook_dedup_events"

    id: Mapped[str] = mapped_column(TEXT, primary_key=True, default=_new_id)
    provider: Mapped[str] = mapped_column(TEXT, nullable=False)  # stripe
    dedup_key: Mapped[str] = mapped_column(TEXT, nullable=False)  # ev_<event_id>
    status: Mapped[str] = mapped_column(TEXT, nullable=False, default="processing")
    # SHA-256 of request body, never the raw payload
    request_hash: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)
    first_seen_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=_utcnow
    )
    last_seen_at: Mapped[Optional[datetime]] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )

    __table_args__ = (
        UniqueConstraint("provider", "dedup_key", name="uq_webhook_dedup_events"),
        Index("idx_webhook_dedup_status", "status"),
    )
