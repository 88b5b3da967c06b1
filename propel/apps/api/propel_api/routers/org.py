"""Organization context and member invitations."""

import logging
import uuid
from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from propel_api.auth.session_auth import get_tenant_context
from propel_api.db.models import ROLE_MEMBER, Membership, User
from propel_api.db.session import get_db
from propel_api.db.upsert import upsert_insert
from propel_api.errors import PersistenceError
from propel_api.schemas import (
    InviteRequest,
    InviteResponse,
    MemberResponse,
    OrgContextResponse,
    UsageSnapshotResponse,
)
from propel_api.tenancy.context import TenantContext
from propel_api.tenancy.identity import find_user_by_email
from propel_api.tenancy.roles import can_invite_members, require

router = APIRouter(prefix="/v1/org", tags=["org"])
logger = logging.getLogger(__name__)


@router.get("", response_model=OrgContextResponse)
def get_org(
    ctx: TenantContext = Depends(get_tenant_context),
    db: Session = Depends(get_db),
) -> OrgContextResponse:
    """Active organization of the caller with plan, usage and members."""
    rows = db.execute(
        select(Membership.user_id, User.email, Membership.role)
        .join(User, User.id == Membership.user_id)
        .where(Membership.org_id == ctx.org_id)
        .order_by(Membership.created_at.asc(), Membership.id.asc())
    ).all()

    return OrgContextResponse(
        org_id=ctx.org_id,
        org_name=ctx.org_name,
        role=ctx.role,
        plan=ctx.plan,
        is_owner_or_admin=ctx.is_owner_or_admin,
        usage=UsageSnapshotResponse(**ctx.usage.model_dump()),
        members=[MemberResponse(user_id=r.user_id, email=r.email, role=r.role) for r in rows],
    )


@router.post("/invite", response_model=InviteResponse)
def invite_member(
    request: InviteRequest,
    ctx: TenantContext = Depends(get_tenant_context),
    db: Session = Depends(get_db),
) -> InviteResponse:
    """
    Add an existing user to the active organization as MEMBER.

    Only users who have signed in at least once can be invited. The new
    membership is younger than the invitee's own workspace membership, so
    their active tenant does not change.
    """
    require(can_invite_members(ctx.role), "Only owners and admins can invite members.")

    email = str(request.email).strip().lower()
    invitee = find_user_by_email(db, email)
    if invitee is None:
        return InviteResponse(
            ok=False,
            message="That user has not signed in yet. Ask them to sign in once, then invite again.",
        )

    stmt = (
        upsert_insert(db, Membership)
        .values(
            id=str(uuid.uuid4()),
            user_id=invitee.id,
            org_id=ctx.org_id,
            role=ROLE_MEMBER,
            created_at=datetime.now(timezone.utc),
        )
        .on_conflict_do_nothing(index_elements=["user_id", "org_id"])
        .returning(Membership.id)
    )
    try:
        membership_id = db.execute(stmt).scalar_one_or_none()
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("MEMBER_INVITE_FAILED", extra={"org_id": ctx.org_id, "error_type": type(exc).__name__})
        raise PersistenceError("Could not add the member. Please retry.") from exc

    if membership_id is None:
        return InviteResponse(ok=True, message="User is already a member of this organization.")

    logger.info("MEMBER_INVITED", extra={"org_id": ctx.org_id, "invitee_user_id": invitee.id})
    return InviteResponse(ok=True, message="Member added.")
