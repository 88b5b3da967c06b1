"""Proposal generation, editing and publishing."""

import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from propel_api.auth.session_auth import get_tenant_context
from propel_api.config.env import get_app_url
from propel_api.db.models import PROPOSAL_DRAFT, PROPOSAL_SENT, Proposal
from propel_api.db.session import get_db
from propel_api.dependencies import get_enforcement_engine
from propel_api.errors import NotFound, PersistenceError
from propel_api.generation.proposals import build_proposal_sections
from propel_api.pricing.enforcement import EnforcementEngine
from propel_api.routers.projects import get_project_or_404
from propel_api.schemas import (
    ProposalGenerateRequest,
    ProposalListResponse,
    ProposalResponse,
    ProposalUpdateRequest,
    PublishResponse,
)
from propel_api.tenancy.context import TenantContext
from propel_api.tenancy.roles import can_delete_project, require

router = APIRouter(prefix="/v1/proposals", tags=["proposals"])
logger = logging.getLogger(__name__)


def _get_proposal_or_404(db: Session, org_id: str, proposal_id: str) -> Proposal:
    proposal = db.execute(
        select(Proposal).where(Proposal.id == proposal_id, Proposal.org_id == org_id)
    ).scalar_one_or_none()
    if proposal is None:
        raise NotFound("Proposal not found.")
    return proposal


def _commit(db: Session, event: str, org_id: str) -> None:
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error(event, extra={"org_id": org_id, "error_type": type(exc).__name__})
        raise PersistenceError("Could not save the proposal. Please retry.") from exc


def public_url(token: str) -> str:
    return f"{get_app_url().rstrip('/')}/p/{token}"


@router.get("", response_model=ProposalListResponse)
def list_proposals(
    project_id: Optional[str] = None,
    ctx: TenantContext = Depends(get_tenant_context),
    db: Session = Depends(get_db),
) -> ProposalListResponse:
    stmt = select(Proposal).where(Proposal.org_id == ctx.org_id)
    if project_id:
        stmt = stmt.where(Proposal.project_id == project_id)
    proposals = db.execute(
        stmt.order_by(Proposal.created_at.desc(), Proposal.version.desc())
    ).scalars().all()
    return ProposalListResponse(proposals=[ProposalResponse.model_validate(p) for p in proposals])


@router.post("/generate", response_model=ProposalResponse, status_code=status.HTTP_201_CREATED)
def generate_proposal(
    request: ProposalGenerateRequest,
    ctx: TenantContext = Depends(get_tenant_context),
    db: Session = Depends(get_db),
    engine: EnforcementEngine = Depends(get_enforcement_engine),
) -> ProposalResponse:
    """
    Generate the next DRAFT version of a project's proposal.

    Counts as one generation against the monthly allowance (402 when it is
    used up). Versions start at 1 and increase per project.
    """
    project = get_project_or_404(db, ctx.org_id, request.project_id)

    with engine.metered_generation(ctx.org_id, ctx.plan):
        last_version = db.execute(
            select(func.max(Proposal.version)).where(
                Proposal.project_id == project.id,
                Proposal.org_id == ctx.org_id,
            )
        ).scalar_one_or_none()

        proposal = Proposal(
            org_id=ctx.org_id,
            project_id=project.id,
            version=(last_version or 0) + 1,
            status=PROPOSAL_DRAFT,
            sections=build_proposal_sections(request.brief, project.client_name),
        )
        db.add(proposal)
        project.last_activity_at = datetime.now(timezone.utc)
        try:
            db.commit()
        except IntegrityError as exc:
            # Concurrent generation took the same version number
            db.rollback()
            logger.warning(
                "PROPOSAL_VERSION_CONFLICT",
                extra={"org_id": ctx.org_id, "project_id": project.id},
            )
            raise PersistenceError("Another version was created at the same time. Please retry.") from exc
        except SQLAlchemyError as exc:
            db.rollback()
            logger.error(
                "PROPOSAL_CREATE_FAILED",
                extra={"org_id": ctx.org_id, "error_type": type(exc).__name__},
            )
            raise PersistenceError("Could not save the proposal. Please retry.") from exc

    logger.info(
        "PROPOSAL_GENERATED",
        extra={"org_id": ctx.org_id, "project_id": project.id, "version": proposal.version},
    )
    return ProposalResponse.model_validate(proposal)


@router.get("/{proposal_id}", response_model=ProposalResponse)
def get_proposal(
    proposal_id: str,
    ctx: TenantContext = Depends(get_tenant_context),
    db: Session = Depends(get_db),
) -> ProposalResponse:
    return ProposalResponse.model_validate(_get_proposal_or_404(db, ctx.org_id, proposal_id))


@router.patch("/{proposal_id}", response_model=ProposalResponse)
def update_proposal(
    proposal_id: str,
    request: ProposalUpdateRequest,
    ctx: TenantContext = Depends(get_tenant_context),
    db: Session = Depends(get_db),
) -> ProposalResponse:
    proposal = _get_proposal_or_404(db, ctx.org_id, proposal_id)

    if request.sections is not None:
        proposal.sections = dict(request.sections)
    if request.status is not None:
        proposal.status = request.status

    _commit(db, "PROPOSAL_UPDATE_FAILED", ctx.org_id)
    return ProposalResponse.model_validate(proposal)


@router.delete("/{proposal_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_proposal(
    proposal_id: str,
    ctx: TenantContext = Depends(get_tenant_context),
    db: Session = Depends(get_db),
) -> Response:
    require(can_delete_project(ctx.role), "Only owners and admins can delete proposals.")
    proposal = _get_proposal_or_404(db, ctx.org_id, proposal_id)

    db.delete(proposal)
    _commit(db, "PROPOSAL_DELETE_FAILED", ctx.org_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{proposal_id}/publish", response_model=PublishResponse)
def publish_proposal(
    proposal_id: str,
    ctx: TenantContext = Depends(get_tenant_context),
    db: Session = Depends(get_db),
) -> PublishResponse:
    """
    Make a proposal shareable.

    An existing public token is reused. A DRAFT moves to SENT; any later
    status is left as is.
    """
    proposal = _get_proposal_or_404(db, ctx.org_id, proposal_id)

    if not proposal.public_token:
        proposal.public_token = uuid.uuid4().hex
    if proposal.status == PROPOSAL_DRAFT:
        proposal.status = PROPOSAL_SENT

    _commit(db, "PROPOSAL_PUBLISH_FAILED", ctx.org_id)

    logger.info("PROPOSAL_PUBLISHED", extra={"org_id": ctx.org_id, "proposal_id": proposal.id})
    return PublishResponse(
        ok=True,
        public_token=proposal.public_token,
        public_url=public_url(proposal.public_token),
    )
