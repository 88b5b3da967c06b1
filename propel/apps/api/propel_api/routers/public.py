"""Unauthenticated, read-only access to published proposals."""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.orm import Session

from propel_api.db.models import Project, Proposal
from propel_api.db.session import get_db
from propel_api.errors import NotFound
from propel_api.generation.proposals import SECTION_KEYS
from propel_api.schemas import PublicProposalResponse

router = APIRouter(prefix="/v1/public", tags=["public"])
logger = logging.getLogger(__name__)

DEFAULT_CLIENT_NAME = "Client"


@router.get("/proposals/{token}", response_model=PublicProposalResponse)
def get_public_proposal(token: str, db: Session = Depends(get_db)) -> PublicProposalResponse:
    """
    Load a proposal by the token issued when it was published.

    No session is required: the token is the credential. Unknown tokens and
    proposals whose project is gone both answer 404.
    """
    row = db.execute(
        select(Proposal, Project)
        .join(Project, Project.id == Proposal.project_id)
        .where(Proposal.public_token == token)
    ).first()
    if row is None:
        raise NotFound("Proposal not found.")

    proposal, project = row
    sections = proposal.sections or {}
    # Empty sections are left out of the shared view
    logger.info("PUBLIC_PROPOSAL_VIEWED", extra={"proposal_id": proposal.id})
    return PublicProposalResponse(
        client_name=project.client_name or DEFAULT_CLIENT_NAME,
        project_title=project.title,
        version=proposal.version,
        status=proposal.status,
        sections={
            key: str(sections[key]) for key in SECTION_KEYS if sections.get(key)
        },
    )
