"""Tenant-scoped project CRUD with the standing project cap."""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from propel_api.auth.session_auth import get_tenant_context
from propel_api.db.models import Project, Proposal
from propel_api.db.session import get_db
from propel_api.dependencies import get_enforcement_engine
from propel_api.errors import NotFound, PersistenceError
from propel_api.pricing.enforcement import EnforcementEngine
from propel_api.schemas import (
    ProjectCreateRequest,
    ProjectListResponse,
    ProjectResponse,
    ProjectUpdateRequest,
)
from propel_api.tenancy.context import TenantContext
from propel_api.tenancy.roles import can_delete_project, require

router = APIRouter(prefix="/v1/projects", tags=["projects"])
logger = logging.getLogger(__name__)


def get_project_or_404(db: Session, org_id: str, project_id: str) -> Project:
    """Project of ``org_id``; other tenants' projects are indistinguishable from missing ones."""
    project = db.execute(
        select(Project).where(Project.id == project_id, Project.org_id == org_id)
    ).scalar_one_or_none()
    if project is None:
        raise NotFound("Project not found.")
    return project


def _commit(db: Session, event: str, org_id: str) -> None:
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error(event, extra={"org_id": org_id, "error_type": type(exc).__name__})
        raise PersistenceError("Could not save the project. Please retry.") from exc


@router.get("", response_model=ProjectListResponse)
def list_projects(
    ctx: TenantContext = Depends(get_tenant_context),
    db: Session = Depends(get_db),
) -> ProjectListResponse:
    projects = db.execute(
        select(Project)
        .where(Project.org_id == ctx.org_id)
        .order_by(Project.last_activity_at.desc(), Project.id.asc())
    ).scalars().all()
    return ProjectListResponse(projects=[ProjectResponse.model_validate(p) for p in projects])


@router.post("", response_model=ProjectResponse, status_code=status.HTTP_201_CREATED)
def create_project(
    request: ProjectCreateRequest,
    ctx: TenantContext = Depends(get_tenant_context),
    db: Session = Depends(get_db),
    engine: EnforcementEngine = Depends(get_enforcement_engine),
) -> ProjectResponse:
    """
    Create a project.

    FREE organizations are capped at 3 standing projects (402
    PROJECT_LIMIT_REACHED). The cap check and the insert share one
    transaction.
    """
    engine.reserve_project_slot(ctx.org_id, ctx.plan)

    project = Project(
        org_id=ctx.org_id,
        owner_id=ctx.user_id,
        title=request.title.strip(),
        client_name=request.client_name,
        status=request.status,
        estimated_value=request.estimated_value,
    )
    db.add(project)
    _commit(db, "PROJECT_CREATE_FAILED", ctx.org_id)

    logger.info("PROJECT_CREATED", extra={"org_id": ctx.org_id, "project_id": project.id})
    return ProjectResponse.model_validate(project)


@router.get("/{project_id}", response_model=ProjectResponse)
def get_project(
    project_id: str,
    ctx: TenantContext = Depends(get_tenant_context),
    db: Session = Depends(get_db),
) -> ProjectResponse:
    return ProjectResponse.model_validate(get_project_or_404(db, ctx.org_id, project_id))


@router.patch("/{project_id}", response_model=ProjectResponse)
def update_project(
    project_id: str,
    request: ProjectUpdateRequest,
    ctx: TenantContext = Depends(get_tenant_context),
    db: Session = Depends(get_db),
) -> ProjectResponse:
    project = get_project_or_404(db, ctx.org_id, project_id)

    for field, value in request.model_dump(exclude_unset=True).items():
        if field == "title" and value is not None:
            value = value.strip()
        setattr(project, field, value)
    project.last_activity_at = datetime.now(timezone.utc)

    _commit(db, "PROJECT_UPDATE_FAILED", ctx.org_id)
    return ProjectResponse.model_validate(project)


@router.delete("/{project_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_project(
    project_id: str,
    ctx: TenantContext = Depends(get_tenant_context),
    db: Session = Depends(get_db),
) -> Response:
    """Delete a project and its proposals (owners and admins only)."""
    require(can_delete_project(ctx.role), "Only owners and admins can delete projects.")
    project = get_project_or_404(db, ctx.org_id, project_id)

    db.execute(delete(Proposal).where(Proposal.project_id == project.id))
    db.delete(project)
    _commit(db, "PROJECT_DELETE_FAILED", ctx.org_id)

    logger.info("PROJECT_DELETED", extra={"org_id": ctx.org_id, "project_id": project_id})
    return Response(status_code=status.HTTP_204_NO_CONTENT)
