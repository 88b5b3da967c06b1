"""Pydantic schemas for API requests/responses."""

from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class ProblemDetail(BaseModel):
    """RFC 9457 Problem Details for HTTP API errors.

    Extension members (e.g. ``code``, ``remaining``) are allowed and
    serialized at the top level.
    """

    model_config = ConfigDict(extra="allow")

    type: str = Field(..., description="URI reference identifying the problem type")
    title: str = Field(..., description="Short, human-readable summary")
    status: int = Field(..., description="HTTP status code")
    detail: str | dict[str, Any] = Field(..., description="Human-readable explanation or structured error details")
    instance: Optional[str] = Field(None, description="URI reference identifying the specific occurrence")


# ============================================================================
# GET /v1/org
# ============================================================================


class UsageSnapshotResponse(BaseModel):
    month: str = Field(..., description="UTC month key, YYYY-MM")
    used: int
    limit: Optional[int] = Field(None, description="Monthly generation limit; null means unlimited")
    remaining: Optional[int] = Field(None, description="Null means unlimited")


class MemberResponse(BaseModel):
    user_id: str
    email: str
    role: str


class OrgContextResponse(BaseModel):
    org_id: str
    org_name: str
    role: str
    plan: str
    is_owner_or_admin: bool
    usage: UsageSnapshotResponse
    members: list[MemberResponse]


# ============================================================================
# POST /v1/org/invite
# ============================================================================


class InviteRequest(BaseModel):
    email: EmailStr


class InviteResponse(BaseModel):
    ok: bool
    message: str


# ============================================================================
# POST /v1/ai/generate
# ============================================================================


class GenerateRequest(BaseModel):
    prompt: Optional[str] = Field(None, max_length=4000, description="Blank uses the default prompt")


class GenerationMeta(BaseModel):
    plan: str
    month: str
    used: int
    remaining: Optional[int] = Field(None, description="Null means unlimited")
    degraded: bool = Field(False, description="True when the provider failed and a stub was returned")


class GenerateResponse(BaseModel):
    output: str
    meta: GenerationMeta


# ============================================================================
# Projects
# ============================================================================


class ProjectCreateRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    client_name: Optional[str] = Field(None, max_length=200)
    status: str = Field("LEAD", max_length=40)
    estimated_value: Optional[float] = Field(None, ge=0)


class ProjectUpdateRequest(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    client_name: Optional[str] = Field(None, max_length=200)
    status: Optional[str] = Field(None, max_length=40)
    estimated_value: Optional[float] = Field(None, ge=0)


class ProjectResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    org_id: str
    owner_id: str
    title: str
    client_name: Optional[str] = None
    status: str
    estimated_value: Optional[float] = None
    last_activity_at: datetime
    created_at: datetime


class ProjectListResponse(BaseModel):
    projects: list[ProjectResponse]


# ============================================================================
# Proposals
# ============================================================================


class ProposalGenerateRequest(BaseModel):
    project_id: str = Field(..., min_length=1)
    brief: str = Field(..., min_length=1, max_length=8000)


class ProposalUpdateRequest(BaseModel):
    sections: Optional[dict[str, str]] = None
    status: Optional[Literal["DRAFT", "SENT", "ACCEPTED", "REJECTED"]] = None


class ProposalResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    org_id: str
    project_id: str
    version: int
    status: str
    sections: dict[str, Any]
    public_token: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class ProposalListResponse(BaseModel):
    proposals: list[ProposalResponse]


class PublishResponse(BaseModel):
    ok: bool = True
    public_token: str
    public_url: str


class PublicProposalResponse(BaseModel):
    """Read-only view of a published proposal."""

    client_name: str
    project_title: str
    version: int
    status: str
    sections: dict[str, str]


# ============================================================================
# Billing
# ============================================================================


class RedirectResponseBody(BaseModel):
    url: str
