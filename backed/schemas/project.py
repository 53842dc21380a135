"""Pydantic schemas for projects, funding and project updates."""

from datetime import datetime
from decimal import Decimal
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, Field

from backed.db.enums import AggregationMode, ProjectStatus
from backed.db.models import Project
from backed.services.funding_ledger_service import FundingTotals, funding_progress


class SchoolSummary(BaseModel):
    """Owning school, embedded in project responses."""

    id: UUID
    school_name: str
    location: str
    logo_url: str | None = None

    model_config = {"from_attributes": True}


class ProjectRead(BaseModel):
    """Project response. Funding fields are the ledger's cached aggregates."""

    id: UUID
    school_id: UUID
    title: str
    description: str
    overview: str | None = None
    motivation: str | None = None
    objectives: str | None = None
    scope: str | None = None
    category: list[str] = Field(default_factory=list)
    target_amount: Decimal | None = None
    current_amount: Decimal
    backers_count: int
    progress: int = 0
    status: str
    days_remaining: int | None = None
    created_at: datetime
    school: SchoolSummary | None = None

    model_config = {"from_attributes": True}

    @classmethod
    def from_project(cls, project: Project) -> "ProjectRead":
        data = cls.model_validate(project)
        data.progress = funding_progress(project.current_amount, project.target_amount)
        return data


class ProjectCreate(BaseModel):
    """Request to create a project."""

    title: str = Field(..., min_length=1, max_length=255)
    description: str = Field(..., min_length=1)
    category: list[str] = Field(default_factory=list, max_length=10)
    target_amount: Decimal | None = Field(None, gt=0, max_digits=12, decimal_places=2)
    days_remaining: int | None = Field(None, ge=0)
    status: Literal["draft", "active"] = "draft"
    overview: str | None = None
    motivation: str | None = None
    objectives: str | None = None
    scope: str | None = None


class ProjectStatusUpdate(BaseModel):
    """Explicit lifecycle change. ``funded`` is derived and rejected."""

    status: ProjectStatus


class FundingRead(BaseModel):
    """Freshly summed funding totals across both donation sources."""

    project_id: UUID
    mode: AggregationMode
    total_raised: Decimal
    backer_count: int
    donation_count: int
    target_amount: Decimal | None
    progress: int
    degraded: bool
    missing_sources: list[str] = Field(default_factory=list)

    @classmethod
    def from_totals(cls, totals: FundingTotals, target_amount: Decimal | None) -> "FundingRead":
        return cls(
            project_id=totals.project_id,
            mode=totals.mode,
            total_raised=totals.total_raised,
            backer_count=totals.backer_count,
            donation_count=totals.donation_count,
            target_amount=target_amount,
            progress=funding_progress(totals.total_raised, target_amount),
            degraded=totals.degraded,
            missing_sources=list(totals.missing_sources),
        )


class ProjectUpdateCreate(BaseModel):
    """Update shared by a school with donors and followers."""

    title: str = Field(..., max_length=255)
    message: str = Field(..., max_length=5000)


class ShareUpdateResponse(BaseModel):
    update_id: UUID
    notified_count: int
    failed_count: int = 0
