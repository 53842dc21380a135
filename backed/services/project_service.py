"""Project service - school-side project management and funding views."""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional
from uuid import UUID

from sqlalchemy.orm import Session

from backed.core.structured_logging import build_log_context
from backed.db.enums import AggregationMode, ProjectStatus
from backed.db.models import Project
from backed.services.funding_ledger_service import (
    FundingTotals,
    ProjectNotFoundError,
    compute_funding_totals,
    derive_status,
    funding_progress,
)

logger = logging.getLogger(__name__)


class ProjectServiceError(Exception):
    """Base exception for project service errors."""

    pass


class ProjectValidationError(ProjectServiceError):
    """Invalid project data or status transition."""

    pass


class ProjectAccessDeniedError(ProjectServiceError):
    """School does not own the project."""

    pass


@dataclass
class SchoolFundingView:
    project: Project
    totals: FundingTotals
    progress: int


def get_project(db: Session, project_id: UUID) -> Project:
    project = db.get(Project, project_id)
    if not project:
        raise ProjectNotFoundError(f"Project {project_id} not found")
    return project


def get_owned_project(db: Session, school_id: UUID, project_id: UUID) -> Project:
    project = get_project(db, project_id)
    if project.school_id != school_id:
        raise ProjectAccessDeniedError("Project belongs to another school")
    return project


def create_project(
    db: Session,
    school_id: UUID,
    *,
    title: str,
    description: str,
    category: Optional[list[str]] = None,
    target_amount: Optional[Decimal] = None,
    days_remaining: Optional[int] = None,
    status: ProjectStatus = ProjectStatus.DRAFT,
    overview: Optional[str] = None,
    motivation: Optional[str] = None,
    objectives: Optional[str] = None,
    scope: Optional[str] = None,
) -> Project:
    """Create a project owned by the school. Aggregates start at zero."""
    if status.value not in (ProjectStatus.DRAFT.value, ProjectStatus.ACTIVE.value):
        raise ProjectValidationError("New projects must be draft or active")
    if not (title or "").strip() or not (description or "").strip():
        raise ProjectValidationError("Title and description are required")
    if target_amount is not None and target_amount <= 0:
        raise ProjectValidationError("Target amount must be positive")

    tags = list(dict.fromkeys(t.strip() for t in (category or []) if t and t.strip()))
    project = Project(
        school_id=school_id,
        title=title.strip(),
        description=description.strip(),
        category=tags,
        target_amount=target_amount,
        days_remaining=days_remaining,
        status=status.value,
        overview=overview,
        motivation=motivation,
        objectives=objectives,
        scope=scope,
    )
    db.add(project)
    db.commit()
    db.refresh(project)
    return project


def set_project_status(
    db: Session,
    school_id: UUID,
    project_id: UUID,
    status: ProjectStatus,
) -> Project:
    """
    Explicit lifecycle change by the owning school.

    FUNDED is derived by the funding ledger and cannot be requested. An
    ACTIVE request on a project that has reached its target lands on FUNDED.
    """
    if status.value not in ProjectStatus.settable():
        raise ProjectValidationError(f"Status '{status.value}' cannot be set directly")

    project = get_owned_project(db, school_id, project_id)
    previous = project.status
    project.status = derive_status(status.value, project.target_amount, project.current_amount or Decimal("0"))
    db.commit()
    db.refresh(project)

    logger.info(
        "Project status changed %s -> %s",
        previous,
        project.status,
        extra=build_log_context(school_id=school_id, project_id=project_id),
    )
    return project


def get_school_funding_view(db: Session, school_id: UUID, project_id: UUID) -> SchoolFundingView:
    """School-side totals: every completed donation row counts separately."""
    project = get_owned_project(db, school_id, project_id)
    totals = compute_funding_totals(db, project_id, AggregationMode.DONATIONS)
    return SchoolFundingView(
        project=project,
        totals=totals,
        progress=funding_progress(totals.total_raised, project.target_amount),
    )
