"""
Projects Router - /projects endpoints.

Project detail, funding totals, AI summary, and school-side management.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import select
from sqlalchemy.orm import Session

from backed.core.deps import get_ai_provider, get_current_principal, get_db, require_school
from backed.db.enums import AggregationMode, PrincipalRole, ProjectStatus
from backed.db.models import Project, School
from backed.schemas.auth import Principal
from backed.schemas.project import (
    FundingRead,
    ProjectCreate,
    ProjectRead,
    ProjectStatusUpdate,
    ProjectUpdateCreate,
    ShareUpdateResponse,
)
from backed.services import ai_summary_service, notification_service, project_service
from backed.services.ai_provider import AIProvider
from backed.services.ai_summary_service import ProjectSummary
from backed.services.funding_ledger_service import ProjectNotFoundError, compute_funding_totals


router = APIRouter()


def _visible_project(db: Session, project_id: UUID, principal: Principal) -> Project:
    """Drafts are only visible to the owning school."""
    project = db.get(Project, project_id)
    if not project:
        raise HTTPException(status_code=404, detail="Project not found")
    if project.status == ProjectStatus.DRAFT.value:
        owner = None
        if principal.role == PrincipalRole.SCHOOL:
            owner = db.execute(
                select(School.id).where(School.admin_user_id == principal.user_id)
            ).scalar_one_or_none()
        if owner != project.school_id:
            raise HTTPException(status_code=404, detail="Project not found")
    return project


# =============================================================================
# Read endpoints
# =============================================================================


@router.get("/{project_id}", response_model=ProjectRead)
def get_project(
    project_id: UUID,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    """Project detail with cached funding figures."""
    project = _visible_project(db, project_id, principal)
    return ProjectRead.from_project(project)


@router.get("/{project_id}/funding", response_model=FundingRead)
def get_project_funding(
    project_id: UUID,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    """Alumni-facing totals: backers are distinct donors."""
    project = _visible_project(db, project_id, principal)
    totals = compute_funding_totals(db, project.id, AggregationMode.BACKERS)
    return FundingRead.from_totals(totals, project.target_amount)


@router.get("/{project_id}/summary", response_model=ProjectSummary)
async def get_project_summary(
    project_id: UUID,
    principal: Principal = Depends(get_current_principal),
    provider: AIProvider | None = Depends(get_ai_provider),
    db: Session = Depends(get_db),
):
    """AI summary, or the deterministic fallback summary."""
    project = _visible_project(db, project_id, principal)
    return await ai_summary_service.generate_project_summary(project, provider)


# =============================================================================
# School endpoints
# =============================================================================


@router.post("", response_model=ProjectRead, status_code=201)
def create_project(
    data: ProjectCreate,
    school: School = Depends(require_school),
    db: Session = Depends(get_db),
):
    """Create a project for the caller's school."""
    try:
        project = project_service.create_project(
            db,
            school.id,
            title=data.title,
            description=data.description,
            category=data.category,
            target_amount=data.target_amount,
            days_remaining=data.days_remaining,
            status=ProjectStatus(data.status),
            overview=data.overview,
            motivation=data.motivation,
            objectives=data.objectives,
            scope=data.scope,
        )
    except project_service.ProjectValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return ProjectRead.from_project(project)


@router.patch("/{project_id}/status", response_model=ProjectRead)
def update_project_status(
    project_id: UUID,
    data: ProjectStatusUpdate,
    school: School = Depends(require_school),
    db: Session = Depends(get_db),
):
    """Set draft/active/closed. ``funded`` is derived from donations."""
    try:
        project = project_service.set_project_status(db, school.id, project_id, data.status)
    except project_service.ProjectValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ProjectNotFoundError:
        raise HTTPException(status_code=404, detail="Project not found")
    except project_service.ProjectAccessDeniedError as e:
        raise HTTPException(status_code=403, detail=str(e))
    return ProjectRead.from_project(project)


@router.post("/{project_id}/updates", response_model=ShareUpdateResponse, status_code=201)
def share_update(
    project_id: UUID,
    data: ProjectUpdateCreate,
    school: School = Depends(require_school),
    db: Session = Depends(get_db),
):
    """Record a project update and notify past donors and followers."""
    try:
        result = notification_service.share_project_update(
            db,
            school_id=school.id,
            project_id=project_id,
            title=data.title,
            message=data.message,
        )
    except notification_service.UpdateValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ProjectNotFoundError:
        raise HTTPException(status_code=404, detail="Project not found")
    except project_service.ProjectAccessDeniedError as e:
        raise HTTPException(status_code=403, detail=str(e))
    return ShareUpdateResponse(
        update_id=result.update_id,
        notified_count=result.notified_count,
        failed_count=result.failed_count,
    )
