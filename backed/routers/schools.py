"""Schools Router - school-side funding views under /schools/me."""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from backed.core.deps import get_db, require_school
from backed.db.models import School
from backed.schemas.project import FundingRead
from backed.services import project_service
from backed.services.funding_ledger_service import ProjectNotFoundError


router = APIRouter()


@router.get("/me/projects/{project_id}/funding", response_model=FundingRead)
def get_school_project_funding(
    project_id: UUID,
    school: School = Depends(require_school),
    db: Session = Depends(get_db),
):
    """School-side totals: every completed donation row counts."""
    try:
        view = project_service.get_school_funding_view(db, school.id, project_id)
    except ProjectNotFoundError:
        raise HTTPException(status_code=404, detail="Project not found")
    except project_service.ProjectAccessDeniedError as e:
        raise HTTPException(status_code=403, detail=str(e))
    return FundingRead.from_totals(view.totals, view.project.target_amount)
