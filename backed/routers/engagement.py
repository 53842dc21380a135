"""
Engagement Router - follows and bookmarks.

Both are idempotent existence markers: repeating a POST or DELETE is safe.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session

from backed.core.deps import get_db, require_alumni
from backed.db.models import AlumniProfile
from backed.schemas.project import ProjectRead, SchoolSummary
from backed.services import bookmark_service, follow_service
from backed.services.funding_ledger_service import ProjectNotFoundError


router = APIRouter()


class FollowState(BaseModel):
    school_id: UUID
    following: bool


class BookmarkState(BaseModel):
    project_id: UUID
    bookmarked: bool


# =============================================================================
# Follows
# =============================================================================


@router.post("/schools/{school_id}/follow", response_model=FollowState)
def follow_school(
    school_id: UUID,
    donor: AlumniProfile = Depends(require_alumni),
    db: Session = Depends(get_db),
):
    try:
        follow_service.follow_school(db, donor.id, school_id)
    except follow_service.SchoolNotFoundError:
        raise HTTPException(status_code=404, detail="School not found")
    return FollowState(school_id=school_id, following=True)


@router.delete("/schools/{school_id}/follow", response_model=FollowState)
def unfollow_school(
    school_id: UUID,
    donor: AlumniProfile = Depends(require_alumni),
    db: Session = Depends(get_db),
):
    follow_service.unfollow_school(db, donor.id, school_id)
    return FollowState(school_id=school_id, following=False)


@router.get("/me/following", response_model=list[SchoolSummary])
def list_followed_schools(
    donor: AlumniProfile = Depends(require_alumni),
    db: Session = Depends(get_db),
):
    schools = follow_service.list_followed_schools(db, donor.id)
    return [SchoolSummary.model_validate(s) for s in schools]


# =============================================================================
# Bookmarks
# =============================================================================


@router.post("/projects/{project_id}/bookmark", response_model=BookmarkState)
def add_bookmark(
    project_id: UUID,
    donor: AlumniProfile = Depends(require_alumni),
    db: Session = Depends(get_db),
):
    try:
        bookmark_service.add_bookmark(db, donor.id, project_id)
    except ProjectNotFoundError:
        raise HTTPException(status_code=404, detail="Project not found")
    return BookmarkState(project_id=project_id, bookmarked=True)


@router.delete("/projects/{project_id}/bookmark", response_model=BookmarkState)
def remove_bookmark(
    project_id: UUID,
    donor: AlumniProfile = Depends(require_alumni),
    db: Session = Depends(get_db),
):
    bookmark_service.remove_bookmark(db, donor.id, project_id)
    return BookmarkState(project_id=project_id, bookmarked=False)


@router.get("/me/bookmarks", response_model=list[ProjectRead])
def list_bookmarks(
    donor: AlumniProfile = Depends(require_alumni),
    db: Session = Depends(get_db),
):
    projects = bookmark_service.list_bookmarks(db, donor.id)
    return [ProjectRead.from_project(p) for p in projects]
