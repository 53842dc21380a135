"""Saved projects. Bookmarks are existence markers only."""

from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from backed.db.models import Bookmark, Project
from backed.services.funding_ledger_service import ProjectNotFoundError


def add_bookmark(db: Session, donor_id: UUID, project_id: UUID) -> Bookmark:
    """Bookmark a project. Idempotent."""
    if not db.get(Project, project_id):
        raise ProjectNotFoundError(f"Project {project_id} not found")

    query = select(Bookmark).where(
        Bookmark.donor_id == donor_id,
        Bookmark.project_id == project_id,
    )
    existing = db.execute(query).scalar_one_or_none()
    if existing:
        return existing

    bookmark = Bookmark(donor_id=donor_id, project_id=project_id)
    db.add(bookmark)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        return db.execute(query).scalar_one()
    db.refresh(bookmark)
    return bookmark


def remove_bookmark(db: Session, donor_id: UUID, project_id: UUID) -> bool:
    result = db.execute(
        delete(Bookmark).where(
            Bookmark.donor_id == donor_id,
            Bookmark.project_id == project_id,
        )
    )
    db.commit()
    return bool(result.rowcount)


def list_bookmarks(db: Session, donor_id: UUID) -> list[Project]:
    return list(
        db.execute(
            select(Project)
            .join(Bookmark, Bookmark.project_id == Project.id)
            .where(Bookmark.donor_id == donor_id)
            .order_by(Bookmark.created_at.desc())
        ).scalars()
    )
