"""Follow relationships between alumni and schools."""

from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from backed.db.models import School, SchoolFollow


class FollowServiceError(Exception):
    """Base exception for follow service errors."""

    pass


class SchoolNotFoundError(FollowServiceError):
    """School does not exist."""

    pass


def follow_school(db: Session, donor_id: UUID, school_id: UUID) -> SchoolFollow:
    """Follow a school. Idempotent: returns the existing row if present."""
    if not db.get(School, school_id):
        raise SchoolNotFoundError(f"School {school_id} not found")

    existing = db.execute(
        select(SchoolFollow).where(
            SchoolFollow.donor_id == donor_id,
            SchoolFollow.school_id == school_id,
        )
    ).scalar_one_or_none()
    if existing:
        return existing

    follow = SchoolFollow(donor_id=donor_id, school_id=school_id)
    db.add(follow)
    try:
        db.commit()
    except IntegrityError:
        # Lost a race with a concurrent follow
        db.rollback()
        return db.execute(
            select(SchoolFollow).where(
                SchoolFollow.donor_id == donor_id,
                SchoolFollow.school_id == school_id,
            )
        ).scalar_one()
    db.refresh(follow)
    return follow


def unfollow_school(db: Session, donor_id: UUID, school_id: UUID) -> bool:
    """Unfollow a school. Returns True if a follow was removed."""
    result = db.execute(
        delete(SchoolFollow).where(
            SchoolFollow.donor_id == donor_id,
            SchoolFollow.school_id == school_id,
        )
    )
    db.commit()
    return bool(result.rowcount)


def list_follower_ids(db: Session, school_id: UUID) -> list[UUID]:
    """Distinct alumni following the school."""
    return list(
        db.execute(
            select(SchoolFollow.donor_id)
            .where(SchoolFollow.school_id == school_id)
            .order_by(SchoolFollow.created_at)
        ).scalars()
    )


def list_followed_schools(db: Session, donor_id: UUID) -> list[School]:
    return list(
        db.execute(
            select(School)
            .join(SchoolFollow, SchoolFollow.school_id == School.id)
            .where(SchoolFollow.donor_id == donor_id)
            .order_by(SchoolFollow.created_at.desc())
        ).scalars()
    )
