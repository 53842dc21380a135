"""
Notification Service - in-app notifications for alumni.

Provides the project-update fan-out and inbox CRUD.
"""

import logging
from dataclasses import dataclass
from typing import Optional
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backed.core.structured_logging import build_log_context
from backed.db.enums import NotificationType
from backed.db.models import Notification, Project, ProjectUpdate
from backed.services import follow_service
from backed.services.funding_ledger_service import (
    ProjectNotFoundError,
    list_completed_donor_ids,
)
from backed.services.project_service import ProjectAccessDeniedError

logger = logging.getLogger(__name__)

MAX_TITLE_LENGTH = 255


class NotificationServiceError(Exception):
    """Base exception for notification service errors."""

    pass


class UpdateValidationError(NotificationServiceError):
    """Update title or message missing or too long."""

    pass


@dataclass
class ShareUpdateResult:
    update_id: UUID
    notified_count: int
    failed_count: int = 0


# =============================================================================
# Notification CRUD
# =============================================================================


def create_notification(
    db: Session,
    recipient_id: UUID,
    type: NotificationType,
    title: str,
    message: str,
    project_id: Optional[UUID] = None,
    meta: Optional[dict] = None,
) -> Notification:
    """Create a single notification."""
    notification = Notification(
        recipient_id=recipient_id,
        project_id=project_id,
        type=type.value,
        title=title[:MAX_TITLE_LENGTH],
        message=message,
        meta=meta or {},
    )
    db.add(notification)
    db.commit()
    db.refresh(notification)
    return notification


def list_notifications(
    db: Session,
    recipient_id: UUID,
    unread_only: bool = False,
    limit: int = 20,
    offset: int = 0,
) -> list[Notification]:
    """Get notifications for an alumni, newest first."""
    query = select(Notification).where(Notification.recipient_id == recipient_id)
    if unread_only:
        query = query.where(Notification.is_read.is_(False))
    query = query.order_by(Notification.created_at.desc()).offset(offset).limit(limit)
    return list(db.execute(query).scalars())


def get_unread_count(db: Session, recipient_id: UUID) -> int:
    """Get count of unread notifications."""
    return db.execute(
        select(func.count(Notification.id)).where(
            Notification.recipient_id == recipient_id,
            Notification.is_read.is_(False),
        )
    ).scalar_one()


def mark_read(
    db: Session,
    notification_id: UUID,
    recipient_id: UUID,
) -> Optional[Notification]:
    """Mark a notification as read (scoped to its recipient)."""
    notification = db.execute(
        select(Notification).where(
            Notification.id == notification_id,
            Notification.recipient_id == recipient_id,
        )
    ).scalar_one_or_none()

    if notification and not notification.is_read:
        notification.is_read = True
        db.commit()
        db.refresh(notification)

    return notification


def mark_all_read(db: Session, recipient_id: UUID) -> int:
    """Mark all notifications as read. Returns count updated."""
    result = db.execute(
        update(Notification)
        .where(
            Notification.recipient_id == recipient_id,
            Notification.is_read.is_(False),
        )
        .values(is_read=True)
    )
    db.commit()
    return result.rowcount


# =============================================================================
# Project update fan-out
# =============================================================================


def compute_update_audience(db: Session, project: Project) -> list[UUID]:
    """Completed donors ∪ school followers, each recipient once."""
    donor_ids = list_completed_donor_ids(db, project.id)
    follower_ids = follow_service.list_follower_ids(db, project.school_id)
    return list(dict.fromkeys([*donor_ids, *follower_ids]))


def _update_notification(
    recipient_id: UUID, project: Project, update_row: ProjectUpdate
) -> Notification:
    return Notification(
        recipient_id=recipient_id,
        project_id=project.id,
        type=NotificationType.UPDATE.value,
        title=update_row.title,
        message=update_row.message,
        meta={"update_id": str(update_row.id)},
    )


def share_project_update(
    db: Session,
    *,
    school_id: UUID,
    project_id: UUID,
    title: str,
    message: str,
) -> ShareUpdateResult:
    """
    Record a project update and notify its audience.

    The update row is committed first and is the source of truth.
    Notification delivery is best effort: a failed bulk insert falls back
    to per-recipient inserts and failures are counted, never rolled into
    the update.

    Raises:
        UpdateValidationError: blank title or message
        ProjectNotFoundError: project does not exist
        ProjectAccessDeniedError: school does not own the project
    """
    title = (title or "").strip()
    message = (message or "").strip()
    if not title or not message:
        raise UpdateValidationError("Please fill in both title and message")
    if len(title) > MAX_TITLE_LENGTH:
        raise UpdateValidationError(f"Title must be at most {MAX_TITLE_LENGTH} characters")

    project = db.get(Project, project_id)
    if not project:
        raise ProjectNotFoundError(f"Project {project_id} not found")
    if project.school_id != school_id:
        raise ProjectAccessDeniedError("Project belongs to another school")

    update_row = ProjectUpdate(
        project_id=project.id,
        school_id=school_id,
        title=title,
        message=message,
    )
    db.add(update_row)
    db.commit()
    db.refresh(update_row)

    context = build_log_context(school_id=school_id, project_id=project_id)
    try:
        audience = compute_update_audience(db, project)
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Could not compute update audience", extra=context)
        return ShareUpdateResult(update_id=update_row.id, notified_count=0)

    if not audience:
        return ShareUpdateResult(update_id=update_row.id, notified_count=0)

    try:
        db.add_all([_update_notification(r, project, update_row) for r in audience])
        db.commit()
        return ShareUpdateResult(update_id=update_row.id, notified_count=len(audience))
    except SQLAlchemyError:
        db.rollback()
        logger.warning("Bulk notification insert failed, retrying per recipient", exc_info=True, extra=context)

    notified = 0
    failed = 0
    for recipient_id in audience:
        try:
            db.add(_update_notification(recipient_id, project, update_row))
            db.commit()
            notified += 1
        except SQLAlchemyError:
            db.rollback()
            failed += 1
            logger.warning(
                "Notification insert failed",
                exc_info=True,
                extra=build_log_context(donor_id=recipient_id, project_id=project_id),
            )
    return ShareUpdateResult(update_id=update_row.id, notified_count=notified, failed_count=failed)
