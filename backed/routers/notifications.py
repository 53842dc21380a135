"""
Notifications Router - /me/notifications endpoints.

Provides notification listing and read status.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from backed.core.deps import get_db, require_alumni
from backed.db.models import AlumniProfile, Notification
from backed.services import notification_service


router = APIRouter()


# =============================================================================
# Schemas
# =============================================================================


class NotificationRead(BaseModel):
    """Notification response."""
    id: str
    type: str
    title: str
    message: str
    project_id: str | None
    is_read: bool
    metadata: dict
    created_at: str


class NotificationListResponse(BaseModel):
    """Paginated notification list."""
    items: list[NotificationRead]
    unread_count: int


class UnreadCountResponse(BaseModel):
    """Unread count only (for polling)."""
    count: int


def _to_read(n: Notification) -> NotificationRead:
    return NotificationRead(
        id=str(n.id),
        type=n.type,
        title=n.title,
        message=n.message,
        project_id=str(n.project_id) if n.project_id else None,
        is_read=n.is_read,
        metadata=n.meta or {},
        created_at=n.created_at.isoformat(),
    )


# =============================================================================
# Endpoints
# =============================================================================


@router.get("/notifications", response_model=NotificationListResponse)
def list_notifications(
    unread_only: bool = Query(False),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    donor: AlumniProfile = Depends(require_alumni),
    db: Session = Depends(get_db),
):
    """Get the caller's notifications."""
    notifications = notification_service.list_notifications(
        db=db,
        recipient_id=donor.id,
        unread_only=unread_only,
        limit=limit,
        offset=offset,
    )
    unread_count = notification_service.get_unread_count(db=db, recipient_id=donor.id)
    return NotificationListResponse(
        items=[_to_read(n) for n in notifications],
        unread_count=unread_count,
    )


@router.get("/notifications/count", response_model=UnreadCountResponse)
def get_unread_count(
    donor: AlumniProfile = Depends(require_alumni),
    db: Session = Depends(get_db),
):
    """Get unread notification count (for polling)."""
    count = notification_service.get_unread_count(db=db, recipient_id=donor.id)
    return UnreadCountResponse(count=count)


@router.post("/notifications/{notification_id}/read", response_model=NotificationRead)
def mark_notification_read(
    notification_id: UUID,
    donor: AlumniProfile = Depends(require_alumni),
    db: Session = Depends(get_db),
):
    """Mark a notification as read."""
    notification = notification_service.mark_read(
        db=db,
        notification_id=notification_id,
        recipient_id=donor.id,
    )
    if not notification:
        raise HTTPException(status_code=404, detail="Notification not found")
    return _to_read(notification)


@router.post("/notifications/read-all")
def mark_all_read(
    donor: AlumniProfile = Depends(require_alumni),
    db: Session = Depends(get_db),
):
    """Mark all notifications as read."""
    count = notification_service.mark_all_read(db=db, recipient_id=donor.id)
    return {"marked_read": count}
