"""SQLAlchemy ORM models for schools, alumni, projects and the funding ledger."""

import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    JSON, Boolean, CheckConstraint, ForeignKey, Index, Integer, Numeric,
    String, Text, UniqueConstraint, Uuid, func
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backed.db.base import Base, utcnow
from backed.db.enums import DonationStatus, ProjectStatus

Money = Numeric(12, 2)


# =============================================================================
# Principals
# =============================================================================

class School(Base):
    """
    A school that creates fundraising projects.

    ``admin_user_id`` is the identity-provider subject of the school admin.
    """
    __tablename__ = "schools"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    admin_user_id: Mapped[uuid.UUID] = mapped_column(Uuid, unique=True, nullable=False)
    school_name: Mapped[str] = mapped_column(String(255), nullable=False)
    location: Mapped[str] = mapped_column(String(255), default="", nullable=False)
    logo_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), nullable=False
    )

    projects: Mapped[list["Project"]] = relationship(back_populates="school")


class AlumniProfile(Base):
    """
    An alumni donor.

    ``niches`` holds the donor's declared interest tags, the input to
    relevance scoring.
    """
    __tablename__ = "alumni_users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, unique=True, nullable=False)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    niches: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    school_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("schools.id", ondelete="SET NULL"), nullable=True
    )
    school_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), nullable=False
    )


# =============================================================================
# Projects
# =============================================================================

class Project(Base):
    """
    A fundraising campaign owned by a school.

    current_amount, reserved_amount, backers_count and the FUNDED status are
    owned by the funding ledger; every other writer treats them as read-only.
    """
    __tablename__ = "projects"
    __table_args__ = (
        Index("idx_projects_status_created", "status", "created_at"),
        Index("idx_projects_school", "school_id"),
        CheckConstraint("target_amount IS NULL OR target_amount > 0", name="ck_projects_target_positive"),
        CheckConstraint("reserved_amount >= 0", name="ck_projects_reserved_non_negative"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    school_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("schools.id", ondelete="CASCADE"), nullable=False
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)

    # Long-form fields
    overview: Mapped[str | None] = mapped_column(Text, nullable=True)
    motivation: Mapped[str | None] = mapped_column(Text, nullable=True)
    objectives: Mapped[str | None] = mapped_column(Text, nullable=True)
    scope: Mapped[str | None] = mapped_column(Text, nullable=True)

    category: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)

    # Funding (NULL target = no target)
    target_amount: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    current_amount: Mapped[Decimal] = mapped_column(Money, default=Decimal("0"), nullable=False)
    reserved_amount: Mapped[Decimal] = mapped_column(Money, default=Decimal("0"), nullable=False)
    backers_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    status: Mapped[str] = mapped_column(
        String(20), default=ProjectStatus.DRAFT.value, nullable=False
    )
    days_remaining: Mapped[int | None] = mapped_column(Integer, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        default=utcnow, onupdate=utcnow, server_default=func.now(), nullable=False
    )

    school: Mapped["School"] = relationship(back_populates="projects")


class ProjectUpdate(Base):
    """An update shared by a school with a project's audience."""
    __tablename__ = "project_updates"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    project_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False
    )
    school_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("schools.id", ondelete="CASCADE"), nullable=False
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), nullable=False
    )


# =============================================================================
# Donations (two physical sources)
# =============================================================================

class AlumniDonation(Base):
    """
    Primary donation source: donations made through the alumni app.

    Counted toward a project's aggregate iff status is completed or
    completed_demo.
    """
    __tablename__ = "alumni_donations"
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_alumni_donations_amount_positive"),
        UniqueConstraint("payment_reference", name="uq_alumni_donations_payment_reference"),
        Index("idx_alumni_donations_project_status", "project_id", "status"),
        Index("idx_alumni_donations_donor", "donor_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    donor_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("alumni_users.id", ondelete="CASCADE"), nullable=False
    )
    project_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False
    )
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    currency: Mapped[str] = mapped_column(String(8), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), default=DonationStatus.PENDING.value, nullable=False
    )
    is_anonymous: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    message: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Gateway correlation
    payment_provider: Mapped[str | None] = mapped_column(String(50), nullable=True)
    payment_reference: Mapped[str] = mapped_column(String(100), nullable=False)
    receipt_number: Mapped[str | None] = mapped_column(String(50), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        default=utcnow, onupdate=utcnow, server_default=func.now(), nullable=False
    )


class DonationHistory(Base):
    """
    Legacy donation source (direct donations recorded before the alumni app).

    Schema differs from AlumniDonation: donors may be unregistered
    (name/email only) and payment_status is free text, often NULL.
    """
    __tablename__ = "donation_history"
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_donation_history_amount_positive"),
        Index("idx_donation_history_project", "project_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    project_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("projects.id", ondelete="SET NULL"), nullable=True
    )
    donor_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("alumni_users.id", ondelete="SET NULL"), nullable=True
    )
    donor_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    donor_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    payment_status: Mapped[str | None] = mapped_column(String(32), nullable=True)
    message: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), nullable=False
    )


class DonationReconciliation(Base):
    """
    A charge that succeeded at the gateway with no local donation record.

    Resolved manually; the project's headroom hold stays in place until then.
    """
    __tablename__ = "donation_reconciliations"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    payment_reference: Mapped[str] = mapped_column(String(100), nullable=False)
    donor_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    project_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    currency: Mapped[str] = mapped_column(String(8), nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    resolved: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), nullable=False
    )


# =============================================================================
# Engagement
# =============================================================================

class SchoolFollow(Base):
    """An alumni following a school."""
    __tablename__ = "alumni_followed_schools"
    __table_args__ = (
        UniqueConstraint("donor_id", "school_id", name="uq_followed_school"),
        Index("idx_followed_school_school", "school_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    donor_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("alumni_users.id", ondelete="CASCADE"), nullable=False
    )
    school_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("schools.id", ondelete="CASCADE"), nullable=False
    )
    notify_new_projects: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), nullable=False
    )


class Bookmark(Base):
    """A saved project. Participates in no aggregation."""
    __tablename__ = "alumni_bookmarks"
    __table_args__ = (
        UniqueConstraint("donor_id", "project_id", name="uq_bookmark"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    donor_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("alumni_users.id", ondelete="CASCADE"), nullable=False
    )
    project_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), nullable=False
    )


class Notification(Base):
    """
    In-app notification for an alumni.

    Created in bulk by update fan-out; only ``is_read`` changes afterwards.
    """
    __tablename__ = "alumni_notifications"
    __table_args__ = (
        Index("idx_notif_recipient_unread", "recipient_id", "is_read", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    recipient_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("alumni_users.id", ondelete="CASCADE"), nullable=False
    )
    project_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("projects.id", ondelete="SET NULL"), nullable=True
    )
    type: Mapped[str] = mapped_column(String(50), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    is_read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    # "metadata" is reserved on declarative classes
    meta: Mapped[dict] = mapped_column("metadata", JSON, default=dict, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), nullable=False
    )
