"""Enum definitions for application constants."""

from enum import Enum


class PrincipalRole(str, Enum):
    """Roles asserted by the identity provider."""
    ALUMNI = "alumni"
    SCHOOL = "school"

    @classmethod
    def has_value(cls, value: str) -> bool:
        """Check if value is a valid role."""
        return value in cls._value2member_map_


class ProjectStatus(str, Enum):
    """
    Project lifecycle.

    draft → active → funded (derived) / closed

    FUNDED is owned by the funding ledger and is never set directly.
    """
    DRAFT = "draft"
    ACTIVE = "active"
    FUNDED = "funded"
    CLOSED = "closed"

    @classmethod
    def feed_visible(cls) -> list[str]:
        """Statuses shown in alumni feeds."""
        return [cls.ACTIVE.value, cls.FUNDED.value]

    @classmethod
    def settable(cls) -> list[str]:
        """Statuses a school may set explicitly."""
        return [cls.DRAFT.value, cls.ACTIVE.value, cls.CLOSED.value]


class DonationStatus(str, Enum):
    """Status of a donation in the primary (alumni) donation table."""
    PENDING = "pending"
    COMPLETED = "completed"
    COMPLETED_DEMO = "completed_demo"  # Simulated gateway
    FAILED = "failed"

    @classmethod
    def counted(cls) -> list[str]:
        """Statuses that contribute to a project's aggregate."""
        return [cls.COMPLETED.value, cls.COMPLETED_DEMO.value]

    @classmethod
    def is_counted(cls, value: str | None) -> bool:
        return value in cls.counted()


# Legacy donation_history.payment_status values treated as completed.
# NULL also counts: the legacy table only stored settled donations.
LEGACY_COMPLETED_STATUSES = frozenset({"completed", "success", "successful", "paid"})


class NotificationType(str, Enum):
    """Types of in-app notifications for alumni."""
    UPDATE = "update"  # School shared a project update
    DONATION_RECEIPT = "donation_receipt"


class AggregationMode(str, Enum):
    """
    How backers are counted when totalling a project.

    - BACKERS: distinct donors (alumni-facing progress, project cache)
    - DONATIONS: distinct donation rows (school-side funding view)
    """
    BACKERS = "backers"
    DONATIONS = "donations"
