"""
Funding Ledger - aggregates raised amounts for projects.

Donations live in two physical tables (alumni_donations and the legacy
donation_history). Both are normalized into ``CompletedDonation`` by one
adapter per source and merged before aggregation; no call site sums either
table on its own.

The ledger is the only writer of a project's current_amount,
reserved_amount, backers_count and derived FUNDED status.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Sequence
from uuid import UUID

from sqlalchemy import case, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backed.core.structured_logging import build_log_context
from backed.db.enums import (
    LEGACY_COMPLETED_STATUSES,
    AggregationMode,
    DonationStatus,
    ProjectStatus,
)
from backed.db.models import AlumniDonation, DonationHistory, Project

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


class FundingLedgerError(Exception):
    """Base exception for funding ledger errors."""

    pass


class ProjectNotFoundError(FundingLedgerError):
    """Project does not exist."""

    pass


class FundingLedgerDegradedError(FundingLedgerError):
    """A donation source could not be read; totals are not authoritative."""

    def __init__(self, totals: "FundingTotals"):
        self.totals = totals
        super().__init__(
            f"Donation sources unavailable: {', '.join(totals.missing_sources)}"
        )


class ProjectNotOpenError(FundingLedgerError):
    """Project is not accepting donations."""

    def __init__(self, status: str):
        self.status = status
        super().__init__(f"Project is {status}, not accepting donations")


class InsufficientHeadroomError(FundingLedgerError):
    """Amount would push the project past its target."""

    def __init__(self, remaining: Decimal):
        self.remaining = remaining
        super().__init__(f"Amount exceeds remaining target, max {remaining}")


# =============================================================================
# Normalized donation view
# =============================================================================


@dataclass(frozen=True)
class CompletedDonation:
    """A donation that counts toward a project's aggregate, from any source."""

    amount: Decimal
    project_id: UUID
    donor_id: UUID | None
    donor_key: str | None  # Identity used for distinct-backer counting
    donation_key: str  # Unique per row across sources
    source: str


class DonationSource(ABC):
    """Adapter that reads completed donations from one physical table."""

    name: str

    @abstractmethod
    def load_completed(self, db: Session, project_id: UUID) -> list[CompletedDonation]:
        """Return completed donations for a project."""
        pass


class AlumniDonationSource(DonationSource):
    """Primary source: alumni_donations (status column is authoritative)."""

    name = "alumni_donations"

    def load_completed(self, db: Session, project_id: UUID) -> list[CompletedDonation]:
        rows = db.execute(
            select(AlumniDonation.id, AlumniDonation.donor_id, AlumniDonation.amount).where(
                AlumniDonation.project_id == project_id,
                AlumniDonation.status.in_(DonationStatus.counted()),
            )
        ).all()
        return [
            CompletedDonation(
                amount=Decimal(amount),
                project_id=project_id,
                donor_id=donor_id,
                donor_key=f"alumni:{donor_id}",
                donation_key=f"{self.name}:{donation_id}",
                source=self.name,
            )
            for donation_id, donor_id, amount in rows
        ]


def is_legacy_completed(payment_status: str | None) -> bool:
    """Legacy rows carry free-text status; NULL means settled."""
    if payment_status is None:
        return True
    return payment_status.strip().lower() in LEGACY_COMPLETED_STATUSES


class DonationHistorySource(DonationSource):
    """Legacy source: donation_history (donor may be unregistered)."""

    name = "donation_history"

    def load_completed(self, db: Session, project_id: UUID) -> list[CompletedDonation]:
        rows = db.execute(
            select(
                DonationHistory.id,
                DonationHistory.donor_id,
                DonationHistory.donor_email,
                DonationHistory.amount,
                DonationHistory.payment_status,
            ).where(DonationHistory.project_id == project_id)
        ).all()

        donations = []
        for donation_id, donor_id, donor_email, amount, payment_status in rows:
            if not is_legacy_completed(payment_status):
                continue
            if donor_id is not None:
                donor_key = f"alumni:{donor_id}"
            elif donor_email:
                donor_key = f"email:{donor_email.strip().lower()}"
            else:
                donor_key = None
            donations.append(
                CompletedDonation(
                    amount=Decimal(amount),
                    project_id=project_id,
                    donor_id=donor_id,
                    donor_key=donor_key,
                    donation_key=f"{self.name}:{donation_id}",
                    source=self.name,
                )
            )
        return donations


DONATION_SOURCES: tuple[DonationSource, ...] = (
    AlumniDonationSource(),
    DonationHistorySource(),
)


def load_completed_donations(
    db: Session,
    project_id: UUID,
    sources: Sequence[DonationSource] | None = None,
) -> tuple[list[CompletedDonation], list[str]]:
    """
    Merge completed donations from every source.

    Returns (donations, missing_sources). A source that fails to load is
    reported in missing_sources instead of silently contributing zero.
    """
    donations: list[CompletedDonation] = []
    missing: list[str] = []
    for source in sources or DONATION_SOURCES:
        try:
            donations.extend(source.load_completed(db, project_id))
        except SQLAlchemyError:
            logger.exception(
                "Donation source %s unavailable",
                source.name,
                extra=build_log_context(project_id=project_id),
            )
            missing.append(source.name)
    return donations, missing


# =============================================================================
# Aggregation
# =============================================================================


@dataclass(frozen=True)
class FundingTotals:
    """Aggregate funding figures for one project."""

    project_id: UUID
    total_raised: Decimal
    backer_count: int
    donation_count: int
    mode: AggregationMode
    missing_sources: tuple[str, ...] = ()

    @property
    def degraded(self) -> bool:
        """True when at least one source was unavailable."""
        return bool(self.missing_sources)


def aggregate_donations(
    donations: Iterable[CompletedDonation], mode: AggregationMode
) -> tuple[Decimal, int, int]:
    """Return (total, backer_count, donation_count) for the given mode."""
    total = ZERO
    donation_keys: set[str] = set()
    donor_keys: set[str] = set()
    for donation in donations:
        if donation.donation_key in donation_keys:
            continue
        donation_keys.add(donation.donation_key)
        total += donation.amount
        # Anonymous legacy rows have no identity; each counts as one backer
        donor_keys.add(donation.donor_key or donation.donation_key)

    if mode == AggregationMode.DONATIONS:
        backers = len(donation_keys)
    else:
        backers = len(donor_keys)
    return total, backers, len(donation_keys)


def _require_project(db: Session, project_id: UUID) -> Project:
    project = db.get(Project, project_id)
    if not project:
        raise ProjectNotFoundError(f"Project {project_id} not found")
    return project


def compute_funding_totals(
    db: Session,
    project_id: UUID,
    mode: AggregationMode = AggregationMode.BACKERS,
    sources: Sequence[DonationSource] | None = None,
) -> FundingTotals:
    """
    Sum completed donations for a project across both sources.

    BACKERS mode counts distinct donors; DONATIONS mode counts donation rows.
    Pure read: calling twice with no intervening writes gives the same result.
    """
    _require_project(db, project_id)
    donations, missing = load_completed_donations(db, project_id, sources)
    total, backers, count = aggregate_donations(donations, mode)
    return FundingTotals(
        project_id=project_id,
        total_raised=total,
        backer_count=backers,
        donation_count=count,
        mode=mode,
        missing_sources=tuple(missing),
    )


def funding_progress(total_raised: Decimal | None, target_amount: Decimal | None) -> int:
    """Percent of target raised, 0 when there is no target, capped at 100."""
    if not target_amount or target_amount <= 0:
        return 0
    percent = (Decimal(total_raised or 0) / Decimal(target_amount)) * 100
    return max(0, min(100, int(percent.quantize(Decimal("1"), rounding=ROUND_HALF_UP))))


def derive_status(status: str, target_amount: Decimal | None, total_raised: Decimal) -> str:
    """FUNDED iff a target is set and reached; other statuses pass through."""
    reached = target_amount is not None and total_raised >= target_amount
    if status == ProjectStatus.ACTIVE.value and reached:
        return ProjectStatus.FUNDED.value
    if status == ProjectStatus.FUNDED.value and not reached:
        return ProjectStatus.ACTIVE.value
    return status


def refresh_project_aggregates(
    db: Session,
    project_id: UUID,
    sources: Sequence[DonationSource] | None = None,
) -> FundingTotals:
    """
    Recompute and persist a project's cached aggregates.

    Always re-sums authoritative rows, so concurrent refreshes converge and
    the last writer wins. A degraded total is never written to the cache.
    Flushes; the caller commits.
    """
    totals = compute_funding_totals(db, project_id, AggregationMode.BACKERS, sources)
    if totals.degraded:
        raise FundingLedgerDegradedError(totals)

    project = _require_project(db, project_id)
    previous_status = project.status
    project.current_amount = totals.total_raised
    project.backers_count = totals.backer_count
    project.status = derive_status(project.status, project.target_amount, totals.total_raised)
    db.flush()

    if project.status != previous_status:
        logger.info(
            "Project status derived %s -> %s",
            previous_status,
            project.status,
            extra=build_log_context(project_id=project_id),
        )
    return totals


def on_donation_status_change(
    db: Session,
    project_id: UUID,
    previous_status: str | None,
    new_status: str,
) -> FundingTotals | None:
    """
    Recompute hook for donation status transitions.

    Refreshes only when the status enters or leaves the completed set.
    """
    if DonationStatus.is_counted(previous_status) == DonationStatus.is_counted(new_status):
        return None
    return refresh_project_aggregates(db, project_id)


def list_completed_donor_ids(db: Session, project_id: UUID) -> list[UUID]:
    """Distinct registered donors with a completed donation on the project."""
    donations, missing = load_completed_donations(db, project_id)
    if missing:
        logger.warning(
            "Donor list incomplete, missing sources: %s",
            ", ".join(missing),
            extra=build_log_context(project_id=project_id),
        )
    seen: dict[UUID, None] = {}
    for donation in donations:
        if donation.donor_id is not None:
            seen.setdefault(donation.donor_id, None)
    return list(seen)


# =============================================================================
# Headroom reservation
# =============================================================================


def remaining_headroom(project: Project) -> Decimal | None:
    """Amount still acceptable before the target is reached (None = no target)."""
    if project.target_amount is None:
        return None
    remaining = (
        Decimal(project.target_amount)
        - Decimal(project.current_amount or 0)
        - Decimal(project.reserved_amount or 0)
    )
    return max(remaining, ZERO)


def reserve_headroom(db: Session, project_id: UUID, amount: Decimal) -> None:
    """
    Atomically hold ``amount`` of the project's remaining headroom.

    One conditional UPDATE: the hold is taken only if the project is active
    and current + reserved + amount stays within the target. Concurrent
    submissions can therefore never jointly exceed the target.
    """
    stmt = (
        update(Project)
        .where(
            Project.id == project_id,
            Project.status == ProjectStatus.ACTIVE.value,
            or_(
                Project.target_amount.is_(None),
                Project.current_amount + Project.reserved_amount + amount
                <= Project.target_amount,
            ),
        )
        .values(reserved_amount=Project.reserved_amount + amount)
        .execution_options(synchronize_session="fetch")
    )
    result = db.execute(stmt)
    if result.rowcount:
        return

    project = _require_project(db, project_id)
    db.refresh(project)
    if project.status != ProjectStatus.ACTIVE.value:
        raise ProjectNotOpenError(project.status)
    raise InsufficientHeadroomError(remaining_headroom(project) or ZERO)


def release_headroom(db: Session, project_id: UUID, amount: Decimal) -> None:
    """Release a hold taken by :func:`reserve_headroom`."""
    stmt = (
        update(Project)
        .where(Project.id == project_id)
        .values(
            reserved_amount=case(
                (Project.reserved_amount >= amount, Project.reserved_amount - amount),
                else_=ZERO,
            )
        )
        .execution_options(synchronize_session="fetch")
    )
    db.execute(stmt)
