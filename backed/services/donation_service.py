"""
Donation Service - validates, charges and records alumni donations.

Flow for one submission:
    validate amount → idempotency check → project must be active
    → refresh aggregates and atomically reserve headroom (commit)
    → charge gateway by transaction reference (timeouts retried, same reference)
    → record donation + release hold + ledger refresh (commit)

A charge that succeeds without a local record is escalated for manual
reconciliation and never silently dropped.
"""

import logging
import secrets
import time
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from backed.core.config import settings
from backed.core.retry import call_with_backoff
from backed.core.structured_logging import build_log_context
from backed.db.enums import DonationStatus, NotificationType, ProjectStatus
from backed.db.models import AlumniDonation, DonationReconciliation, Project
from backed.services import notification_service
from backed.services.funding_ledger_service import (
    FundingLedgerDegradedError,
    InsufficientHeadroomError,
    ProjectNotFoundError,
    ProjectNotOpenError,
    funding_progress,
    on_donation_status_change,
    release_headroom,
    refresh_project_aggregates,
    reserve_headroom,
)
from backed.services.payment_gateway import (
    ChargeRequest,
    ChargeResult,
    PaymentGateway,
    PaymentGatewayError,
    PaymentGatewayTimeout,
)

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")

__all__ = [
    "DonationServiceError",
    "DonationValidationError",
    "ProjectNotFoundError",
    "ProjectNotAcceptingDonationsError",
    "ExceedsRemainingTargetError",
    "PaymentFailedError",
    "DonationRecordingError",
    "DonationResult",
    "submit_donation",
    "correct_donation_status",
    "resolve_reconciliation",
    "list_donor_donations",
]


class DonationServiceError(Exception):
    """Base exception for donation service errors."""

    pass


class DonationValidationError(DonationServiceError):
    """Submission rejected before any gateway call."""

    pass


class ProjectNotAcceptingDonationsError(DonationServiceError):
    """Project is not active."""

    pass


class ExceedsRemainingTargetError(DonationServiceError):
    """Amount is larger than the project's remaining headroom."""

    def __init__(self, max_amount: Decimal):
        self.max_amount = max_amount
        super().__init__(f"Donation amount exceeds remaining target. Maximum: {max_amount}")


class PaymentFailedError(DonationServiceError):
    """Gateway declined or failed; the donor was not charged."""

    def __init__(self, reference: str, reason: str | None = None):
        self.reference = reference
        self.reason = reason
        message = "Payment could not be processed. No charge was made."
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)


class DonationRecordingError(DonationServiceError):
    """Money may have moved but no local donation exists. Escalated."""

    def __init__(self, reference: str, reconciliation_id: UUID | None):
        self.reference = reference
        self.reconciliation_id = reconciliation_id
        super().__init__(
            "Your payment reference "
            f"{reference} is being reconciled. Please check your donation history "
            "before trying again."
        )


@dataclass
class DonationResult:
    """Receipt-bearing confirmation, with the project's refreshed figures."""

    donation_id: UUID
    project_id: UUID
    amount: Decimal
    currency: str
    status: str
    is_anonymous: bool
    payment_reference: str
    receipt_number: str | None
    created_at: datetime
    project_status: str
    project_current_amount: Decimal
    project_backers_count: int
    project_progress: int
    replayed: bool = False


# =============================================================================
# Helpers
# =============================================================================


def validate_amount(amount: object) -> Decimal:
    """Parse a donation amount: positive, finite, at most two decimals."""
    if isinstance(amount, bool):
        raise DonationValidationError("Donation amount must be a positive number")
    try:
        value = Decimal(str(amount).strip())
    except (InvalidOperation, ValueError):
        raise DonationValidationError("Donation amount must be a positive number")
    if not value.is_finite() or value <= 0:
        raise DonationValidationError("Donation amount must be a positive number")
    if value.as_tuple().exponent < -2 and value != value.quantize(CENT):
        raise DonationValidationError("Donation amount can have at most two decimal places")
    if value > settings.MAX_DONATION_AMOUNT:
        raise DonationValidationError(
            f"Donation amount cannot exceed {settings.MAX_DONATION_AMOUNT}"
        )
    return value.quantize(CENT)


def generate_transaction_reference() -> str:
    """Unique per attempt; the gateway deduplicates on it."""
    prefix = "BACKED_DEMO" if settings.PAYMENTS_DEMO_MODE else "BACKED"
    return f"{prefix}_{int(time.time() * 1000)}_{secrets.token_hex(5)}"


def generate_receipt_number() -> str:
    return f"RCP-{str(int(time.time() * 1000))[-8:]}{secrets.randbelow(100):02d}"


def get_donation_by_reference(db: Session, reference: str) -> AlumniDonation | None:
    return db.execute(
        select(AlumniDonation).where(AlumniDonation.payment_reference == reference)
    ).scalar_one_or_none()


def _completed_status() -> str:
    if settings.PAYMENTS_DEMO_MODE:
        return DonationStatus.COMPLETED_DEMO.value
    return DonationStatus.COMPLETED.value


def _build_result(db: Session, donation: AlumniDonation, replayed: bool = False) -> DonationResult:
    project = db.get(Project, donation.project_id)
    db.refresh(project)
    return DonationResult(
        donation_id=donation.id,
        project_id=donation.project_id,
        amount=Decimal(donation.amount),
        currency=donation.currency,
        status=donation.status,
        is_anonymous=donation.is_anonymous,
        payment_reference=donation.payment_reference,
        receipt_number=donation.receipt_number,
        created_at=donation.created_at,
        project_status=project.status,
        project_current_amount=Decimal(project.current_amount),
        project_backers_count=project.backers_count,
        project_progress=funding_progress(project.current_amount, project.target_amount),
        replayed=replayed,
    )


def _replay_existing(
    db: Session, existing: AlumniDonation, donor_id: UUID, project_id: UUID
) -> DonationResult:
    if existing.donor_id != donor_id or existing.project_id != project_id:
        raise DonationValidationError("Transaction reference has already been used")
    if DonationStatus.is_counted(existing.status):
        logger.info(
            "Returning prior donation for retried reference",
            extra=build_log_context(
                donor_id=donor_id,
                project_id=project_id,
                payment_reference=existing.payment_reference,
            ),
        )
        return _build_result(db, existing, replayed=True)
    if existing.status == DonationStatus.FAILED.value:
        raise PaymentFailedError(existing.payment_reference, "previous attempt failed")
    raise DonationValidationError("This donation is still being processed")


async def _charge(gateway: PaymentGateway, request: ChargeRequest) -> ChargeResult:
    """
    Charge with timeout retries under the same reference.

    When retries run out the gateway is asked what happened to the
    reference; a reference it has never seen was not charged. Raises
    PaymentGatewayTimeout only when the outcome cannot be determined.
    """
    try:
        return await call_with_backoff(
            lambda: gateway.charge(request),
            max_retries=settings.PAYMENT_GATEWAY_MAX_RETRIES,
            base_delay=settings.PAYMENT_GATEWAY_RETRY_DELAY,
            should_retry=lambda exc: isinstance(exc, PaymentGatewayTimeout),
            label="Payment gateway charge",
        )
    except PaymentGatewayTimeout:
        try:
            prior = await gateway.fetch_charge(request.reference)
        except PaymentGatewayError as exc:
            raise PaymentGatewayTimeout("charge outcome unknown") from exc
        if prior is not None:
            return prior
        return ChargeResult(
            reference=request.reference,
            success=False,
            provider=gateway.provider_name,
            failure_reason="payment gateway timed out",
        )


def _record_failed_attempt(
    db: Session,
    *,
    donor_id: UUID,
    project_id: UUID,
    amount: Decimal,
    is_anonymous: bool,
    message: str | None,
    charge: ChargeResult,
) -> None:
    """Keep an audit row for the failed attempt and release the hold."""
    try:
        db.add(
            AlumniDonation(
                donor_id=donor_id,
                project_id=project_id,
                amount=amount,
                currency=settings.CURRENCY,
                status=DonationStatus.FAILED.value,
                is_anonymous=is_anonymous,
                message=message,
                payment_provider=charge.provider,
                payment_reference=charge.reference,
            )
        )
        release_headroom(db, project_id, amount)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        context = build_log_context(
            donor_id=donor_id, project_id=project_id, payment_reference=charge.reference
        )
        logger.warning("Could not record failed donation attempt", exc_info=True, extra=context)
        try:
            release_headroom(db, project_id, amount)
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.error(
                "Headroom hold of %s not released for declined payment",
                amount,
                exc_info=True,
                extra=context,
            )


def _escalate_for_reconciliation(
    db: Session,
    *,
    reference: str,
    donor_id: UUID,
    project_id: UUID,
    amount: Decimal,
    reason: str,
) -> UUID | None:
    """
    Record a charge with no local donation for manual follow-up.

    The project's headroom hold is left in place: the money is real until
    reconciliation says otherwise.
    """
    context = build_log_context(
        donor_id=donor_id, project_id=project_id, payment_reference=reference
    )
    logger.critical(
        "Charge of %s %s has no donation record; manual reconciliation required: %s",
        amount,
        settings.CURRENCY,
        reason,
        extra=context,
    )
    try:
        record = DonationReconciliation(
            payment_reference=reference,
            donor_id=donor_id,
            project_id=project_id,
            amount=amount,
            currency=settings.CURRENCY,
            reason=reason,
        )
        db.add(record)
        db.commit()
        return record.id
    except SQLAlchemyError:
        db.rollback()
        logger.critical("Could not persist reconciliation record", exc_info=True, extra=context)
        return None


def _insert_completed_donation(
    db: Session,
    *,
    donor_id: UUID,
    project_id: UUID,
    amount: Decimal,
    is_anonymous: bool,
    message: str | None,
    charge: ChargeResult,
) -> AlumniDonation:
    """Insert the donation, release its hold and refresh the ledger in one commit."""
    donation = AlumniDonation(
        donor_id=donor_id,
        project_id=project_id,
        amount=amount,
        currency=settings.CURRENCY,
        status=_completed_status(),
        is_anonymous=is_anonymous,
        message=message,
        payment_provider=charge.provider,
        payment_reference=charge.reference,
        receipt_number=generate_receipt_number(),
    )
    db.add(donation)
    db.flush()
    release_headroom(db, project_id, amount)
    try:
        on_donation_status_change(db, project_id, None, donation.status)
    except FundingLedgerDegradedError as exc:
        # The donation row is authoritative; the cache catches up on next refresh
        logger.warning(
            "Aggregate refresh deferred: %s",
            exc,
            extra=build_log_context(project_id=project_id),
        )
    db.commit()
    return donation


def _send_receipt_notification(db: Session, donation: AlumniDonation, project: Project) -> None:
    try:
        notification_service.create_notification(
            db,
            recipient_id=donation.donor_id,
            type=NotificationType.DONATION_RECEIPT,
            title=f"Receipt {donation.receipt_number}",
            message=(
                f"Thank you for donating {settings.CURRENCY_SYMBOL}{donation.amount} "
                f"to {project.title}."
            ),
            project_id=project.id,
            meta={
                "donation_id": str(donation.id),
                "receipt_number": donation.receipt_number,
            },
        )
    except SQLAlchemyError:
        db.rollback()
        logger.warning(
            "Receipt notification not created",
            exc_info=True,
            extra=build_log_context(donor_id=donation.donor_id, project_id=project.id),
        )


# =============================================================================
# Operations
# =============================================================================


async def submit_donation(
    db: Session,
    *,
    donor_id: UUID,
    project_id: UUID,
    amount: object,
    is_anonymous: bool = False,
    gateway: PaymentGateway,
    transaction_reference: str | None = None,
    message: str | None = None,
) -> DonationResult:
    """
    Validate, charge and record a donation.

    Raises:
        DonationValidationError: bad amount or reused reference (no charge)
        ProjectNotFoundError: project does not exist
        ProjectNotAcceptingDonationsError: project is not active
        ExceedsRemainingTargetError: amount above remaining headroom
        PaymentFailedError: gateway failure, donor not charged
        DonationRecordingError: charged but not recorded (escalated)
    """
    value = validate_amount(amount)
    reference = (transaction_reference or "").strip() or generate_transaction_reference()
    context = build_log_context(donor_id=donor_id, project_id=project_id, payment_reference=reference)

    existing = get_donation_by_reference(db, reference)
    if existing:
        return _replay_existing(db, existing, donor_id, project_id)

    project = db.get(Project, project_id)
    if not project:
        raise ProjectNotFoundError(f"Project {project_id} not found")
    if project.status != ProjectStatus.ACTIVE.value:
        raise ProjectNotAcceptingDonationsError(
            f"Project is {project.status}, not accepting donations"
        )

    # Re-validate at confirmation time against freshly summed donations
    try:
        refresh_project_aggregates(db, project_id)
    except FundingLedgerDegradedError as exc:
        logger.warning("Using cached aggregates for headroom check: %s", exc, extra=context)
    try:
        reserve_headroom(db, project_id, value)
    except InsufficientHeadroomError as exc:
        db.rollback()
        raise ExceedsRemainingTargetError(exc.remaining)
    except ProjectNotOpenError as exc:
        db.rollback()
        raise ProjectNotAcceptingDonationsError(str(exc))
    db.commit()

    request = ChargeRequest(
        reference=reference,
        amount=value,
        currency=settings.CURRENCY,
        donor_id=donor_id,
        project_id=project_id,
    )
    try:
        charge = await _charge(gateway, request)
    except PaymentGatewayTimeout:
        # Outcome unknown and the gateway cannot be queried
        reconciliation_id = _escalate_for_reconciliation(
            db,
            reference=reference,
            donor_id=donor_id,
            project_id=project_id,
            amount=value,
            reason="payment gateway outcome unknown",
        )
        raise DonationRecordingError(reference, reconciliation_id)
    except PaymentGatewayError as exc:
        charge = ChargeResult(
            reference=reference,
            success=False,
            provider=gateway.provider_name,
            failure_reason=str(exc) or "payment gateway error",
        )

    if not charge.success:
        logger.info("Payment declined: %s", charge.failure_reason, extra=context)
        _record_failed_attempt(
            db,
            donor_id=donor_id,
            project_id=project_id,
            amount=value,
            is_anonymous=is_anonymous,
            message=message,
            charge=charge,
        )
        raise PaymentFailedError(reference, charge.failure_reason)

    donation = None
    last_error: Exception | None = None
    for attempt in range(settings.DONATION_WRITE_RETRIES + 1):
        try:
            donation = _insert_completed_donation(
                db,
                donor_id=donor_id,
                project_id=project_id,
                amount=value,
                is_anonymous=is_anonymous,
                message=message,
                charge=charge,
            )
            break
        except IntegrityError as exc:
            db.rollback()
            last_error = exc
            # A concurrent retry of the same reference may have recorded it first
            existing = get_donation_by_reference(db, reference)
            if existing and DonationStatus.is_counted(existing.status):
                release_headroom(db, project_id, value)
                db.commit()
                return _build_result(db, existing, replayed=True)
            logger.warning(
                "Donation write failed (attempt %s)", attempt + 1, exc_info=True, extra=context
            )
        except SQLAlchemyError as exc:
            db.rollback()
            last_error = exc
            logger.warning(
                "Donation write failed (attempt %s)", attempt + 1, exc_info=True, extra=context
            )

    if donation is None:
        reconciliation_id = _escalate_for_reconciliation(
            db,
            reference=reference,
            donor_id=donor_id,
            project_id=project_id,
            amount=value,
            reason=f"donation write failed after successful charge: {last_error}",
        )
        raise DonationRecordingError(reference, reconciliation_id)

    logger.info("Donation recorded", extra=context)
    _send_receipt_notification(db, donation, project)
    return _build_result(db, donation)


def correct_donation_status(db: Session, donation_id: UUID, new_status: DonationStatus) -> AlumniDonation:
    """
    Apply a reconciliation status correction and re-derive project aggregates.

    Raises:
        DonationServiceError: donation not found
    """
    donation = db.get(AlumniDonation, donation_id)
    if not donation:
        raise DonationServiceError(f"Donation {donation_id} not found")
    previous = donation.status
    donation.status = new_status.value
    db.flush()
    on_donation_status_change(db, donation.project_id, previous, donation.status)
    db.commit()
    db.refresh(donation)
    return donation


def resolve_reconciliation(
    db: Session,
    reconciliation_id: UUID,
    *,
    charged: bool,
) -> AlumniDonation | None:
    """
    Close a reconciliation record and give back its headroom hold.

    When the gateway confirms the money moved, the completed donation is
    recorded under the original payment reference in the same commit, so the
    hold turns into raised funds instead of disappearing.

    Raises:
        DonationServiceError: record not found or already resolved
    """
    record = db.get(DonationReconciliation, reconciliation_id)
    if not record:
        raise DonationServiceError(f"Reconciliation {reconciliation_id} not found")
    if record.resolved:
        raise DonationServiceError(f"Reconciliation {reconciliation_id} is already resolved")

    release_headroom(db, record.project_id, record.amount)

    donation = None
    if charged:
        donation = get_donation_by_reference(db, record.payment_reference)
        previous = None
        if donation is None:
            donation = AlumniDonation(
                donor_id=record.donor_id,
                project_id=record.project_id,
                amount=record.amount,
                currency=record.currency,
                status=_completed_status(),
                payment_reference=record.payment_reference,
                receipt_number=generate_receipt_number(),
            )
            db.add(donation)
        else:
            previous = donation.status
            if not DonationStatus.is_counted(previous):
                donation.status = _completed_status()
        db.flush()
        try:
            on_donation_status_change(db, record.project_id, previous, donation.status)
        except FundingLedgerDegradedError as exc:
            logger.warning(
                "Aggregate refresh deferred: %s",
                exc,
                extra=build_log_context(project_id=record.project_id),
            )

    record.resolved = True
    db.commit()
    logger.info(
        "Reconciliation resolved (charged=%s)",
        charged,
        extra=build_log_context(
            donor_id=record.donor_id,
            project_id=record.project_id,
            payment_reference=record.payment_reference,
        ),
    )
    return donation


def list_donor_donations(
    db: Session,
    donor_id: UUID,
    limit: int = 50,
    offset: int = 0,
) -> list[AlumniDonation]:
    """A donor's donation history, newest first."""
    return list(
        db.execute(
            select(AlumniDonation)
            .where(AlumniDonation.donor_id == donor_id)
            .order_by(AlumniDonation.created_at.desc())
            .offset(offset)
            .limit(limit)
        ).scalars()
    )
