"""Tests for donation submission: validation, headroom, gateway and recording."""

import asyncio
import uuid
from decimal import Decimal

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from backed.db.enums import DonationStatus, NotificationType, ProjectStatus
from backed.db.models import AlumniDonation, DonationReconciliation, Notification
from backed.services import donation_service
from backed.services.donation_service import (
    DonationRecordingError,
    DonationServiceError,
    DonationValidationError,
    ExceedsRemainingTargetError,
    PaymentFailedError,
    ProjectNotAcceptingDonationsError,
    ProjectNotFoundError,
    resolve_reconciliation,
    submit_donation,
    validate_amount,
)
from backed.services.funding_ledger_service import refresh_project_aggregates
from backed.services.payment_gateway import (
    ChargeResult,
    PaymentGateway,
    PaymentGatewayTimeout,
    SimulatedPaymentGateway,
)


class TimeoutGateway(PaymentGateway):
    """Never answers; optionally reports a prior charge on lookup."""

    provider_name = "paystack"

    def __init__(self, prior: ChargeResult | None = None):
        self.prior = prior
        self.calls = 0

    async def charge(self, request):
        self.calls += 1
        raise PaymentGatewayTimeout("no response")

    async def fetch_charge(self, reference):
        return self.prior


def _donations(db, project):
    return list(
        db.execute(select(AlumniDonation).where(AlumniDonation.project_id == project.id)).scalars()
    )


# =============================================================================
# Validation
# =============================================================================


@pytest.mark.parametrize("amount", [0, "0", -5, "abc", "NaN", "Infinity", "12.345", True, None])
def test_validate_amount_rejects(amount):
    with pytest.raises(DonationValidationError):
        validate_amount(amount)


def test_validate_amount_normalizes_to_cents():
    assert validate_amount("25") == Decimal("25.00")
    assert validate_amount("10.5") == Decimal("10.50")
    assert validate_amount("7.100") == Decimal("7.10")


@pytest.mark.asyncio
async def test_zero_amount_never_reaches_gateway(db, school, donor, make_project, gateway):
    project = make_project(school)

    with pytest.raises(DonationValidationError):
        await submit_donation(db, donor_id=donor.id, project_id=project.id, amount=0, gateway=gateway)

    assert gateway.charge_count == 0
    assert _donations(db, project) == []


@pytest.mark.asyncio
async def test_unknown_project(db, donor, gateway):
    with pytest.raises(ProjectNotFoundError):
        await submit_donation(db, donor_id=donor.id, project_id=uuid.uuid4(), amount=10, gateway=gateway)
    assert gateway.charge_count == 0


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [ProjectStatus.DRAFT, ProjectStatus.CLOSED, ProjectStatus.FUNDED])
async def test_inactive_project_rejects_donations(db, school, donor, make_project, gateway, status):
    project = make_project(school, status=status.value)

    with pytest.raises(ProjectNotAcceptingDonationsError):
        await submit_donation(db, donor_id=donor.id, project_id=project.id, amount=10, gateway=gateway)
    assert gateway.charge_count == 0


# =============================================================================
# Headroom
# =============================================================================


@pytest.mark.asyncio
async def test_donation_capped_at_remaining_target(
    db, school, donor, make_donor, make_project, add_donation, gateway
):
    project = make_project(school, target_amount="1000")
    add_donation(make_donor(school=school), project, "800")

    with pytest.raises(ExceedsRemainingTargetError) as exc_info:
        await submit_donation(db, donor_id=donor.id, project_id=project.id, amount=300, gateway=gateway)
    assert exc_info.value.max_amount == Decimal("200")
    assert gateway.charge_count == 0

    result = await submit_donation(
        db, donor_id=donor.id, project_id=project.id, amount=200, gateway=gateway
    )

    assert result.status == DonationStatus.COMPLETED_DEMO.value
    assert result.project_current_amount == Decimal("1000")
    assert result.project_status == ProjectStatus.FUNDED.value
    assert result.project_progress == 100
    assert result.project_backers_count == 2
    db.refresh(project)
    assert project.reserved_amount == Decimal("0")


@pytest.mark.asyncio
async def test_concurrent_submissions_never_exceed_target(db, school, make_donor, make_project):
    project = make_project(school, target_amount="1000")
    slow_gateway = SimulatedPaymentGateway(delay_seconds=0.01)
    a = make_donor(school=school)
    b = make_donor(school=school)

    results = await asyncio.gather(
        submit_donation(db, donor_id=a.id, project_id=project.id, amount=600, gateway=slow_gateway),
        submit_donation(db, donor_id=b.id, project_id=project.id, amount=600, gateway=slow_gateway),
        return_exceptions=True,
    )

    succeeded = [r for r in results if isinstance(r, donation_service.DonationResult)]
    rejected = [r for r in results if isinstance(r, ExceedsRemainingTargetError)]
    assert len(succeeded) == 1
    assert len(rejected) == 1
    assert rejected[0].max_amount == Decimal("400")
    assert slow_gateway.charge_count == 1

    db.refresh(project)
    assert project.current_amount == Decimal("600")
    assert project.reserved_amount == Decimal("0")


@pytest.mark.asyncio
async def test_project_without_target_accepts_any_amount(db, school, donor, make_project, gateway):
    project = make_project(school, target_amount=None)

    result = await submit_donation(
        db, donor_id=donor.id, project_id=project.id, amount="5000.50", gateway=gateway
    )

    assert result.project_current_amount == Decimal("5000.50")
    assert result.project_status == ProjectStatus.ACTIVE.value
    assert result.project_progress == 0


# =============================================================================
# Idempotency
# =============================================================================


@pytest.mark.asyncio
async def test_retried_reference_returns_prior_result(db, school, donor, make_project, gateway):
    project = make_project(school)
    reference = "BACKED_TEST_REF_001"

    first = await submit_donation(
        db, donor_id=donor.id, project_id=project.id, amount=100,
        gateway=gateway, transaction_reference=reference,
    )
    second = await submit_donation(
        db, donor_id=donor.id, project_id=project.id, amount=100,
        gateway=gateway, transaction_reference=reference,
    )

    assert second.replayed
    assert second.donation_id == first.donation_id
    assert gateway.charge_count == 1
    assert len(_donations(db, project)) == 1
    assert second.project_current_amount == Decimal("100")


@pytest.mark.asyncio
async def test_reference_reused_by_another_donor_is_rejected(
    db, school, donor, make_donor, make_project, gateway
):
    project = make_project(school)
    reference = "BACKED_TEST_REF_002"
    await submit_donation(
        db, donor_id=donor.id, project_id=project.id, amount=10,
        gateway=gateway, transaction_reference=reference,
    )

    with pytest.raises(DonationValidationError):
        await submit_donation(
            db, donor_id=make_donor().id, project_id=project.id, amount=10,
            gateway=gateway, transaction_reference=reference,
        )


# =============================================================================
# Gateway failures
# =============================================================================


@pytest.mark.asyncio
async def test_declined_charge_records_failed_attempt(db, school, donor, make_project):
    project = make_project(school)
    declining = SimulatedPaymentGateway(decline_reason="card declined")

    with pytest.raises(PaymentFailedError) as exc_info:
        await submit_donation(db, donor_id=donor.id, project_id=project.id, amount=50, gateway=declining)

    assert "No charge was made" in str(exc_info.value)
    rows = _donations(db, project)
    assert [r.status for r in rows] == [DonationStatus.FAILED.value]
    db.refresh(project)
    assert project.current_amount == Decimal("0")
    assert project.reserved_amount == Decimal("0")


@pytest.mark.asyncio
async def test_decline_still_reported_when_hold_cannot_be_released(
    db, school, donor, make_project, monkeypatch, caplog
):
    project = make_project(school)
    declining = SimulatedPaymentGateway(decline_reason="card declined")

    def fail_release(*args, **kwargs):
        raise OperationalError("UPDATE", {}, Exception("database is locked"))

    monkeypatch.setattr(donation_service, "release_headroom", fail_release)

    with pytest.raises(PaymentFailedError) as exc_info:
        await submit_donation(db, donor_id=donor.id, project_id=project.id, amount=50, gateway=declining)

    assert "No charge was made" in str(exc_info.value)
    errors = [r for r in caplog.records if r.levelname == "ERROR"]
    assert len(errors) == 1
    assert errors[0].payment_reference == exc_info.value.reference
    db.refresh(project)
    assert project.current_amount == Decimal("0")


@pytest.mark.asyncio
async def test_timeout_with_no_charge_on_record_is_a_failure(db, school, donor, make_project):
    project = make_project(school)
    timeout_gateway = TimeoutGateway()

    with pytest.raises(PaymentFailedError):
        await submit_donation(db, donor_id=donor.id, project_id=project.id, amount=50, gateway=timeout_gateway)

    assert timeout_gateway.calls == 3
    db.refresh(project)
    assert project.reserved_amount == Decimal("0")


@pytest.mark.asyncio
async def test_timeout_with_charge_on_record_is_recorded(db, school, donor, make_project):
    project = make_project(school)
    reference = "BACKED_TEST_REF_003"
    timeout_gateway = TimeoutGateway(
        prior=ChargeResult(reference=reference, success=True, provider="paystack")
    )

    result = await submit_donation(
        db, donor_id=donor.id, project_id=project.id, amount=50,
        gateway=timeout_gateway, transaction_reference=reference,
    )

    assert result.payment_reference == reference
    assert result.project_current_amount == Decimal("50")


@pytest.mark.asyncio
async def test_write_failure_after_charge_is_escalated(db, school, donor, make_project, gateway, monkeypatch):
    project = make_project(school)

    def fail_insert(*args, **kwargs):
        raise OperationalError("INSERT", {}, Exception("disk I/O error"))

    monkeypatch.setattr(donation_service, "_insert_completed_donation", fail_insert)

    with pytest.raises(DonationRecordingError) as exc_info:
        await submit_donation(db, donor_id=donor.id, project_id=project.id, amount=75, gateway=gateway)

    error = exc_info.value
    assert error.reconciliation_id is not None
    assert error.reference in str(error)
    record = db.get(DonationReconciliation, error.reconciliation_id)
    assert record.payment_reference == error.reference
    assert record.amount == Decimal("75")
    assert not record.resolved
    # The hold stays until the charge is reconciled
    db.refresh(project)
    assert project.reserved_amount == Decimal("75")


async def _escalated_donation(db, monkeypatch, donor, project, gateway, amount):
    """Submit a donation whose write fails after the charge; return the escalation."""

    def fail_insert(*args, **kwargs):
        raise OperationalError("INSERT", {}, Exception("disk I/O error"))

    monkeypatch.setattr(donation_service, "_insert_completed_donation", fail_insert)
    with pytest.raises(DonationRecordingError) as exc_info:
        await submit_donation(db, donor_id=donor.id, project_id=project.id, amount=amount, gateway=gateway)
    monkeypatch.undo()
    return exc_info.value


@pytest.mark.asyncio
async def test_resolving_charged_reconciliation_records_the_donation(
    db, school, donor, make_project, gateway, monkeypatch
):
    project = make_project(school, target_amount="100")
    error = await _escalated_donation(db, monkeypatch, donor, project, gateway, 75)

    donation = resolve_reconciliation(db, error.reconciliation_id, charged=True)

    assert donation.payment_reference == error.reference
    assert DonationStatus.is_counted(donation.status)
    assert db.get(DonationReconciliation, error.reconciliation_id).resolved
    db.refresh(project)
    assert project.reserved_amount == Decimal("0")
    assert project.current_amount == Decimal("75")

    # The remaining headroom is the real one again
    with pytest.raises(ExceedsRemainingTargetError) as exc_info:
        await submit_donation(db, donor_id=donor.id, project_id=project.id, amount=50, gateway=gateway)
    assert exc_info.value.max_amount == Decimal("25")
    result = await submit_donation(db, donor_id=donor.id, project_id=project.id, amount=25, gateway=gateway)
    assert result.project_status == ProjectStatus.FUNDED.value


@pytest.mark.asyncio
async def test_resolving_uncharged_reconciliation_frees_headroom(
    db, school, donor, make_project, gateway, monkeypatch
):
    project = make_project(school, target_amount="100")
    error = await _escalated_donation(db, monkeypatch, donor, project, gateway, 75)

    assert resolve_reconciliation(db, error.reconciliation_id, charged=False) is None

    assert _donations(db, project) == []
    db.refresh(project)
    assert project.reserved_amount == Decimal("0")
    assert project.current_amount == Decimal("0")
    result = await submit_donation(db, donor_id=donor.id, project_id=project.id, amount=100, gateway=gateway)
    assert result.project_current_amount == Decimal("100")


@pytest.mark.asyncio
async def test_reconciliation_can_only_be_resolved_once(
    db, school, donor, make_project, gateway, monkeypatch
):
    project = make_project(school, target_amount="100")
    error = await _escalated_donation(db, monkeypatch, donor, project, gateway, 40)
    resolve_reconciliation(db, error.reconciliation_id, charged=False)

    with pytest.raises(DonationServiceError, match="already resolved"):
        resolve_reconciliation(db, error.reconciliation_id, charged=True)

    db.refresh(project)
    assert project.reserved_amount == Decimal("0")


def test_resolve_unknown_reconciliation(db):
    with pytest.raises(DonationServiceError, match="not found"):
        resolve_reconciliation(db, uuid.uuid4(), charged=False)


# =============================================================================
# Receipts, history and corrections
# =============================================================================


@pytest.mark.asyncio
async def test_successful_donation_sends_receipt(db, school, donor, make_project, gateway):
    project = make_project(school)

    result = await submit_donation(db, donor_id=donor.id, project_id=project.id, amount=25, gateway=gateway)

    assert result.receipt_number.startswith("RCP-")
    notifications = list(db.execute(select(Notification)).scalars())
    assert len(notifications) == 1
    assert notifications[0].recipient_id == donor.id
    assert notifications[0].type == NotificationType.DONATION_RECEIPT.value
    assert notifications[0].meta["receipt_number"] == result.receipt_number


def test_correct_donation_status_rederives_aggregates(db, school, donor, make_project, add_donation):
    project = make_project(school, target_amount="100")
    donation = add_donation(donor, project, "100")

    refresh_project_aggregates(db, project.id)
    db.commit()
    assert project.status == ProjectStatus.FUNDED.value

    corrected = donation_service.correct_donation_status(db, donation.id, DonationStatus.FAILED)

    assert corrected.status == DonationStatus.FAILED.value
    db.refresh(project)
    assert project.current_amount == Decimal("0")
    assert project.status == ProjectStatus.ACTIVE.value


def test_correct_unknown_donation(db):
    with pytest.raises(donation_service.DonationServiceError):
        donation_service.correct_donation_status(db, uuid.uuid4(), DonationStatus.FAILED)


def test_list_donor_donations_only_returns_own(db, school, donor, make_donor, make_project, add_donation):
    project = make_project(school)
    add_donation(donor, project, "10")
    add_donation(donor, project, "20")
    add_donation(make_donor(), project, "30")

    history = donation_service.list_donor_donations(db, donor.id)

    assert sorted(d.amount for d in history) == [Decimal("10"), Decimal("20")]
