"""Tests for the simulated payment gateway."""

import uuid
from decimal import Decimal

import pytest

from backed.services.payment_gateway import ChargeRequest, SimulatedPaymentGateway


def _request(reference: str = "REF_1") -> ChargeRequest:
    return ChargeRequest(
        reference=reference,
        amount=Decimal("10.00"),
        currency="GHS",
        donor_id=uuid.uuid4(),
        project_id=uuid.uuid4(),
    )


@pytest.mark.asyncio
async def test_charge_is_idempotent_by_reference():
    gateway = SimulatedPaymentGateway()

    first = await gateway.charge(_request())
    second = await gateway.charge(_request())

    assert first.success
    assert first == second
    assert gateway.charge_count == 1


@pytest.mark.asyncio
async def test_declining_gateway():
    gateway = SimulatedPaymentGateway(decline_reason="insufficient funds")

    result = await gateway.charge(_request())

    assert not result.success
    assert result.failure_reason == "insufficient funds"
    assert result.provider == "paystack"


@pytest.mark.asyncio
async def test_fetch_charge():
    gateway = SimulatedPaymentGateway()
    await gateway.charge(_request("REF_2"))

    assert (await gateway.fetch_charge("REF_2")).success
    assert await gateway.fetch_charge("UNKNOWN") is None
