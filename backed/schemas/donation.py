"""Pydantic schemas for donations."""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, Field


class DonationCreate(BaseModel):
    """
    Donation submission.

    ``transaction_reference`` lets a client retry a submission without
    double charging; one is generated when omitted.
    """

    amount: Decimal
    is_anonymous: bool = False
    transaction_reference: str | None = Field(None, min_length=8, max_length=100)
    message: str | None = Field(None, max_length=500)


class DonationReceipt(BaseModel):
    """Confirmation returned after a successful donation."""

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

    model_config = {"from_attributes": True}


class DonationRead(BaseModel):
    """Donation history entry."""

    id: UUID
    project_id: UUID
    amount: Decimal
    currency: str
    status: str
    is_anonymous: bool
    receipt_number: str | None = None
    created_at: datetime

    model_config = {"from_attributes": True}
