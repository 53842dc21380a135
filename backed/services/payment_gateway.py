"""Payment gateway abstraction.

Charges are keyed by a caller-generated transaction reference and must be
idempotent by that reference: charging the same reference twice returns the
original outcome without moving money again.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

logger = logging.getLogger(__name__)


class PaymentGatewayError(Exception):
    """Gateway could not be reached or returned an unusable response."""

    pass


class PaymentGatewayTimeout(PaymentGatewayError):
    """Gateway did not answer in time; the charge outcome is unknown."""

    pass


@dataclass(frozen=True)
class ChargeRequest:
    reference: str
    amount: Decimal
    currency: str
    donor_id: UUID
    project_id: UUID


@dataclass(frozen=True)
class ChargeResult:
    reference: str
    success: bool
    provider: str
    failure_reason: str | None = None


class PaymentGateway(ABC):
    """Contract consumed by the donation processor."""

    provider_name: str = "unknown"

    @abstractmethod
    async def charge(self, request: ChargeRequest) -> ChargeResult:
        """Charge once per reference."""
        pass

    @abstractmethod
    async def fetch_charge(self, reference: str) -> ChargeResult | None:
        """Look up a previous charge by reference (None if never seen)."""
        pass


class SimulatedPaymentGateway(PaymentGateway):
    """
    Demo-mode gateway: waits, then approves.

    Keeps an in-memory record per reference so retried charges are
    idempotent. ``decline_reason`` makes every new charge fail, for demos of
    the failure path.
    """

    def __init__(
        self,
        provider_name: str = "paystack",
        delay_seconds: float = 0.0,
        decline_reason: str | None = None,
    ):
        self.provider_name = provider_name
        self.delay_seconds = delay_seconds
        self.decline_reason = decline_reason
        self._charges: dict[str, ChargeResult] = {}

    async def charge(self, request: ChargeRequest) -> ChargeResult:
        existing = self._charges.get(request.reference)
        if existing:
            logger.info("Replaying charge for reference %s", request.reference)
            return existing

        if self.delay_seconds:
            await asyncio.sleep(self.delay_seconds)

        if self.decline_reason:
            result = ChargeResult(
                reference=request.reference,
                success=False,
                provider=self.provider_name,
                failure_reason=self.decline_reason,
            )
        else:
            result = ChargeResult(
                reference=request.reference, success=True, provider=self.provider_name
            )
        self._charges[request.reference] = result
        return result

    async def fetch_charge(self, reference: str) -> ChargeResult | None:
        return self._charges.get(reference)

    @property
    def charge_count(self) -> int:
        return len(self._charges)
