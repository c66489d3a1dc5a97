"""Base protocol and types for payment gateway providers.

The reconciler talks to the gateway only through PaymentGatewayProvider,
so tests and local development can inject a fake.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Protocol, runtime_checkable


@dataclass(frozen=True)
class GatewayStatus:
    """Gateway's view of one PSID."""

    reference: str
    status: str  # CONFIRMED/PAID/PENDING/FAILED as reported by the gateway
    transaction_id: str | None = None
    amount: Decimal | None = None
    paid_at: datetime | None = None
    bank_code: str | None = None
    message: str = ""

    @property
    def is_confirmed(self) -> bool:
        return self.status.upper() in {"CONFIRMED", "PAID", "SUCCESS", "COMPLETED"}

    @property
    def is_failed(self) -> bool:
        return self.status.upper() in {"FAILED", "REJECTED", "EXPIRED"}


@runtime_checkable
class PaymentGatewayProvider(Protocol):
    """Adapter for an external PSID payment gateway."""

    provider_name: str

    async def fetch_status(self, reference: str) -> GatewayStatus:
        """Ask the gateway for the current status of a PSID."""
        ...
