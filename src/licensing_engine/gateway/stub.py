"""In-memory gateway provider for local development and testing."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from licensing_engine.gateway.base import GatewayStatus


class StubGatewayProvider:
    """Gateway stub answering from a dict of preset statuses.

    Unknown references report PENDING.
    """

    provider_name = "stub"

    def __init__(self) -> None:
        self._statuses: dict[str, GatewayStatus] = {}
        self.requests: list[str] = []

    def confirm(
        self,
        reference: str,
        amount: Decimal | int | str,
        transaction_id: str | None = None,
        paid_at: datetime | None = None,
    ) -> None:
        """Make the gateway report `reference` as paid."""
        self._statuses[reference] = GatewayStatus(
            reference=reference,
            status="CONFIRMED",
            transaction_id=transaction_id or f"TXN-{reference}",
            amount=Decimal(str(amount)),
            paid_at=paid_at,
        )

    def fail(self, reference: str, reason: str = "Declined") -> None:
        """Make the gateway report `reference` as failed."""
        self._statuses[reference] = GatewayStatus(
            reference=reference,
            status="FAILED",
            transaction_id=f"TXN-{reference}",
            message=reason,
        )

    async def fetch_status(self, reference: str) -> GatewayStatus:
        self.requests.append(reference)
        return self._statuses.get(
            reference, GatewayStatus(reference=reference, status="PENDING")
        )
