"""Payment gateway reconciliation.

Merges at-least-once gateway callbacks into the PSID tracking ledger.
Every handler is an upsert keyed by the PSID reference, so replays and
concurrent deliveries of the same callback converge on one row.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from licensing_engine.errors import ValidationError
from licensing_engine.events import AsyncEventEmitter, EventMetadata, PaymentFailed
from licensing_engine.gateway.base import PaymentGatewayProvider
from licensing_engine.metrics import metrics
from licensing_engine.models.base import utcnow
from licensing_engine.services.payment_records import find_payment_record, upsert_payment_record
from licensing_engine.services.payment_status import PaymentStatusService, is_settled

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PaymentConfirmation:
    """Inbound "payment confirmed" callback."""

    reference: str
    external_transaction_id: str
    status: str
    amount: Decimal
    paid_at: datetime | None = None
    bank_code: str | None = None


@dataclass(frozen=True)
class PaymentFailure:
    """Inbound "payment failed" callback."""

    reference: str
    external_transaction_id: str
    reason: str | None = None


@dataclass
class ReconciliationOutcome:
    """Result of handling one gateway callback."""

    reference: str
    processed: bool = True
    created: bool = False
    applicant_updated: bool = False
    applicant_id: int | None = None
    status: str | None = None


class GatewayReconciler:
    """Applies gateway callbacks to the ledger.

    A confirmed payment linked to an applicant goes through
    PaymentStatusService.apply_confirmed_payment, the same routine the
    manual record-payment path uses.
    """

    def __init__(
        self,
        session: AsyncSession,
        payments: PaymentStatusService,
        provider: PaymentGatewayProvider | None = None,
        emitter: AsyncEventEmitter | None = None,
    ):
        self.session = session
        self.payments = payments
        self.provider = provider
        self.emitter = emitter

    async def payment_confirmed(self, event: PaymentConfirmation) -> ReconciliationOutcome:
        """Upsert a settled tracking row and apply the applicant effects.

        Effects run only when the row becomes settled. A replay against a
        settled row refreshes the gateway fields but keeps the credited
        amount, and a non-settled status never downgrades a settled row.
        """
        if not event.reference or not event.external_transaction_id or not event.status:
            raise ValidationError("Missing required webhook fields")
        if event.amount is None or Decimal(str(event.amount)) <= 0:
            raise ValidationError("Payment amount must be greater than zero")

        normalized = event.status.upper()
        payment_status = "PAID" if normalized == "CONFIRMED" else normalized

        existing = await find_payment_record(self.session, event.reference)
        was_settled = existing is not None and is_settled(existing.payment_status)
        if was_settled and not is_settled(payment_status):
            logger.warning(
                "Ignoring %s confirmation for settled reference %s",
                payment_status,
                event.reference,
            )
            metrics.increment("webhook_callbacks_total", kind="confirmed", created="false")
            return ReconciliationOutcome(
                reference=event.reference,
                applicant_id=existing.applicant_id,
                status=existing.payment_status,
            )

        values = {
            "external_transaction_id": event.external_transaction_id,
            "payment_status": payment_status,
            "status": "PAID" if is_settled(payment_status) else "Pending",
            "amount_paid": Decimal(str(event.amount)),
            "paid_at": event.paid_at or utcnow(),
            "message": "Payment confirmed via gateway callback",
        }
        if event.bank_code:
            values["bank_code"] = event.bank_code
        if was_settled:
            del values["amount_paid"], values["paid_at"]

        upsert = await upsert_payment_record(self.session, event.reference, values)
        record = upsert.record
        metrics.increment("webhook_callbacks_total", kind="confirmed", created=str(upsert.created).lower())
        logger.info(
            "Gateway confirmed %s (txn %s, %s)",
            event.reference,
            event.external_transaction_id,
            "new" if upsert.created else "replay" if was_settled else "update",
        )

        outcome = ReconciliationOutcome(
            reference=event.reference,
            created=upsert.created,
            applicant_id=record.applicant_id,
            status=record.payment_status,
        )
        if was_settled:
            return outcome
        if record.applicant_id is not None and is_settled(record.payment_status):
            await self.payments.apply_confirmed_payment(
                record.applicant_id,
                reference=event.reference,
                amount=record.amount_paid,
                source="gateway",
            )
            outcome.applicant_updated = True
        return outcome

    async def payment_failed(self, event: PaymentFailure) -> ReconciliationOutcome:
        """Mark the tracking row FAILED. The applicant is never touched.

        A row that is already settled keeps its settled status so paid
        totals never go down; the late failure is only logged.
        """
        if not event.reference or not event.external_transaction_id:
            raise ValidationError("Missing required webhook fields")

        message = f"Payment failed: {event.reason or 'Unknown reason'}"
        existing = await find_payment_record(self.session, event.reference)
        if existing is not None and is_settled(existing.payment_status):
            logger.warning(
                "Ignoring failure callback for settled reference %s: %s",
                event.reference,
                message,
            )
            metrics.increment("webhook_callbacks_total", kind="failed", created="false")
            return ReconciliationOutcome(
                reference=event.reference,
                applicant_id=existing.applicant_id,
                status=existing.payment_status,
            )

        upsert = await upsert_payment_record(
            self.session,
            event.reference,
            {
                "external_transaction_id": event.external_transaction_id,
                "payment_status": "FAILED",
                "status": "FAILED",
                "message": message,
            },
        )
        metrics.increment("webhook_callbacks_total", kind="failed", created=str(upsert.created).lower())
        logger.info("Gateway reported failure for %s: %s", event.reference, message)

        if self.emitter is not None:
            await self.emitter.emit(
                PaymentFailed(
                    metadata=EventMetadata.create(actor_type="webhook"),
                    applicant_id=upsert.record.applicant_id,
                    reference=event.reference,
                    reason=event.reason or "Unknown reason",
                )
            )
        return ReconciliationOutcome(
            reference=event.reference,
            created=upsert.created,
            applicant_id=upsert.record.applicant_id,
            status="FAILED",
        )

    async def poll_gateway(self, reference: str) -> ReconciliationOutcome:
        """Pull the gateway's current answer for a PSID and reconcile it.

        Pending answers leave the ledger untouched.
        """
        if self.provider is None:
            raise ValidationError("No payment gateway provider configured")
        answer = await self.provider.fetch_status(reference)
        logger.info(
            "Gateway %s reports %s for %s", self.provider.provider_name, answer.status, reference
        )

        if answer.is_confirmed:
            return await self.payment_confirmed(
                PaymentConfirmation(
                    reference=reference,
                    external_transaction_id=answer.transaction_id or reference,
                    status=answer.status,
                    amount=answer.amount,
                    paid_at=answer.paid_at,
                    bank_code=answer.bank_code,
                )
            )
        if answer.is_failed:
            return await self.payment_failed(
                PaymentFailure(
                    reference=reference,
                    external_transaction_id=answer.transaction_id or reference,
                    reason=answer.message or None,
                )
            )
        return ReconciliationOutcome(reference=reference, processed=False, status=answer.status)
