"""Tests for GatewayReconciler - payment gateway callbacks.

Tests verify:
1. Callbacks are upserts keyed by PSID, so replays converge on one row
   and run the applicant effects only once
2. Confirmations go through the same applicant effects as manual payments
3. Failures never touch the applicant or downgrade a settled row
"""

from datetime import datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from licensing_engine.errors import ValidationError
from licensing_engine.events import PaymentFailed, PaymentRecorded
from licensing_engine.gateway import StubGatewayProvider
from licensing_engine.models import PaymentRecord
from licensing_engine.services import (
    GatewayReconciler,
    PaymentConfirmation,
    PaymentFailure,
    PaymentStatusService,
)
from licensing_engine.services.payment_records import find_payment_record
from tests.conftest import add_fee, add_payment, make_applicant


def confirmation(reference="PSID-100", amount="5000", txn="TXN-1", status="CONFIRMED", **kwargs):
    return PaymentConfirmation(
        reference=reference,
        external_transaction_id=txn,
        status=status,
        amount=Decimal(amount),
        **kwargs,
    )


async def _rows(session) -> int:
    return await session.scalar(select(func.count()).select_from(PaymentRecord))


async def _invoice(session, applicant_id, reference="PSID-100", amount=5000):
    """Unpaid tracking row created when the PSID was issued."""
    return await add_payment(session, applicant_id, reference, amount, payment_status="UNPAID")


class TestPaymentConfirmed:
    """Test confirmation callbacks."""

    async def test_confirmation_settles_and_moves_applicant(self, session, services):
        applicant = await make_applicant(session, assigned_group="DG")
        await add_fee(session, applicant.id, 5000)
        await _invoice(session, applicant.id)
        paid_at = datetime(2025, 2, 1, 9, 30, tzinfo=timezone.utc)

        outcome = await services.reconciler.payment_confirmed(
            confirmation(paid_at=paid_at, bank_code="HBL")
        )

        assert outcome.processed is True
        assert outcome.created is False
        assert outcome.applicant_updated is True
        assert outcome.applicant_id == applicant.id

        record = await find_payment_record(session, "PSID-100")
        assert record.payment_status == "PAID"
        assert record.status == "PAID"
        assert record.external_transaction_id == "TXN-1"
        assert record.bank_code == "HBL"
        assert record.message == "Payment confirmed via gateway callback"

        refreshed = await services.workflow.writer.load(applicant.id)
        assert refreshed.assigned_group == "Download License"
        assert refreshed.application_status == "Submitted"

    async def test_partial_confirmation_keeps_applicant(self, session, services):
        applicant = await make_applicant(session, assigned_group="DG")
        await add_fee(session, applicant.id, 5000)
        await _invoice(session, applicant.id, amount=2000)

        outcome = await services.reconciler.payment_confirmed(confirmation(amount="2000"))

        assert outcome.applicant_updated is True
        refreshed = await services.workflow.writer.load(applicant.id)
        assert refreshed.assigned_group == "DG"
        status = await services.payments.get_payment_status(applicant.id)
        assert status.status == "PARTIAL"

    async def test_replay_keeps_one_row_with_latest_values(self, session, services):
        applicant = await make_applicant(session)
        await add_fee(session, applicant.id, 5000)
        await _invoice(session, applicant.id)

        await services.reconciler.payment_confirmed(confirmation(txn="TXN-1"))
        await services.reconciler.payment_confirmed(confirmation(txn="TXN-1"))
        await services.reconciler.payment_confirmed(confirmation(txn="TXN-2", bank_code="MCB"))

        assert await _rows(session) == 1
        record = await find_payment_record(session, "PSID-100")
        assert record.external_transaction_id == "TXN-2"
        assert record.bank_code == "MCB"
        status = await services.payments.get_payment_status(applicant.id)
        assert status.total_paid == Decimal("5000")

    async def test_unknown_reference_creates_unlinked_row(self, session, services):
        outcome = await services.reconciler.payment_confirmed(confirmation(reference="PSID-NEW"))

        assert outcome.created is True
        assert outcome.applicant_id is None
        assert outcome.applicant_updated is False
        record = await find_payment_record(session, "PSID-NEW")
        assert record.payment_status == "PAID"
        assert record.paid_at is not None

    async def test_non_settled_status_is_stored_as_reported(self, session, services):
        applicant = await make_applicant(session)
        await _invoice(session, applicant.id)

        outcome = await services.reconciler.payment_confirmed(confirmation(status="processing"))

        assert outcome.status == "PROCESSING"
        assert outcome.applicant_updated is False

    @pytest.mark.parametrize("late_status", ["PENDING", "UNPAID"])
    async def test_non_settled_status_never_downgrades_settled_row(
        self, session, services, late_status
    ):
        applicant = await make_applicant(session)
        await add_fee(session, applicant.id, 5000)
        await _invoice(session, applicant.id)
        await services.reconciler.payment_confirmed(confirmation())

        outcome = await services.reconciler.payment_confirmed(
            confirmation(txn="TXN-LATE", status=late_status)
        )

        assert outcome.status == "PAID"
        assert outcome.applicant_updated is False
        record = await find_payment_record(session, "PSID-100")
        assert record.payment_status == "PAID"
        assert record.external_transaction_id == "TXN-1"
        status = await services.payments.get_payment_status(applicant.id)
        assert status.total_paid == Decimal("5000")
        assert status.is_paid is True

    async def test_replay_after_manual_payment_adds_no_alert(self, session, services):
        applicant = await make_applicant(session)
        await add_fee(session, applicant.id, 5000)
        await services.payments.record_payment(applicant.id, 1000, "PSID-9")
        events: list[PaymentRecorded] = []
        services.emitter.on(PaymentRecorded, events.append)
        before = await services.alerts.get_applicant_alerts(applicant.id)

        for _ in range(2):
            outcome = await services.reconciler.payment_confirmed(
                confirmation(reference="PSID-9", amount="1000")
            )
            assert outcome.applicant_updated is False

        after = await services.alerts.get_applicant_alerts(applicant.id)
        assert len(after) == len(before)
        assert [a.type for a in after].count("PAYMENT_RECEIVED") == 1
        assert events == []
        status = await services.payments.get_payment_status(applicant.id)
        assert status.total_paid == Decimal("1000")

    async def test_replay_keeps_credited_amount(self, session, services):
        applicant = await make_applicant(session)
        await add_fee(session, applicant.id, 5000)
        await _invoice(session, applicant.id)
        await services.reconciler.payment_confirmed(confirmation())

        await services.reconciler.payment_confirmed(confirmation(amount="1"))

        record = await find_payment_record(session, "PSID-100")
        assert record.amount_paid == Decimal("5000")

    @pytest.mark.parametrize(
        "event",
        [
            PaymentConfirmation("", "TXN", "CONFIRMED", Decimal("10")),
            PaymentConfirmation("PSID-1", "", "CONFIRMED", Decimal("10")),
            PaymentConfirmation("PSID-1", "TXN", "", Decimal("10")),
            PaymentConfirmation("PSID-1", "TXN", "CONFIRMED", Decimal("0")),
            PaymentConfirmation("PSID-1", "TXN", "CONFIRMED", Decimal("-1")),
        ],
    )
    async def test_invalid_confirmation_writes_nothing(self, session, services, event):
        with pytest.raises(ValidationError):
            await services.reconciler.payment_confirmed(event)
        assert await _rows(session) == 0


class TestPaymentFailed:
    """Test failure callbacks."""

    async def test_failure_marks_row_and_alerts(self, session, services):
        applicant = await make_applicant(session, assigned_group="DG")
        await _invoice(session, applicant.id)
        events: list[PaymentFailed] = []
        services.emitter.on(PaymentFailed, events.append)

        outcome = await services.reconciler.payment_failed(
            PaymentFailure("PSID-100", "TXN-9", reason="Insufficient funds")
        )

        assert outcome.status == "FAILED"
        record = await find_payment_record(session, "PSID-100")
        assert record.payment_status == "FAILED"
        assert record.message == "Payment failed: Insufficient funds"

        refreshed = await services.workflow.writer.load(applicant.id)
        assert refreshed.assigned_group == "DG"
        assert refreshed.version == 1

        assert events[0].reason == "Insufficient funds"
        alerts = await services.alerts.get_applicant_alerts(applicant.id)
        assert [a.type for a in alerts] == ["PAYMENT_FAILED"]

    async def test_failure_without_reason(self, session, services):
        await services.reconciler.payment_failed(PaymentFailure("PSID-200", "TXN-2"))

        record = await find_payment_record(session, "PSID-200")
        assert record.message == "Payment failed: Unknown reason"
        assert record.applicant_id is None

    async def test_failure_after_settlement_is_ignored(self, session, services):
        applicant = await make_applicant(session)
        await add_fee(session, applicant.id, 5000)
        await _invoice(session, applicant.id)
        await services.reconciler.payment_confirmed(confirmation())

        outcome = await services.reconciler.payment_failed(PaymentFailure("PSID-100", "TXN-1"))

        assert outcome.status == "PAID"
        record = await find_payment_record(session, "PSID-100")
        assert record.payment_status == "PAID"
        status = await services.payments.get_payment_status(applicant.id)
        assert status.is_paid is True

    async def test_missing_fields(self, session, services):
        with pytest.raises(ValidationError):
            await services.reconciler.payment_failed(PaymentFailure("PSID-1", ""))
        assert await _rows(session) == 0


class TestPollGateway:
    """Test pulling status from the gateway provider."""

    async def test_poll_confirmed(self, session):
        applicant = await make_applicant(session)
        await add_fee(session, applicant.id, 100)
        await _invoice(session, applicant.id, reference="PSID-P", amount=100)
        provider = StubGatewayProvider()
        provider.confirm("PSID-P", 100)
        reconciler = GatewayReconciler(session, PaymentStatusService(session), provider=provider)

        outcome = await reconciler.poll_gateway("PSID-P")

        assert outcome.processed is True
        assert outcome.applicant_updated is True
        record = await find_payment_record(session, "PSID-P")
        assert record.external_transaction_id == "TXN-PSID-P"
        assert provider.requests == ["PSID-P"]

    async def test_poll_failed(self, session):
        provider = StubGatewayProvider()
        provider.fail("PSID-F", reason="Expired")
        reconciler = GatewayReconciler(session, PaymentStatusService(session), provider=provider)

        outcome = await reconciler.poll_gateway("PSID-F")

        assert outcome.status == "FAILED"
        record = await find_payment_record(session, "PSID-F")
        assert record.message == "Payment failed: Expired"

    async def test_poll_pending_leaves_ledger(self, session):
        reconciler = GatewayReconciler(
            session, PaymentStatusService(session), provider=StubGatewayProvider()
        )

        outcome = await reconciler.poll_gateway("PSID-WAIT")

        assert outcome.processed is False
        assert outcome.status == "PENDING"
        assert await _rows(session) == 0

    async def test_poll_requires_provider(self, session):
        reconciler = GatewayReconciler(session, PaymentStatusService(session))
        with pytest.raises(ValidationError):
            await reconciler.poll_gateway("PSID-X")
