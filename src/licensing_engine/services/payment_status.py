"""Payment status engine.

Derives an applicant's payment position from fee obligations and settled
PSID tracking rows, and applies the applicant-side effects of a confirmed
payment. Status is computed on every call and never cached.
"""

from __future__ import annotations

import logging
import math
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING, Any, Iterable, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from licensing_engine.errors import NotFoundError, ValidationError
from licensing_engine.events import AsyncEventEmitter, EventMetadata, PaymentRecorded
from licensing_engine.models import Applicant, BusinessProfile, Fee, PaymentRecord
from licensing_engine.models.base import as_utc, utcnow
from licensing_engine.services.applicant_state import ApplicantStateWriter
from licensing_engine.services.cache import DerivedViewCache, invalidate_after_write
from licensing_engine.services.payment_records import find_payment_record, upsert_payment_record
from licensing_engine.services.workflow import WorkflowGroup

if TYPE_CHECKING:
    from licensing_engine.services.alerts import AlertService
    from licensing_engine.services.license_service import LicenseService

logger = logging.getLogger(__name__)

SETTLED_STATUSES = frozenset({"PAID", "CONFIRMED", "SUCCESS", "COMPLETED"})

# Label written to application_status once fees are covered. Kept as the
# legacy value even though "Download License" is the real terminal state.
PAID_APPLICATION_STATUS = "Submitted"

DEFAULT_DUE_DAYS = 30
ZERO = Decimal("0")


@dataclass(frozen=True)
class PaymentStatus:
    """Derived payment position for one applicant."""

    applicant_id: int
    total_due: Decimal
    total_paid: Decimal
    remaining_balance: Decimal
    is_paid: bool
    is_partially_paid: bool
    last_payment_date: datetime | None
    next_due_date: datetime
    days_overdue: int
    status: str  # PAID, PARTIAL, OVERDUE or PENDING
    payment_percentage: int

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class PaymentHistoryEntry:
    """One line of an applicant's payment history (fee or settled payment)."""

    applicant_id: int
    amount: Decimal
    payment_method: str  # CHALAN for fees, PSID for payments
    reference: str
    bank_name: str | None
    transaction_date: datetime
    status: str
    notes: str | None


@dataclass(frozen=True)
class PaymentVerification:
    reference: str
    amount: Decimal
    verified: bool
    message: str


@dataclass(frozen=True)
class PaymentSummary:
    """Collection totals across a set of applicants."""

    total_applicants: int = 0
    total_payment_required: Decimal = ZERO
    total_payment_received: Decimal = ZERO
    total_pending: Decimal = ZERO
    payment_collection_rate: int = 0
    overdue_count: int = 0


def is_settled(payment_status: str | None) -> bool:
    """Check if a gateway/manual status string means the money arrived."""
    return (payment_status or "").upper() in SETTLED_STATUSES


def paid_amount(record: PaymentRecord) -> Decimal:
    """Amount credited by a settled record.

    Falls back to the pre-due-date invoice amount when `amount_paid` is
    missing.
    """
    value = record.amount_paid
    if value is None:
        value = record.amount_within_due_date
    return _money(value)


def payment_date(record: PaymentRecord) -> datetime | None:
    return as_utc(record.paid_at or record.updated_at or record.created_at)


def next_due_date(
    last_payment: datetime | None, now: datetime, due_days: int = DEFAULT_DUE_DAYS
) -> datetime:
    """Last payment plus `due_days`, or now plus `due_days` with no payment."""
    return (last_payment or now) + timedelta(days=due_days)


def days_overdue(due: datetime, now: datetime) -> int:
    """Whole days past `due`, rounded up. Zero when not yet due."""
    if now <= due:
        return 0
    return math.ceil((now - due).total_seconds() / 86400)


def percentage(part: Decimal, whole: Decimal) -> int:
    """Rounded percentage with halves rounded up."""
    return int((part / whole * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def compute_payment_status(
    applicant_id: int,
    fee_amounts: Iterable[Decimal | int | float | None],
    settled_payments: Sequence[PaymentRecord],
    now: datetime | None = None,
    due_days: int = DEFAULT_DUE_DAYS,
) -> PaymentStatus:
    """Pure derivation of PaymentStatus from fees and settled payments.

    Status precedence is PAID > PARTIAL > OVERDUE > PENDING.
    """
    now = now or utcnow()
    total_due = sum((_money(a) for a in fee_amounts), ZERO)
    total_paid = sum((paid_amount(p) for p in settled_payments), ZERO)

    dates = [d for d in (payment_date(p) for p in settled_payments) if d is not None]
    last_payment = max(dates) if dates else None

    remaining = max(ZERO, total_due - total_paid)
    is_paid = remaining <= 0
    is_partial = total_paid > 0 and not is_paid
    due = next_due_date(last_payment, now, due_days)
    overdue = 0 if is_paid else days_overdue(due, now)

    if is_paid:
        status = "PAID"
    elif is_partial:
        status = "PARTIAL"
    elif overdue > 0:
        status = "OVERDUE"
    else:
        status = "PENDING"

    if total_due > 0:
        pct = min(100, percentage(total_paid, total_due))
    else:
        pct = 100

    return PaymentStatus(
        applicant_id=applicant_id,
        total_due=total_due,
        total_paid=total_paid,
        remaining_balance=remaining,
        is_paid=is_paid,
        is_partially_paid=is_partial,
        last_payment_date=last_payment,
        next_due_date=due,
        days_overdue=overdue,
        status=status,
        payment_percentage=pct,
    )


def _money(value: Any) -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


class PaymentStatusService:
    """Payment status queries and the shared confirmed-payment routine.

    Manual `record_payment` and gateway reconciliation both end in
    `apply_confirmed_payment`, so the two entry points cannot drift apart.
    """

    def __init__(
        self,
        session: AsyncSession,
        license_service: LicenseService | None = None,
        cache: DerivedViewCache | None = None,
        emitter: AsyncEventEmitter | None = None,
        alert_service: AlertService | None = None,
        due_days: int = DEFAULT_DUE_DAYS,
        max_write_retries: int = 3,
    ):
        self.session = session
        self.license_service = license_service
        self.cache = cache
        self.emitter = emitter
        self.alert_service = alert_service
        self.due_days = due_days
        self.writer = ApplicantStateWriter(session, max_retries=max_write_retries)

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    async def _fee_amounts(self, applicant_id: int) -> list[Decimal]:
        result = await self.session.scalars(
            select(Fee.amount).where(Fee.applicant_id == applicant_id)
        )
        return list(result.all())

    async def _settled_payments(self, applicant_id: int) -> list[PaymentRecord]:
        result = await self.session.scalars(
            select(PaymentRecord)
            .where(PaymentRecord.applicant_id == applicant_id)
            .order_by(PaymentRecord.id)
        )
        return [r for r in result.all() if is_settled(r.payment_status)]

    async def get_payment_status(
        self, applicant_id: int, now: datetime | None = None
    ) -> PaymentStatus:
        """Current payment status, computed from the ledger."""
        return compute_payment_status(
            applicant_id,
            await self._fee_amounts(applicant_id),
            await self._settled_payments(applicant_id),
            now=now,
            due_days=self.due_days,
        )

    async def total_due(self, applicant_id: int) -> Decimal:
        return sum((_money(a) for a in await self._fee_amounts(applicant_id)), ZERO)

    async def verify_psid_payment(self, reference: str) -> bool:
        """True iff the tracking row for `reference` is settled."""
        if not reference:
            return False
        record = await find_payment_record(self.session, reference)
        return record is not None and is_settled(record.payment_status)

    async def is_eligible_for_license(self, applicant_id: int) -> bool:
        status = await self.get_payment_status(applicant_id)
        return status.is_paid

    async def get_payment_history(self, applicant_id: int) -> list[PaymentHistoryEntry]:
        """Fees and settled payments for an applicant, newest first."""
        fees = await self.session.scalars(
            select(Fee).where(Fee.applicant_id == applicant_id).order_by(Fee.id)
        )
        entries = [
            PaymentHistoryEntry(
                applicant_id=applicant_id,
                amount=_money(fee.amount),
                payment_method="CHALAN",
                reference=str(fee.id),
                bank_name=None,
                transaction_date=as_utc(fee.created_at),
                status="CONFIRMED" if fee.is_settled else "PENDING",
                notes=fee.reason,
            )
            for fee in fees.all()
        ]
        for payment in await self._settled_payments(applicant_id):
            entries.append(
                PaymentHistoryEntry(
                    applicant_id=applicant_id,
                    amount=paid_amount(payment),
                    payment_method="PSID",
                    reference=payment.reference,
                    bank_name=payment.bank_code,
                    transaction_date=payment_date(payment),
                    status="CONFIRMED",
                    notes=payment.message,
                )
            )
        entries.sort(key=lambda e: e.transaction_date, reverse=True)
        return entries

    async def verify_multiple_payments(
        self, payments: Sequence[tuple[str, Any]]
    ) -> list[PaymentVerification]:
        """Verify (reference, amount) pairs against the tracking ledger.

        A pair is verified when the amount is positive and the reference has
        a settled tracking row.
        """
        results = []
        for reference, amount in payments:
            amount = _money(amount)
            if amount <= 0 or not reference:
                results.append(
                    PaymentVerification(reference, amount, False, "Invalid payment data")
                )
                continue
            verified = await self.verify_psid_payment(reference)
            results.append(
                PaymentVerification(
                    reference,
                    amount,
                    verified,
                    "Payment verified" if verified else "Payment not confirmed",
                )
            )
        return results

    async def generate_payment_summary(
        self, district_id: int | None = None, now: datetime | None = None
    ) -> PaymentSummary:
        """Collection totals, optionally limited to one district.

        Overdue counts applicants with a balance and no payment at all whose
        first due date has passed.
        """
        now = now or utcnow()
        query = select(Applicant.id)
        if district_id is not None:
            query = query.join(
                BusinessProfile, BusinessProfile.applicant_id == Applicant.id
            ).where(BusinessProfile.district_id == district_id)
        applicant_ids = list((await self.session.scalars(query)).all())
        if not applicant_ids:
            return PaymentSummary()

        due_by_applicant: dict[int, Decimal] = {}
        fees = await self.session.execute(
            select(Fee.applicant_id, Fee.amount).where(Fee.applicant_id.in_(applicant_ids))
        )
        for applicant_id, amount in fees:
            due_by_applicant[applicant_id] = due_by_applicant.get(applicant_id, ZERO) + _money(
                amount
            )

        payments_by_applicant: dict[int, list[PaymentRecord]] = {}
        records = await self.session.scalars(
            select(PaymentRecord).where(PaymentRecord.applicant_id.in_(applicant_ids))
        )
        for record in records.all():
            if is_settled(record.payment_status):
                payments_by_applicant.setdefault(record.applicant_id, []).append(record)

        required = received = pending = ZERO
        overdue = 0
        for applicant_id in applicant_ids:
            status = compute_payment_status(
                applicant_id,
                [due_by_applicant.get(applicant_id, ZERO)],
                payments_by_applicant.get(applicant_id, []),
                now=now,
                due_days=self.due_days,
            )
            required += status.total_due
            received += status.total_paid
            pending += status.remaining_balance
            if status.remaining_balance > 0 and status.total_paid <= 0:
                if days_overdue(status.next_due_date, now) > 0:
                    overdue += 1

        return PaymentSummary(
            total_applicants=len(applicant_ids),
            total_payment_required=required,
            total_payment_received=received,
            total_pending=pending,
            payment_collection_rate=percentage(received, required) if required > 0 else 0,
            overdue_count=overdue,
        )

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    async def record_payment(
        self,
        applicant_id: int | None,
        amount: Any,
        reference: str | None,
        actor: str | None = None,
    ) -> PaymentStatus:
        """Record a manual settled payment and apply its effects.

        A reference already settled for this applicant is a replay: the
        stored amount is kept and no effects run again. An unsettled row
        (an issued invoice, or an unlinked gateway row) is settled in place.

        Raises:
            ValidationError: missing applicant, amount <= 0, blank reference,
                or a reference that belongs to another applicant
            NotFoundError: applicant does not exist
        """
        if applicant_id is None:
            raise ValidationError("applicant_id is required")
        try:
            amount = _money(amount)
        except ArithmeticError as exc:
            raise ValidationError("Payment amount must be a number") from exc
        if not amount.is_finite() or amount <= 0:
            raise ValidationError("Payment amount must be greater than zero")
        reference = (reference or "").strip()
        if not reference:
            raise ValidationError("Reference number is required")

        if await self.session.get(Applicant, applicant_id) is None:
            raise NotFoundError("Applicant", applicant_id)

        existing = await find_payment_record(self.session, reference)
        if existing is not None:
            if existing.applicant_id is not None and existing.applicant_id != applicant_id:
                logger.warning(
                    "Reference %s belongs to applicant %s; rejected for applicant %s",
                    reference,
                    existing.applicant_id,
                    applicant_id,
                )
                raise ValidationError(
                    f"Reference number {reference} already used by another applicant"
                )
            if existing.applicant_id == applicant_id and is_settled(existing.payment_status):
                logger.info(
                    "Reference %s already settled for applicant %s; replay ignored",
                    reference,
                    applicant_id,
                )
                return await self.get_payment_status(applicant_id)

        now = utcnow()
        await upsert_payment_record(
            self.session,
            reference,
            {
                "applicant_id": applicant_id,
                "external_transaction_id": reference,
                "amount_within_due_date": amount,
                "amount_after_due_date": amount,
                "amount_paid": amount,
                "paid_at": now,
                "payment_status": "PAID",
                "status": "PAID",
                "message": "Payment recorded manually",
            },
        )
        logger.info("Manual payment %s of %s recorded for applicant %s", reference, amount, applicant_id)

        return await self.apply_confirmed_payment(
            applicant_id, reference=reference, amount=amount, source="manual", actor=actor
        )

    async def apply_confirmed_payment(
        self,
        applicant_id: int,
        *,
        reference: str,
        amount: Decimal,
        source: str,
        actor: str | None = None,
    ) -> PaymentStatus:
        """Effects of a settled payment, shared by manual and gateway paths.

        1. Recompute status
        2. If fully paid: move to "Download License" with the paid status
           label, then run the license trigger (best-effort)
        3. Invalidate derived views now and after commit (best-effort)
        4. Publish PaymentRecorded (best-effort)
        """
        status = await self.get_payment_status(applicant_id)

        if status.is_paid:
            await self.writer.write(
                applicant_id,
                assigned_group=WorkflowGroup.DOWNLOAD_LICENSE.value,
                application_status=PAID_APPLICATION_STATUS,
            )
            logger.info("Applicant %s fully paid; moved to Download License", applicant_id)
            if self.license_service is not None:
                await self.license_service.safe_create_or_update_license(applicant_id, actor)

        invalidate_after_write(
            self.session, self.cache, applicant_id, include_fees=True, include_submitted=True
        )

        if self.emitter is not None:
            await self.emitter.emit(
                PaymentRecorded(
                    metadata=EventMetadata.create(
                        actor=actor,
                        actor_type="webhook" if source == "gateway" else "user",
                    ),
                    applicant_id=applicant_id,
                    reference=reference,
                    amount=_money(amount),
                    source=source,
                    fully_paid=status.is_paid,
                    remaining_balance=status.remaining_balance,
                )
            )
        return status

    async def send_payment_reminder(
        self, applicant_id: int, days_until_due: int = 7
    ) -> bool:
        """Raise a PAYMENT_DUE alert for an unpaid applicant.

        Returns False when nothing is owed. Delivery problems are logged by
        the alert dispatcher and do not fail the reminder.
        """
        applicant = await self.session.get(Applicant, applicant_id)
        if applicant is None:
            raise NotFoundError("Applicant", applicant_id)

        status = await self.get_payment_status(applicant_id)
        if status.is_paid:
            return False

        logger.info(
            "Payment reminder for applicant %s: %s due in %s days",
            applicant_id,
            status.remaining_balance,
            days_until_due,
        )
        if self.alert_service is not None:
            await self.alert_service.trigger_payment_due(
                applicant_id,
                amount_due=status.remaining_balance,
                due_date=status.next_due_date,
                days_until_due=days_until_due,
            )
        return True
