"""Fee obligation and payment tracking models."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from licensing_engine.models.base import Base, TimestampMixin, UpdatedAtMixin


class Fee(Base, TimestampMixin):
    """A fee obligation raised against an applicant."""

    __tablename__ = "applicant_fee"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    applicant_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("applicant.id", ondelete="CASCADE"),
        nullable=False,
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    is_settled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    reason: Mapped[str | None] = mapped_column(String, nullable=True)

    __table_args__ = (Index("applicant_fee_applicant_idx", "applicant_id"),)


class PaymentRecord(Base, TimestampMixin, UpdatedAtMixin):
    """Gateway tracking row for one PSID / consumer number.

    `reference` is the idempotency key: a replayed gateway callback updates
    the existing row instead of creating another one.
    """

    __tablename__ = "psid_tracking"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    applicant_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("applicant.id", ondelete="SET NULL"),
        nullable=True,
    )
    reference: Mapped[str] = mapped_column(String, nullable=False)
    external_transaction_id: Mapped[str | None] = mapped_column(String, nullable=True)
    amount_within_due_date: Mapped[Decimal | None] = mapped_column(
        Numeric(14, 2), nullable=True
    )
    amount_after_due_date: Mapped[Decimal | None] = mapped_column(
        Numeric(14, 2), nullable=True
    )
    amount_paid: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)
    payment_status: Mapped[str] = mapped_column(String, nullable=False, default="UNPAID")
    status: Mapped[str] = mapped_column(String, nullable=False, default="Pending")
    message: Mapped[str | None] = mapped_column(String, nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    bank_code: Mapped[str | None] = mapped_column(String, nullable=True)

    __table_args__ = (
        UniqueConstraint("reference", name="psid_tracking_reference_key"),
        Index("psid_tracking_applicant_idx", "applicant_id"),
    )
