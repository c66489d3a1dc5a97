"""Issued license model."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from licensing_engine.models.base import Base, TimestampMixin


class License(Base, TimestampMixin):
    """License issued to an applicant. At most one per applicant."""

    __tablename__ = "license"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    applicant_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("applicant.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    license_for: Mapped[str | None] = mapped_column(String, nullable=True)
    license_number: Mapped[str] = mapped_column(String, nullable=False, default="")
    license_duration: Mapped[str | None] = mapped_column(String, nullable=True)
    owner_name: Mapped[str | None] = mapped_column(String, nullable=True)
    business_name: Mapped[str | None] = mapped_column(String, nullable=True)
    types_of_plastics: Mapped[str | None] = mapped_column(String(200), nullable=True)
    particulars: Mapped[str | None] = mapped_column(String(200), nullable=True)
    fee_amount: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)
    address: Mapped[str | None] = mapped_column(String(300), nullable=True)
    date_of_issue: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_by: Mapped[str | None] = mapped_column(String, nullable=True)
