"""Applicant and registration profile models."""

from __future__ import annotations

from typing import Any

from sqlalchemy import JSON, CheckConstraint, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from licensing_engine.models.base import Base, TimestampMixin, UpdatedAtMixin


class Applicant(Base, TimestampMixin, UpdatedAtMixin):
    """A licensing applicant and its current workflow position."""

    __tablename__ = "applicant"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    first_name: Mapped[str] = mapped_column(String, nullable=False)
    last_name: Mapped[str | None] = mapped_column(String, nullable=True)
    cnic: Mapped[str | None] = mapped_column(String, nullable=True)
    email: Mapped[str | None] = mapped_column(String, nullable=True)
    mobile_no: Mapped[str | None] = mapped_column(String, nullable=True)
    registration_for: Mapped[str | None] = mapped_column(String, nullable=True)
    assigned_group: Mapped[str] = mapped_column(
        String, nullable=False, default="APPLICANT"
    )
    application_status: Mapped[str | None] = mapped_column(String, nullable=True)
    tracking_number: Mapped[str | None] = mapped_column(String, nullable=True)
    remarks: Mapped[str | None] = mapped_column(String, nullable=True)
    # Compare-and-swap token for group/status writes.
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __table_args__ = (
        CheckConstraint(
            "registration_for IS NULL OR registration_for IN "
            "('Producer', 'Consumer', 'Collector', 'Recycler')",
            name="applicant_registration_for_check",
        ),
    )

    @property
    def full_name(self) -> str:
        """First and last name joined."""
        return f"{self.first_name} {self.last_name or ''}".strip()


class BusinessProfile(Base, TimestampMixin):
    """Business details an applicant registers under."""

    __tablename__ = "business_profile"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    applicant_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("applicant.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    business_name: Mapped[str | None] = mapped_column(String, nullable=True)
    name: Mapped[str | None] = mapped_column(String, nullable=True)
    postal_address: Mapped[str | None] = mapped_column(String, nullable=True)
    entity_type: Mapped[str | None] = mapped_column(String, nullable=True)
    district_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    tehsil_id: Mapped[int | None] = mapped_column(Integer, nullable=True)


class Producer(Base, TimestampMixin):
    """Producer registration details."""

    __tablename__ = "producer"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    applicant_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("applicant.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    registration_required_for: Mapped[Any] = mapped_column(JSON, nullable=True)
    registration_required_for_other: Mapped[Any] = mapped_column(JSON, nullable=True)
    number_of_machines: Mapped[str | None] = mapped_column(String, nullable=True)


class Consumer(Base, TimestampMixin):
    """Consumer registration details."""

    __tablename__ = "consumer"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    applicant_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("applicant.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    registration_required_for: Mapped[Any] = mapped_column(JSON, nullable=True)
    registration_required_for_other: Mapped[Any] = mapped_column(JSON, nullable=True)


class Collector(Base, TimestampMixin):
    """Collector registration details."""

    __tablename__ = "collector"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    applicant_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("applicant.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    registration_required_for: Mapped[Any] = mapped_column(JSON, nullable=True)
    registration_required_for_other: Mapped[Any] = mapped_column(JSON, nullable=True)


class Recycler(Base, TimestampMixin):
    """Recycler registration details."""

    __tablename__ = "recycler"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    applicant_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("applicant.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    selected_categories: Mapped[Any] = mapped_column(JSON, nullable=True)


class ApplicationSubmitted(Base, TimestampMixin):
    """Marker row written once an application has been submitted."""

    __tablename__ = "application_submitted"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    applicant_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("applicant.id", ondelete="CASCADE"), nullable=False, unique=True
    )
