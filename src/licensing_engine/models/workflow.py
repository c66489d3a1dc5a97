"""Workflow assignment history model."""

from __future__ import annotations

from sqlalchemy import ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from licensing_engine.models.base import Base, TimestampMixin


class AssignmentRecord(Base, TimestampMixin):
    """One entry per review-group transition. Append-only."""

    __tablename__ = "application_assignment"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    applicant_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("applicant.id", ondelete="CASCADE"),
        nullable=False,
    )
    assigned_group: Mapped[str] = mapped_column(String, nullable=False)
    remarks: Mapped[str | None] = mapped_column(String, nullable=True)
    created_by: Mapped[str | None] = mapped_column(String, nullable=True)

    __table_args__ = (
        Index("application_assignment_applicant_idx", "applicant_id", "id"),
    )
