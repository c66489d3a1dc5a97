"""ORM models for the licensing engine."""

from licensing_engine.models.alerts import Alert, AlertRecipient
from licensing_engine.models.applicant import (
    Applicant,
    ApplicationSubmitted,
    BusinessProfile,
    Collector,
    Consumer,
    Producer,
    Recycler,
)
from licensing_engine.models.base import Base, TimestampMixin, UpdatedAtMixin
from licensing_engine.models.license import License
from licensing_engine.models.payments import Fee, PaymentRecord
from licensing_engine.models.workflow import AssignmentRecord

__all__ = [
    "Alert",
    "AlertRecipient",
    "Applicant",
    "ApplicationSubmitted",
    "AssignmentRecord",
    "Base",
    "BusinessProfile",
    "Collector",
    "Consumer",
    "Fee",
    "License",
    "PaymentRecord",
    "Producer",
    "Recycler",
    "TimestampMixin",
    "UpdatedAtMixin",
]
