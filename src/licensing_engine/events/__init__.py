"""Domain events and the async emitter."""

from licensing_engine.events.emitter import AsyncEventEmitter
from licensing_engine.events.types import (
    ApplicationAssigned,
    DomainEvent,
    EventCategory,
    EventMetadata,
    LicenseIssued,
    PaymentFailed,
    PaymentRecorded,
)

__all__ = [
    "ApplicationAssigned",
    "AsyncEventEmitter",
    "DomainEvent",
    "EventCategory",
    "EventMetadata",
    "LicenseIssued",
    "PaymentFailed",
    "PaymentRecorded",
]
