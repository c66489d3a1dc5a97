"""Licensing domain events.

An event records something the ledger has already accepted: an
assignment, a settled or failed payment, a license upsert. Subscribers
such as the alert dispatcher react to it, and a subscriber failing never
undoes the change that produced the event.

Events are frozen dataclasses so a handler cannot alter what the next
handler sees, and they serialize to plain JSON for logs.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, ClassVar
from uuid import UUID, uuid4


class EventCategory(str, Enum):
    WORKFLOW = "workflow"
    PAYMENT = "payment"
    LICENSE = "license"


@dataclass(frozen=True)
class EventMetadata:
    """Who caused an event, when, and which request it belongs to."""

    event_id: UUID
    timestamp: datetime
    correlation_id: UUID
    actor: str | None  # reviewer username; None for system and gateway
    actor_type: str  # user, system or webhook
    source_service: str = "licensing"
    version: int = 1

    @classmethod
    def create(
        cls,
        correlation_id: UUID | None = None,
        actor: str | None = None,
        actor_type: str = "system",
        source_service: str = "licensing",
    ) -> EventMetadata:
        return cls(
            event_id=uuid4(),
            timestamp=datetime.now(timezone.utc),
            correlation_id=correlation_id or uuid4(),
            actor=actor,
            actor_type=actor_type,
            source_service=source_service,
        )


def _jsonable(value: Any) -> Any:
    if isinstance(value, dict):
        return {key: _jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(item) for item in value]
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (UUID, Decimal)):
        return str(value)
    return value


@dataclass(frozen=True)
class DomainEvent:
    """Common shape of every event; subclasses set `category`."""

    category: ClassVar[EventCategory]

    metadata: EventMetadata

    @property
    def event_type(self) -> str:
        """Routing key: the event class name."""
        return type(self).__name__

    def to_dict(self) -> dict[str, Any]:
        payload = _jsonable(asdict(self))
        payload["event_type"] = self.event_type
        return payload

    def to_json(self) -> str:
        return json.dumps(self.to_dict())


@dataclass(frozen=True)
class ApplicationAssigned(DomainEvent):
    """An application moved to a review group."""

    category: ClassVar[EventCategory] = EventCategory.WORKFLOW

    applicant_id: int
    assignment_id: int
    from_group: str | None
    to_group: str
    remarks: str | None
    is_sent_back: bool


@dataclass(frozen=True)
class PaymentRecorded(DomainEvent):
    """A settled payment was written to the PSID ledger."""

    category: ClassVar[EventCategory] = EventCategory.PAYMENT

    applicant_id: int
    reference: str
    amount: Decimal
    source: str  # manual or gateway
    fully_paid: bool
    remaining_balance: Decimal = field(default=Decimal("0"))


@dataclass(frozen=True)
class PaymentFailed(DomainEvent):
    """The gateway reported a failed payment."""

    category: ClassVar[EventCategory] = EventCategory.PAYMENT

    applicant_id: int | None
    reference: str
    reason: str


@dataclass(frozen=True)
class LicenseIssued(DomainEvent):
    """A license row was created or refreshed."""

    category: ClassVar[EventCategory] = EventCategory.LICENSE

    applicant_id: int
    license_number: str
    created: bool  # False when an existing license was refreshed
