"""Tests for domain events and the async emitter."""

import json
from decimal import Decimal

from licensing_engine.events import (
    ApplicationAssigned,
    AsyncEventEmitter,
    EventCategory,
    EventMetadata,
    LicenseIssued,
    PaymentRecorded,
)
from licensing_engine.metrics import metrics


def payment_event() -> PaymentRecorded:
    return PaymentRecorded(
        metadata=EventMetadata.create(actor="cashier", actor_type="user"),
        applicant_id=7,
        reference="PSID-7",
        amount=Decimal("2500.00"),
        source="manual",
        fully_paid=False,
        remaining_balance=Decimal("2500.00"),
    )


def license_event() -> LicenseIssued:
    return LicenseIssued(
        metadata=EventMetadata.create(),
        applicant_id=7,
        license_number="PLA-7",
        created=True,
    )


class TestDomainEvents:
    """Test event serialization."""

    def test_to_dict(self):
        data = payment_event().to_dict()

        assert data["event_type"] == "PaymentRecorded"
        assert data["amount"] == "2500.00"
        assert data["metadata"]["actor"] == "cashier"
        assert isinstance(data["metadata"]["event_id"], str)

    def test_to_json_round_trips_through_json(self):
        assert json.loads(license_event().to_json())["license_number"] == "PLA-7"

    def test_categories(self):
        assert payment_event().category == EventCategory.PAYMENT
        assert license_event().category == EventCategory.LICENSE


class TestAsyncEventEmitter:
    """Test handler routing and error isolation."""

    async def test_type_routing(self):
        emitter = AsyncEventEmitter()
        payments, licenses = [], []
        emitter.on(PaymentRecorded, payments.append)
        emitter.on([LicenseIssued, ApplicationAssigned], licenses.append)

        await emitter.emit(payment_event())
        await emitter.emit(license_event())

        assert [e.event_type for e in payments] == ["PaymentRecorded"]
        assert [e.event_type for e in licenses] == ["LicenseIssued"]

    async def test_category_and_all(self):
        emitter = AsyncEventEmitter()
        payment_category, everything = [], []
        emitter.on_category(EventCategory.PAYMENT, payment_category.append)
        emitter.on_all(everything.append)

        await emitter.emit(payment_event())
        await emitter.emit(license_event())

        assert len(payment_category) == 1
        assert len(everything) == 2

    async def test_async_handlers_run_in_order(self):
        emitter = AsyncEventEmitter()
        calls = []

        async def first(event):
            calls.append("first")

        async def second(event):
            calls.append("second")

        emitter.on_all(first)
        emitter.on_all(second)
        await emitter.emit(license_event())

        assert calls == ["first", "second"]

    async def test_failing_handler_does_not_stop_others(self):
        emitter = AsyncEventEmitter()
        received = []

        async def broken(event):
            raise RuntimeError("smtp down")

        emitter.on_all(broken)
        emitter.on_all(received.append)

        errors = await emitter.emit(payment_event())

        assert len(errors) == 1
        assert str(errors[0]) == "smtp down"
        assert len(received) == 1
        assert metrics.get("side_effect_failures_total", operation="event:PaymentRecorded") == 1

    async def test_off(self):
        emitter = AsyncEventEmitter()
        received = []

        def handler(event):
            received.append(event)

        emitter.on_all(handler)
        emitter.off(handler)

        await emitter.emit(payment_event())

        assert received == []
