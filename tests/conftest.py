"""Pytest fixtures for licensing engine tests."""

from __future__ import annotations

from decimal import Decimal
from typing import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from licensing_engine.api.app import create_app
from licensing_engine.api.dependencies import get_db_session
from licensing_engine.channels import AlertChannel, ChannelResult, default_channel_senders
from licensing_engine.gateway import StubGatewayProvider
from licensing_engine.metrics import metrics
from licensing_engine.models import (
    Applicant,
    AlertRecipient,
    Base,
    BusinessProfile,
    Fee,
    PaymentRecord,
    Producer,
)
from licensing_engine.services import InMemoryViewCache, build_services


@pytest.fixture
async def engine(tmp_path):
    """File-backed SQLite database, fresh for each test."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'licensing.db'}", echo=False)

    # pysqlite's own transaction handling breaks SAVEPOINT; take it over.
    @event.listens_for(engine.sync_engine, "connect")
    def do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest.fixture
async def session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a database session for each test."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture(autouse=True)
def reset_metrics():
    metrics.reset()
    yield
    metrics.reset()


@pytest.fixture
def view_cache() -> InMemoryViewCache:
    return InMemoryViewCache(default_ttl=60)


@pytest.fixture
def services(session, view_cache):
    """Service graph bound to the test session."""
    return build_services(session, cache=view_cache, provider=StubGatewayProvider())


class FailingSender:
    """Channel sender that always raises."""

    def __init__(self, channel: AlertChannel, error: str = "transport down"):
        self.channel = channel
        self.error = error
        self.calls = 0

    async def send(self, alert, recipient) -> ChannelResult:
        self.calls += 1
        raise RuntimeError(self.error)


class RecordingSender:
    """Channel sender that records what it was asked to deliver."""

    def __init__(self, channel: AlertChannel):
        self.channel = channel
        self.sent: list[int] = []

    async def send(self, alert, recipient) -> ChannelResult:
        self.sent.append(alert.id)
        return ChannelResult(channel=self.channel.value, success=True)


# ============================================================================
# Seed helpers
# ============================================================================


async def make_applicant(
    session: AsyncSession,
    *,
    first_name: str = "Ayesha",
    last_name: str | None = "Khan",
    registration_for: str | None = "Producer",
    assigned_group: str = "APPLICANT",
    tracking_number: str | None = None,
    applicant_id: int | None = None,
    **kwargs,
) -> Applicant:
    applicant = Applicant(
        first_name=first_name,
        last_name=last_name,
        registration_for=registration_for,
        assigned_group=assigned_group,
        tracking_number=tracking_number,
        cnic="35202-1234567-1",
        email="ayesha@example.com",
        mobile_no="03001234567",
        **kwargs,
    )
    if applicant_id is not None:
        applicant.id = applicant_id
    session.add(applicant)
    await session.flush()
    return applicant


async def add_fee(session: AsyncSession, applicant_id: int, amount: str | int) -> Fee:
    fee = Fee(applicant_id=applicant_id, amount=Decimal(str(amount)), reason="License fee")
    session.add(fee)
    await session.flush()
    return fee


async def add_payment(
    session: AsyncSession,
    applicant_id: int | None,
    reference: str,
    amount: str | int,
    payment_status: str = "PAID",
) -> PaymentRecord:
    record = PaymentRecord(
        applicant_id=applicant_id,
        reference=reference,
        amount_within_due_date=Decimal(str(amount)),
        amount_paid=Decimal(str(amount)),
        payment_status=payment_status,
        status="PAID" if payment_status == "PAID" else "Pending",
    )
    session.add(record)
    await session.flush()
    return record


async def add_profile(session: AsyncSession, applicant_id: int, **kwargs) -> BusinessProfile:
    values = {
        "business_name": "Green Polymers",
        "postal_address": "12 Industrial Estate, Lahore",
        "entity_type": "Sole Proprietor",
        "district_id": 1,
        "tehsil_id": 11,
    }
    values.update(kwargs)
    profile = BusinessProfile(applicant_id=applicant_id, **values)
    session.add(profile)
    await session.flush()
    return profile


async def add_producer(session: AsyncSession, applicant_id: int, **kwargs) -> Producer:
    values = {
        "registration_required_for": ["Carry bags", "Packaging film"],
        "registration_required_for_other": [],
        "number_of_machines": "4",
    }
    values.update(kwargs)
    producer = Producer(applicant_id=applicant_id, **values)
    session.add(producer)
    await session.flush()
    return producer


async def add_recipient(session: AsyncSession, applicant_id: int, **kwargs) -> AlertRecipient:
    values = {
        "email": "ayesha@example.com",
        "phone": "03001234567",
        "email_notifications": True,
        "sms_notifications": True,
        "in_app_notifications": True,
        "whatsapp_notifications": False,
        "verified_email": True,
        "verified_phone": True,
        "is_active": True,
    }
    values.update(kwargs)
    recipient = AlertRecipient(applicant_id=applicant_id, **values)
    session.add(recipient)
    await session.flush()
    return recipient


# ============================================================================
# API fixtures
# ============================================================================


@pytest.fixture
def gateway() -> StubGatewayProvider:
    return StubGatewayProvider()


@pytest.fixture
def channel_senders():
    return default_channel_senders()


@pytest.fixture
def app(session_factory, gateway, channel_senders):
    app = create_app(
        gateway_provider=gateway,
        channel_senders=channel_senders,
        create_tables=False,
    )

    async def override_db_session() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as db:
            yield db

    app.dependency_overrides[get_db_session] = override_db_session
    return app


@pytest.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Create async HTTP client for API testing."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
