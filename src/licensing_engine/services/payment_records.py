"""Lookup-then-upsert of PSID tracking rows keyed by `reference`."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from licensing_engine.models import PaymentRecord

logger = logging.getLogger(__name__)


@dataclass
class UpsertResult:
    """Row written by `upsert_payment_record` and whether it was inserted."""

    record: PaymentRecord
    created: bool


async def find_payment_record(session: AsyncSession, reference: str) -> PaymentRecord | None:
    """Get the tracking row for a reference, if any."""
    result = await session.execute(
        select(PaymentRecord)
        .where(PaymentRecord.reference == reference)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def upsert_payment_record(
    session: AsyncSession,
    reference: str,
    values: dict[str, Any],
) -> UpsertResult:
    """Insert or update the row for `reference`.

    A replay of the same reference updates the existing row. When two
    callers insert the same new reference at once, the loser's INSERT hits
    the unique constraint inside a SAVEPOINT and is retried as an update.
    """
    existing = await find_payment_record(session, reference)
    if existing is not None:
        _apply(existing, values)
        await session.flush()
        return UpsertResult(record=existing, created=False)

    record = PaymentRecord(reference=reference, **values)
    try:
        async with session.begin_nested():
            session.add(record)
    except IntegrityError:
        logger.info("Concurrent insert for reference %s; updating instead", reference)
        existing = await find_payment_record(session, reference)
        if existing is None:
            raise
        _apply(existing, values)
        await session.flush()
        return UpsertResult(record=existing, created=False)

    return UpsertResult(record=record, created=True)


def _apply(record: PaymentRecord, values: dict[str, Any]) -> None:
    for key, value in values.items():
        setattr(record, key, value)
