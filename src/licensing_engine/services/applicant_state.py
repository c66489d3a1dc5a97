"""Compare-and-swap writes of applicant workflow fields.

Both the workflow state machine and the payment path mutate
`assigned_group` / `application_status`. Every such write goes through
ApplicantStateWriter, which bumps `applicant.version` with a conditional
UPDATE so a concurrent writer is detected instead of silently overwritten.
"""

from __future__ import annotations

import logging

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from licensing_engine.errors import ConcurrencyConflictError, NotFoundError
from licensing_engine.metrics import metrics
from licensing_engine.models import Applicant
from licensing_engine.models.base import utcnow

logger = logging.getLogger(__name__)

_UNSET = object()


class ApplicantStateWriter:
    """Conditional writer for applicant group/status.

    With `expected_version` the write is a strict compare-and-swap: any
    mismatch raises ConcurrencyConflictError. Without it the writer re-reads
    and retries up to `max_retries` times, so the last writer wins but never
    against a version it did not observe.
    """

    def __init__(self, session: AsyncSession, max_retries: int = 3):
        self.session = session
        self.max_retries = max_retries

    async def load(self, applicant_id: int) -> Applicant:
        """Load the current row, refreshing any identity-mapped copy."""
        result = await self.session.execute(
            select(Applicant)
            .where(Applicant.id == applicant_id)
            .execution_options(populate_existing=True)
        )
        applicant = result.scalar_one_or_none()
        if applicant is None:
            raise NotFoundError("Applicant", applicant_id)
        return applicant

    async def write(
        self,
        applicant_id: int,
        *,
        assigned_group: str | object = _UNSET,
        application_status: str | object = _UNSET,
        expected_version: int | None = None,
    ) -> Applicant:
        """Apply the given fields and return the refreshed applicant."""
        values: dict[str, object] = {}
        if assigned_group is not _UNSET:
            values["assigned_group"] = assigned_group
        if application_status is not _UNSET:
            values["application_status"] = application_status

        attempts = 0
        while True:
            applicant = await self.load(applicant_id)
            if expected_version is not None and applicant.version != expected_version:
                metrics.increment("applicant_write_conflicts_total", mode="strict")
                raise ConcurrencyConflictError(
                    applicant_id, expected_version, applicant.version
                )
            if not values:
                return applicant

            observed = applicant.version
            new_values = dict(values, version=observed + 1, updated_at=utcnow())
            result = await self.session.execute(
                update(Applicant)
                .where(Applicant.id == applicant_id, Applicant.version == observed)
                .values(**new_values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                for key, value in new_values.items():
                    set_committed_value(applicant, key, value)
                return applicant

            attempts += 1
            metrics.increment("applicant_write_conflicts_total", mode="retry")
            logger.warning(
                "Applicant %s version %s changed during write (attempt %s)",
                applicant_id,
                observed,
                attempts,
            )
            if expected_version is not None or attempts > self.max_retries:
                current = await self.load(applicant_id)
                raise ConcurrencyConflictError(applicant_id, observed, current.version)
