"""Review-group workflow: ordering, transitions and sent-back detection."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from enum import Enum
from typing import TYPE_CHECKING

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from licensing_engine.errors import InvalidGroupError, NotFoundError, ValidationError
from licensing_engine.events import ApplicationAssigned, AsyncEventEmitter, EventMetadata
from licensing_engine.metrics import metrics
from licensing_engine.models import Applicant, ApplicationSubmitted, AssignmentRecord
from licensing_engine.services.applicant_state import ApplicantStateWriter
from licensing_engine.services.cache import (
    GROUP_COUNTS_KEY,
    DerivedViewCache,
    invalidate_after_write,
)

if TYPE_CHECKING:
    from licensing_engine.services.license_service import LicenseService

logger = logging.getLogger(__name__)


class WorkflowGroup(str, Enum):
    """Review groups an application can be assigned to."""

    APPLICANT = "APPLICANT"
    LSO = "LSO"
    LSM = "LSM"
    DO = "DO"
    LSM2 = "LSM2"
    TL = "TL"
    DEO = "DEO"
    DG = "DG"
    DOWNLOAD_LICENSE = "Download License"


# Index in this tuple defines "earlier" and "later" for sent-back detection.
GROUP_SEQUENCE: tuple[str, ...] = tuple(g.value for g in WorkflowGroup)

IN_PROCESS_STATUS = "In Process"

# Reporting projections over current assignments; never stored.
PMC_GROUPS = ("LSO", "LSM", "LSM2", "TL")
LSO_PARTITIONS = {1: "LSO1", 2: "LSO2", 0: "LSO3"}


class WorkflowStateMachine:
    """Rules for the review-group sequence.

    Sequence:
        APPLICANT < LSO < LSM < DO < LSM2 < TL < DEO < DG < Download License

    Any group may be assigned from any other; moving to an earlier group is
    a "send back". "Download License" is terminal: reaching it is what makes
    an applicant eligible for a license.
    """

    TERMINAL = WorkflowGroup.DOWNLOAD_LICENSE.value

    # Groups that leave application_status untouched on assignment
    STATUS_PRESERVING = {
        WorkflowGroup.APPLICANT.value,
        WorkflowGroup.DOWNLOAD_LICENSE.value,
    }

    @classmethod
    def is_known_group(cls, group: str | None) -> bool:
        """Check if a group name is part of the sequence."""
        return group in GROUP_SEQUENCE

    @classmethod
    def validate_group(cls, group: str | None) -> str:
        """Return the group unchanged, raising InvalidGroupError if unknown."""
        if not cls.is_known_group(group):
            raise InvalidGroupError(str(group))
        return group  # type: ignore[return-value]

    @classmethod
    def index(cls, group: str | None) -> int:
        """Position of a group in the sequence, -1 for unknown/legacy values."""
        try:
            return GROUP_SEQUENCE.index(group)  # type: ignore[arg-type]
        except ValueError:
            return -1

    @classmethod
    def status_for_group(cls, group: str) -> str | None:
        """Application status implied by assigning to `group`.

        None means the current status is kept.
        """
        if group in cls.STATUS_PRESERVING:
            return None
        return IN_PROCESS_STATUS

    @classmethod
    def is_sent_back(cls, current_group: str | None, history: Sequence[str]) -> bool:
        """Whether the application was returned to an earlier stage.

        Only the second-to-last history entry is compared with the current
        group; older entries are deliberately ignored.
        """
        if len(history) < 2:
            return False
        previous = cls.index(history[-2])
        if previous == -1:
            return False
        return previous > cls.index(current_group)

    @classmethod
    def is_terminal(cls, group: str | None) -> bool:
        """Check if the group is the license-download state."""
        return group == cls.TERMINAL


class WorkflowService:
    """Applies reviewer assignments and their side effects.

    Order inside `assign`:
    1. Append the AssignmentRecord
    2. Write group/status on the applicant (compare-and-swap)
    3. License trigger (best-effort)
    4. Cache invalidation (best-effort)
    5. ApplicationAssigned event (best-effort)

    Steps 3-5 never fail the assignment. A crash between steps leaves the
    assignment recorded; the license trigger is idempotent and can be re-run.
    """

    def __init__(
        self,
        session: AsyncSession,
        license_service: LicenseService | None = None,
        cache: DerivedViewCache | None = None,
        emitter: AsyncEventEmitter | None = None,
        max_write_retries: int = 3,
        group_counts_ttl: float | None = None,
    ):
        self.session = session
        self.license_service = license_service
        self.cache = cache
        self.emitter = emitter
        self.writer = ApplicantStateWriter(session, max_retries=max_write_retries)
        self.group_counts_ttl = group_counts_ttl

    async def assign(
        self,
        applicant_id: int | None,
        target_group: str | None,
        remarks: str | None = None,
        actor: str | None = None,
        expected_version: int | None = None,
    ) -> AssignmentRecord:
        """Move an applicant to `target_group` and record the transition.

        Raises:
            ValidationError: applicant_id missing or group unknown
            NotFoundError: applicant does not exist
            ConcurrencyConflictError: expected_version no longer current
        """
        if applicant_id is None:
            raise ValidationError("applicant_id is required")
        group = WorkflowStateMachine.validate_group(target_group)

        applicant = await self.writer.load(applicant_id)
        if expected_version is not None and applicant.version != expected_version:
            # Fail before the history append so nothing is written.
            await self.writer.write(applicant_id, expected_version=expected_version)
        from_group = applicant.assigned_group

        record = AssignmentRecord(
            applicant_id=applicant_id,
            assigned_group=group,
            remarks=remarks,
            created_by=actor,
        )
        self.session.add(record)
        await self.session.flush()

        status = WorkflowStateMachine.status_for_group(group)
        if status is None:
            await self.writer.write(
                applicant_id, assigned_group=group, expected_version=expected_version
            )
        else:
            await self.writer.write(
                applicant_id,
                assigned_group=group,
                application_status=status,
                expected_version=expected_version,
            )
        metrics.increment("workflow_transitions_total", group=group)
        logger.info(
            "Applicant %s assigned %s -> %s by %s", applicant_id, from_group, group, actor
        )

        if self.license_service is not None:
            await self.license_service.safe_create_or_update_license(applicant_id, actor)

        invalidate_after_write(self.session, self.cache, applicant_id)

        if self.emitter is not None:
            history = await self._history_groups(applicant_id)
            await self.emitter.emit(
                ApplicationAssigned(
                    metadata=EventMetadata.create(
                        actor=actor, actor_type="user" if actor else "system"
                    ),
                    applicant_id=applicant_id,
                    assignment_id=record.id,
                    from_group=from_group,
                    to_group=group,
                    remarks=remarks,
                    is_sent_back=WorkflowStateMachine.is_sent_back(group, history),
                )
            )

        return record

    async def update_assignment(
        self,
        assignment_id: int,
        assigned_group: str | None = None,
        remarks: str | None = None,
    ) -> AssignmentRecord:
        """Correct an existing history entry.

        Only the record changes; the applicant and license are untouched.
        """
        record = await self.session.get(AssignmentRecord, assignment_id)
        if record is None:
            raise NotFoundError("Assignment", assignment_id)
        if assigned_group is not None:
            record.assigned_group = WorkflowStateMachine.validate_group(assigned_group)
        if remarks is not None:
            record.remarks = remarks
        await self.session.flush()

        invalidate_after_write(self.session, self.cache, record.applicant_id)
        return record

    async def list_assignments(self, applicant_id: int) -> list[AssignmentRecord]:
        """Assignment history for an applicant, oldest first."""
        result = await self.session.execute(
            select(AssignmentRecord)
            .where(AssignmentRecord.applicant_id == applicant_id)
            .order_by(AssignmentRecord.created_at, AssignmentRecord.id)
        )
        return list(result.scalars().all())

    async def _history_groups(self, applicant_id: int) -> list[str]:
        return [r.assigned_group for r in await self.list_assignments(applicant_id)]

    async def is_sent_back(self, applicant_id: int) -> bool:
        """Sent-back flag for one applicant."""
        applicant = await self.session.get(Applicant, applicant_id)
        if applicant is None:
            raise NotFoundError("Applicant", applicant_id)
        history = await self._history_groups(applicant_id)
        return WorkflowStateMachine.is_sent_back(applicant.assigned_group, history)

    async def sent_back_flags(self, applicant_ids: Sequence[int]) -> dict[int, bool]:
        """Sent-back flags for a page of applicants (two queries total)."""
        if not applicant_ids:
            return {}
        applicants = await self.session.execute(
            select(Applicant.id, Applicant.assigned_group).where(
                Applicant.id.in_(applicant_ids)
            )
        )
        current = {row.id: row.assigned_group for row in applicants}

        records = await self.session.execute(
            select(AssignmentRecord.applicant_id, AssignmentRecord.assigned_group)
            .where(AssignmentRecord.applicant_id.in_(applicant_ids))
            .order_by(AssignmentRecord.created_at, AssignmentRecord.id)
        )
        history: dict[int, list[str]] = {}
        for row in records:
            history.setdefault(row.applicant_id, []).append(row.assigned_group)

        return {
            applicant_id: WorkflowStateMachine.is_sent_back(
                group, history.get(applicant_id, [])
            )
            for applicant_id, group in current.items()
        }

    async def group_counts(self) -> dict[str, int]:
        """Applicant counts per group plus reporting projections.

        Projections:
        - PMC: applicants in LSO, LSM, LSM2 or TL
        - Submitted: applicants with a submission marker
        - LSO1/LSO2/LSO3: applicants in LSO split by id mod 3
        """
        if self.cache is not None:
            cached = self.cache.get(GROUP_COUNTS_KEY)
            if cached is not None:
                return dict(cached)

        counts: dict[str, int] = {group: 0 for group in GROUP_SEQUENCE}
        rows = await self.session.execute(
            select(Applicant.assigned_group, func.count())
            .where(Applicant.assigned_group.in_(GROUP_SEQUENCE))
            .group_by(Applicant.assigned_group)
        )
        for group, count in rows:
            counts[group] = count

        counts["PMC"] = sum(counts[g] for g in PMC_GROUPS)
        counts["Submitted"] = (
            await self.session.scalar(select(func.count()).select_from(ApplicationSubmitted))
            or 0
        )

        for label in LSO_PARTITIONS.values():
            counts[label] = 0
        lso_ids = await self.session.scalars(
            select(Applicant.id).where(Applicant.assigned_group == WorkflowGroup.LSO.value)
        )
        for applicant_id in lso_ids:
            counts[LSO_PARTITIONS[applicant_id % 3]] += 1

        if self.cache is not None:
            self.cache.set(GROUP_COUNTS_KEY, dict(counts), ttl=self.group_counts_ttl)
        return counts
