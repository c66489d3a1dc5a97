"""License issuance trigger and license read projections."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from licensing_engine.errors import NotFoundError, UpstreamDependencyFailure, ValidationError
from licensing_engine.events import AsyncEventEmitter, EventMetadata, LicenseIssued
from licensing_engine.metrics import metrics
from licensing_engine.models import (
    Applicant,
    BusinessProfile,
    Collector,
    Consumer,
    Fee,
    License,
    Producer,
    Recycler,
)
from licensing_engine.models.base import utcnow
from licensing_engine.services.workflow import WorkflowStateMachine

logger = logging.getLogger(__name__)

DEFAULT_LICENSE_DURATION = "3 Years"
DEFAULT_CERTIFICATE_DURATION = "1 Year"

PLASTICS_MAX_LENGTH = 200
PARTICULARS_MAX_LENGTH = 200
ADDRESS_MAX_LENGTH = 300


@dataclass(frozen=True)
class CertificateData:
    """Fields printed on a license certificate."""

    applicant_id: int
    license_number: str | None
    license_duration: str
    owner_name: str
    business_name: str
    address: str
    cnic_number: str | None
    district_id: int | None
    tehsil_id: int | None
    date_of_issue: date


def _as_list(value: Any) -> list[str]:
    if not value:
        return []
    if isinstance(value, (list, tuple)):
        return [v if isinstance(v, str) else json.dumps(v) for v in value]
    return [str(value)]


class LicenseService:
    """Creates or refreshes the single License row of a paid applicant.

    The trigger is a pure function of current applicant state, so running
    it again after a partial failure is always safe. Every upsert stamps
    `date_of_issue` with the current time; re-entering "Download License"
    therefore refreshes the issue date.
    """

    def __init__(
        self,
        session: AsyncSession,
        emitter: AsyncEventEmitter | None = None,
        license_duration: str = DEFAULT_LICENSE_DURATION,
        certificate_duration: str = DEFAULT_CERTIFICATE_DURATION,
    ):
        self.session = session
        self.emitter = emitter
        self.license_duration = license_duration
        self.certificate_duration = certificate_duration

    async def _profile(self, applicant_id: int) -> BusinessProfile | None:
        return await self.session.scalar(
            select(BusinessProfile).where(BusinessProfile.applicant_id == applicant_id)
        )

    async def _sub_entity(self, model: type, applicant_id: int) -> Any:
        return await self.session.scalar(select(model).where(model.applicant_id == applicant_id))

    async def types_of_plastics(self, applicant: Applicant) -> str:
        """Registration-type specific plastics summary, "N/A" when empty."""
        registration = (applicant.registration_for or "").strip()
        items: list[str] = []
        if registration in ("Producer", "Consumer", "Collector"):
            model = {"Producer": Producer, "Consumer": Consumer, "Collector": Collector}[
                registration
            ]
            entity = await self._sub_entity(model, applicant.id)
            if entity is not None:
                items = _as_list(entity.registration_required_for) + _as_list(
                    entity.registration_required_for_other
                )
        elif registration == "Recycler":
            entity = await self._sub_entity(Recycler, applicant.id)
            if entity is not None:
                items = _as_list(entity.selected_categories)
        return ", ".join(items) if items else "N/A"

    async def particulars(self, applicant: Applicant, profile: BusinessProfile | None) -> str:
        """Machine count for producers, business type for everyone else."""
        if (applicant.registration_for or "").strip().lower() == "producer":
            producer = await self._sub_entity(Producer, applicant.id)
            machines = producer.number_of_machines if producer is not None else None
            return f"Number of Machines: {machines or 'Unknown'}"
        if profile is not None and profile.entity_type:
            return f"Business Type: {profile.entity_type}"
        return "N/A"

    async def create_or_update_license(
        self, applicant_id: int, actor: str | None = None
    ) -> License | None:
        """Upsert the applicant's license.

        Returns None without writing anything unless the applicant is in
        "Download License".
        """
        applicant = await self.session.get(Applicant, applicant_id)
        if applicant is None or not WorkflowStateMachine.is_terminal(applicant.assigned_group):
            return None

        profile = await self._profile(applicant_id)
        fees = await self.session.scalars(select(Fee.amount).where(Fee.applicant_id == applicant_id))
        fee_amount = sum((Decimal(str(a)) for a in fees.all() if a is not None), Decimal("0"))

        values = {
            "license_for": applicant.registration_for,
            "license_number": applicant.tracking_number or "",
            "license_duration": self.license_duration,
            "owner_name": applicant.full_name,
            "business_name": (profile.business_name or profile.name or "") if profile else "",
            "types_of_plastics": (await self.types_of_plastics(applicant))[:PLASTICS_MAX_LENGTH],
            "particulars": (await self.particulars(applicant, profile))[:PARTICULARS_MAX_LENGTH],
            "fee_amount": fee_amount,
            "address": ((profile.postal_address if profile else None) or "")[:ADDRESS_MAX_LENGTH],
            "date_of_issue": utcnow(),
            "created_by": actor,
        }

        license_ = await self.session.scalar(
            select(License).where(License.applicant_id == applicant_id)
        )
        created = license_ is None
        if created:
            license_ = License(applicant_id=applicant_id, is_active=True, **values)
            self.session.add(license_)
        else:
            for key, value in values.items():
                setattr(license_, key, value)
        await self.session.flush()

        logger.info(
            "License %s for applicant %s (%s)",
            license_.license_number or "<untracked>",
            applicant_id,
            "created" if created else "refreshed",
        )
        if self.emitter is not None:
            await self.emitter.emit(
                LicenseIssued(
                    metadata=EventMetadata.create(actor=actor),
                    applicant_id=applicant_id,
                    license_number=license_.license_number,
                    created=created,
                )
            )
        return license_

    async def safe_create_or_update_license(
        self, applicant_id: int, actor: str | None = None
    ) -> License | None:
        """Run the trigger; log and count failures instead of raising.

        Runs inside a SAVEPOINT so a failed write does not poison the
        caller's transaction.
        """
        try:
            async with self.session.begin_nested():
                return await self.create_or_update_license(applicant_id, actor)
        except Exception as e:
            failure = UpstreamDependencyFailure("license_trigger", e)
            logger.exception("Applicant %s: %s", applicant_id, failure.message)
            metrics.increment("side_effect_failures_total", operation="license_trigger")
            return None

    async def licenses_for_applicants(self, applicant_ids: Sequence[int]) -> list[License]:
        if not applicant_ids:
            return []
        result = await self.session.scalars(
            select(License).where(License.applicant_id.in_(applicant_ids)).order_by(License.id)
        )
        return list(result.all())

    async def list_licenses(self, active_only: bool = False) -> list[License]:
        query = select(License).order_by(License.id)
        if active_only:
            query = query.where(License.is_active.is_(True))
        return list((await self.session.scalars(query)).all())

    async def certificate_data(
        self,
        applicant_id: int | None = None,
        tracking_number: str | None = None,
        actor: str | None = None,
    ) -> CertificateData:
        """Certificate fields for an applicant, refreshing the license first.

        Raises:
            ValidationError: neither applicant_id nor tracking_number given
            NotFoundError: no matching applicant
        """
        if applicant_id is None and not tracking_number:
            raise ValidationError("Either 'applicant_id' or 'tracking_number' must be provided")

        if applicant_id is not None:
            applicant = await self.session.get(Applicant, applicant_id)
        else:
            applicant = await self.session.scalar(
                select(Applicant).where(Applicant.tracking_number == tracking_number)
            )
        if applicant is None:
            raise NotFoundError("Applicant", applicant_id if applicant_id is not None else tracking_number)

        await self.safe_create_or_update_license(applicant.id, actor)
        profile = await self._profile(applicant.id)

        return CertificateData(
            applicant_id=applicant.id,
            license_number=applicant.tracking_number,
            license_duration=self.certificate_duration,
            owner_name=applicant.full_name,
            business_name=(profile.business_name or profile.name or "N/A") if profile else "N/A",
            address=(profile.postal_address or "N/A") if profile else "N/A",
            cnic_number=applicant.cnic,
            district_id=profile.district_id if profile else None,
            tehsil_id=profile.tehsil_id if profile else None,
            date_of_issue=utcnow().date(),
        )
