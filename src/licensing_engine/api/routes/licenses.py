"""License read endpoints."""

from typing import Annotated

from fastapi import APIRouter, Query

from licensing_engine.api.dependencies import Actor, Services
from licensing_engine.api.schemas import CertificateResponse, ErrorResponse, LicenseResponse

router = APIRouter(prefix="/licenses", tags=["licenses"])


@router.get("", response_model=list[LicenseResponse])
async def list_licenses(
    services: Services,
    applicant_ids: Annotated[list[int] | None, Query()] = None,
    active_only: bool = False,
) -> list[LicenseResponse]:
    """Licenses for the given applicants, or all licenses."""
    if applicant_ids:
        licenses = await services.licenses.licenses_for_applicants(applicant_ids)
    else:
        licenses = await services.licenses.list_licenses(active_only=active_only)
    return [LicenseResponse.model_validate(lic) for lic in licenses]


@router.get(
    "/certificate",
    response_model=CertificateResponse,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def certificate(
    services: Services,
    actor: Actor,
    applicant_id: int | None = None,
    tracking_number: str | None = None,
) -> CertificateResponse:
    """Certificate fields; refreshes the license row first."""
    data = await services.licenses.certificate_data(
        applicant_id=applicant_id, tracking_number=tracking_number, actor=actor
    )
    await services.session.commit()
    return CertificateResponse.model_validate(data)
