"""Payment status endpoints."""

from typing import Annotated

from fastapi import APIRouter, Body, Path, Query, status

from licensing_engine.api.dependencies import Actor, Services
from licensing_engine.api.schemas import (
    EligibilityResponse,
    ErrorResponse,
    PaymentHistoryEntryResponse,
    PaymentHistoryResponse,
    PaymentReminderRequest,
    PaymentReminderResponse,
    PaymentStatusResponse,
    PaymentSummaryResponse,
    PaymentVerificationResponse,
    PsidStatusResponse,
    RecordPaymentRequest,
    VerifyPaymentsRequest,
    VerifyPaymentsResponse,
)
from licensing_engine.errors import ValidationError

router = APIRouter(tags=["payments"])


@router.get("/payment-status/{applicant_id}", response_model=PaymentStatusResponse)
async def get_payment_status(
    services: Services,
    applicant_id: Annotated[int, Path()],
) -> PaymentStatusResponse:
    """Current payment status, computed from fees and settled payments."""
    result = await services.payments.get_payment_status(applicant_id)
    return PaymentStatusResponse.model_validate(result)


@router.post(
    "/payment-status/{applicant_id}",
    response_model=PaymentStatusResponse,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def record_payment(
    services: Services,
    actor: Actor,
    applicant_id: Annotated[int, Path()],
    payload: RecordPaymentRequest,
) -> PaymentStatusResponse:
    """Record a manual payment."""
    result = await services.payments.record_payment(
        applicant_id, payload.amount, payload.reference, actor=actor
    )
    await services.session.commit()
    return PaymentStatusResponse.model_validate(result)


@router.get(
    "/check-psid-status",
    response_model=PsidStatusResponse,
    responses={400: {"model": ErrorResponse}},
)
async def check_psid_status(
    services: Services,
    psid_number: Annotated[str | None, Query(alias="psidNumber")] = None,
) -> PsidStatusResponse:
    """Whether the gateway has confirmed a PSID."""
    if not psid_number:
        raise ValidationError("PSID number is required")
    confirmed = await services.payments.verify_psid_payment(psid_number)
    return PsidStatusResponse(
        psid_number=psid_number,
        payment_confirmed=confirmed,
        status="CONFIRMED" if confirmed else "PENDING",
    )


@router.get("/payment-history/{applicant_id}", response_model=PaymentHistoryResponse)
async def payment_history(
    services: Services,
    applicant_id: Annotated[int, Path()],
) -> PaymentHistoryResponse:
    entries = await services.payments.get_payment_history(applicant_id)
    return PaymentHistoryResponse(
        applicant_id=applicant_id,
        payments=[PaymentHistoryEntryResponse.model_validate(e) for e in entries],
        total_payments=len(entries),
    )


@router.get("/license-eligibility/{applicant_id}", response_model=EligibilityResponse)
async def license_eligibility(
    services: Services,
    applicant_id: Annotated[int, Path()],
) -> EligibilityResponse:
    result = await services.payments.get_payment_status(applicant_id)
    return EligibilityResponse(
        applicant_id=applicant_id,
        eligible=result.is_paid,
        payment_status=result.status,
        remaining_balance=result.remaining_balance,
        message=(
            "Applicant is eligible to download license"
            if result.is_paid
            else f"Applicant must pay PKR {result.remaining_balance} to be eligible"
        ),
    )


@router.post(
    "/verify-payments",
    response_model=VerifyPaymentsResponse,
    responses={400: {"model": ErrorResponse}},
)
async def verify_payments(
    services: Services,
    payload: VerifyPaymentsRequest,
) -> VerifyPaymentsResponse:
    """Batch check of (reference, amount) pairs."""
    if not payload.payments:
        raise ValidationError("Payments array is required")
    results = await services.payments.verify_multiple_payments(
        [(p.reference_number, p.amount) for p in payload.payments]
    )
    verified = sum(1 for r in results if r.verified)
    return VerifyPaymentsResponse(
        total=len(results),
        verified=verified,
        failed=len(results) - verified,
        details=[PaymentVerificationResponse.model_validate(r) for r in results],
    )


@router.post(
    "/payment-reminder/{applicant_id}",
    response_model=PaymentReminderResponse,
    status_code=status.HTTP_200_OK,
    responses={404: {"model": ErrorResponse}},
)
async def payment_reminder(
    services: Services,
    applicant_id: Annotated[int, Path()],
    payload: Annotated[PaymentReminderRequest | None, Body()] = None,
) -> PaymentReminderResponse:
    """Send a payment-due alert if anything is still owed."""
    days = payload.days_until_due if payload is not None else 7
    sent = await services.payments.send_payment_reminder(applicant_id, days_until_due=days)
    await services.session.commit()
    return PaymentReminderResponse(
        sent=sent,
        message="Reminder sent successfully" if sent else "No reminder needed (payment already made)",
    )


@router.get("/payment-summary", response_model=PaymentSummaryResponse)
async def payment_summary(
    services: Services,
    district_id: Annotated[int | None, Query(alias="districtId")] = None,
) -> PaymentSummaryResponse:
    summary = await services.payments.generate_payment_summary(district_id)
    return PaymentSummaryResponse.model_validate(summary)
