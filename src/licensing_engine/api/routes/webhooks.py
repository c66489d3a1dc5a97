"""Payment gateway callback endpoints.

The gateway delivers at least once. A 500 response tells it to retry,
which is safe because reconciliation is idempotent per PSID.
"""

import logging

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse

from licensing_engine.api.dependencies import Services, WebhookAuth
from licensing_engine.api.schemas import (
    ErrorResponse,
    PaymentConfirmedWebhook,
    PaymentFailedWebhook,
    WebhookResponse,
)
from licensing_engine.errors import ValidationError
from licensing_engine.metrics import metrics
from licensing_engine.services import PaymentConfirmation, PaymentFailure

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"], dependencies=[WebhookAuth])


def _failure(psid_number: str | None, message: str) -> JSONResponse:
    body = WebhookResponse(
        success=False, message=message, psid_number=psid_number, processed=False
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=body.model_dump(mode="json", by_alias=True),
    )


@router.post(
    "/payment-confirmed",
    response_model=WebhookResponse,
    responses={400: {"model": ErrorResponse}, 500: {"model": WebhookResponse}},
)
async def payment_confirmed(services: Services, payload: PaymentConfirmedWebhook):
    """Gateway reports a PSID as paid."""
    if not (payload.psid_number and payload.transaction_id and payload.status and payload.amount):
        metrics.increment("webhook_callbacks_total", kind="confirmed", outcome="rejected")
        raise ValidationError("Missing required webhook fields")

    try:
        outcome = await services.reconciler.payment_confirmed(
            PaymentConfirmation(
                reference=payload.psid_number,
                external_transaction_id=payload.transaction_id,
                status=payload.status,
                amount=payload.amount,
                paid_at=payload.payment_date,
                bank_code=payload.bank_code,
            )
        )
        await services.session.commit()
    except ValidationError:
        raise
    except Exception:
        await services.session.rollback()
        logger.exception("Failed to process payment confirmation for %s", payload.psid_number)
        metrics.increment("webhook_callbacks_total", kind="confirmed", outcome="error")
        return _failure(payload.psid_number, "Failed to process payment confirmation")

    return WebhookResponse(
        success=True,
        message="Payment confirmation webhook processed",
        psid_number=payload.psid_number,
        processed=outcome.processed,
        applicant_updated=outcome.applicant_updated,
    )


@router.post(
    "/payment-failed",
    response_model=WebhookResponse,
    responses={400: {"model": ErrorResponse}, 500: {"model": WebhookResponse}},
)
async def payment_failed(services: Services, payload: PaymentFailedWebhook):
    """Gateway reports a PSID payment as failed."""
    if not (payload.psid_number and payload.transaction_id):
        metrics.increment("webhook_callbacks_total", kind="failed", outcome="rejected")
        raise ValidationError("Missing required webhook fields")

    try:
        outcome = await services.reconciler.payment_failed(
            PaymentFailure(
                reference=payload.psid_number,
                external_transaction_id=payload.transaction_id,
                reason=payload.reason,
            )
        )
        await services.session.commit()
    except ValidationError:
        raise
    except Exception:
        await services.session.rollback()
        logger.exception("Failed to process payment failure for %s", payload.psid_number)
        metrics.increment("webhook_callbacks_total", kind="failed", outcome="error")
        return _failure(payload.psid_number, "Failed to process payment failure notification")

    return WebhookResponse(
        success=True,
        message="Payment failure webhook processed",
        psid_number=payload.psid_number,
        processed=outcome.processed,
    )
