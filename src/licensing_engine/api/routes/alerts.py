"""Applicant alert endpoints."""

from typing import Annotated

from fastapi import APIRouter, Path, Query, status

from licensing_engine.api.dependencies import Services
from licensing_engine.api.schemas import (
    AlertCreateRequest,
    AlertResponse,
    ChannelResultResponse,
    ErrorResponse,
    MarkReadBatchRequest,
    MarkReadBatchResponse,
    PreferencesUpdate,
    RecipientResponse,
    SendAlertRequest,
    SendAlertResponse,
    UnreadCountResponse,
)
from licensing_engine.services import CreateAlert

router = APIRouter(prefix="/alerts", tags=["alerts"])


@router.post(
    "",
    response_model=AlertResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        400: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        422: {"model": ErrorResponse},
    },
)
async def create_alert(services: Services, payload: AlertCreateRequest) -> AlertResponse:
    """Create an alert; sends immediately when channels are given."""
    alert = await services.alerts.create_alert(
        CreateAlert(
            applicant_id=payload.applicant_id,
            title=payload.title,
            message=payload.message,
            type=payload.type,
            priority=payload.priority,
            channels=payload.channels,
            description=payload.description,
            metadata=payload.metadata,
        )
    )
    await services.session.commit()
    return AlertResponse.model_validate(alert)


@router.get("", response_model=list[AlertResponse])
async def list_alerts(
    services: Services,
    applicant_id: int,
    limit: Annotated[int, Query(ge=1, le=200)] = 50,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> list[AlertResponse]:
    alerts = await services.alerts.get_applicant_alerts(applicant_id, limit=limit, offset=offset)
    return [AlertResponse.model_validate(a) for a in alerts]


@router.get("/unread-count", response_model=UnreadCountResponse)
async def unread_count(services: Services, applicant_id: int) -> UnreadCountResponse:
    return UnreadCountResponse(
        applicant_id=applicant_id,
        unread_count=await services.alerts.get_unread_count(applicant_id),
    )


@router.put("/mark-read/batch", response_model=MarkReadBatchResponse)
async def mark_read_batch(
    services: Services, payload: MarkReadBatchRequest
) -> MarkReadBatchResponse:
    updated = await services.alerts.mark_multiple_as_read(payload.alert_ids)
    await services.session.commit()
    return MarkReadBatchResponse(updated=updated)


@router.get(
    "/preferences",
    response_model=RecipientResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_preferences(services: Services, applicant_id: int) -> RecipientResponse:
    """Recipient preferences, created with defaults on first access."""
    recipient = await services.alerts.get_or_create_recipient(applicant_id)
    await services.session.commit()
    return RecipientResponse.model_validate(recipient)


@router.put(
    "/preferences",
    response_model=RecipientResponse,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def update_preferences(
    services: Services, payload: PreferencesUpdate
) -> RecipientResponse:
    await services.alerts.get_or_create_recipient(payload.applicant_id)
    changes = payload.model_dump(exclude_unset=True, exclude={"applicant_id"})
    recipient = await services.alerts.update_recipient_preferences(payload.applicant_id, changes)
    await services.session.commit()
    return RecipientResponse.model_validate(recipient)


@router.post(
    "/{alert_id}/send",
    response_model=SendAlertResponse,
    responses={404: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
)
async def send_alert(
    services: Services,
    alert_id: Annotated[int, Path()],
    payload: SendAlertRequest,
) -> SendAlertResponse:
    """Send on each allowed channel and report every channel's outcome."""
    result = await services.alerts.send_alert(alert_id, payload.channels)
    await services.session.commit()
    return SendAlertResponse(
        success=result.success,
        channels=result.channels,
        results=[ChannelResultResponse.model_validate(r) for r in result.results],
        alert=AlertResponse.model_validate(result.alert),
    )


@router.put(
    "/{alert_id}/read",
    response_model=AlertResponse,
    responses={404: {"model": ErrorResponse}},
)
async def mark_read(services: Services, alert_id: Annotated[int, Path()]) -> AlertResponse:
    alert = await services.alerts.mark_alert_as_read(alert_id)
    await services.session.commit()
    return AlertResponse.model_validate(alert)


@router.delete(
    "/{alert_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses={404: {"model": ErrorResponse}},
)
async def delete_alert(services: Services, alert_id: Annotated[int, Path()]) -> None:
    await services.alerts.delete_alert(alert_id)
    await services.session.commit()
