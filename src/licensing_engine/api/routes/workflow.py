"""Workflow assignment endpoints."""

from typing import Annotated

from fastapi import APIRouter, Path, Query, status

from licensing_engine.api.dependencies import Actor, Services
from licensing_engine.api.schemas import (
    AssignmentCreate,
    AssignmentResponse,
    AssignmentUpdate,
    ErrorResponse,
    SentBackResponse,
)

router = APIRouter(tags=["workflow"])


@router.post(
    "/assignments",
    response_model=AssignmentResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        400: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
    },
)
async def create_assignment(
    services: Services,
    actor: Actor,
    payload: AssignmentCreate,
) -> AssignmentResponse:
    """Move an applicant to a review group."""
    record = await services.workflow.assign(
        payload.applicant_id,
        payload.assigned_group,
        remarks=payload.remarks,
        actor=actor,
        expected_version=payload.expected_version,
    )
    await services.session.commit()
    return AssignmentResponse.model_validate(record)


@router.patch(
    "/assignments/{assignment_id}",
    response_model=AssignmentResponse,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def update_assignment(
    services: Services,
    assignment_id: Annotated[int, Path()],
    payload: AssignmentUpdate,
) -> AssignmentResponse:
    """Correct an assignment record. The applicant is not touched."""
    record = await services.workflow.update_assignment(
        assignment_id,
        assigned_group=payload.assigned_group,
        remarks=payload.remarks,
    )
    await services.session.commit()
    return AssignmentResponse.model_validate(record)


@router.get("/assignments", response_model=list[AssignmentResponse])
async def list_assignments(
    services: Services,
    applicant_id: Annotated[int, Query(alias="applicant_id")],
) -> list[AssignmentResponse]:
    """Assignment history, oldest first."""
    records = await services.workflow.list_assignments(applicant_id)
    return [AssignmentResponse.model_validate(r) for r in records]


@router.get("/applicants/sent-back", response_model=SentBackResponse)
async def sent_back_flags(
    services: Services,
    ids: Annotated[list[int], Query()],
) -> SentBackResponse:
    """Sent-back flag for each requested applicant."""
    return SentBackResponse(flags=await services.workflow.sent_back_flags(ids))


@router.get("/statistics/groups", response_model=dict[str, int])
async def group_counts(services: Services) -> dict[str, int]:
    """Applicants per review group plus reporting projections."""
    return await services.workflow.group_counts()
