"""Report routes: create draft, read, poll status, abandon."""

import structlog
from fastapi import APIRouter, Depends

from benchmarkai.api.deps import get_state_machine
from benchmarkai.api.schemas.reports import (
    AbandonResponse,
    CreateReportRequest,
    ReportCreatedResponse,
    ReportResponse,
    ReportStatusResponse,
)
from benchmarkai.core.auth import AuthUser, require_auth
from benchmarkai.core.exceptions import ReportNotFoundError
from benchmarkai.lifecycle.schemas import ReportStatus
from benchmarkai.lifecycle.state_machine import ReportStateMachine, ensure_utc
from benchmarkai.services.payment_gateway import parse_plan

logger = structlog.get_logger(__name__)

router = APIRouter()

ABANDONABLE = [ReportStatus.DRAFT, ReportStatus.PAID, ReportStatus.PROCESSING]


@router.post("", status_code=201, response_model=ReportCreatedResponse)
async def create_report(
    body: CreateReportRequest,
    user: AuthUser = Depends(require_auth),
    state_machine: ReportStateMachine = Depends(get_state_machine),
):
    """Persist the finished wizard as a draft report."""
    plan = parse_plan(body.plan)
    report = await state_machine.create_report(
        user.user_id,
        plan,
        body.input_data.model_dump(mode="json", by_alias=True, exclude_none=True),
    )
    return ReportCreatedResponse(id=report.id, status=report.status, plan=report.plan)


@router.get("/{report_id}", response_model=ReportResponse)
async def get_report(
    report_id: str,
    user: AuthUser = Depends(require_auth),
    state_machine: ReportStateMachine = Depends(get_state_machine),
):
    report = await state_machine.get_report(report_id, user_id=user.user_id)
    if report is None:
        raise ReportNotFoundError(report_id)

    return ReportResponse(
        id=report.id,
        status=report.status,
        plan=report.plan,
        input_data=report.input_data,
        output_data=report.output_data,
        processing_step=report.processing_step,
        processing_progress=report.processing_progress or 0,
        error_kind=report.error_kind,
        generation_attempts=report.generation_attempts or 0,
        created_at=ensure_utc(report.created_at),
        updated_at=ensure_utc(report.updated_at),
        completed_at=ensure_utc(report.completed_at),
    )


@router.get("/{report_id}/status", response_model=ReportStatusResponse)
async def get_report_status(
    report_id: str,
    user: AuthUser = Depends(require_auth),
    state_machine: ReportStateMachine = Depends(get_state_machine),
):
    """Polling endpoint: status, advisory progress and, once ready, the output."""
    snapshot = await state_machine.poll_fields(report_id, user_id=user.user_id)
    if snapshot is None:
        raise ReportNotFoundError(report_id)

    return ReportStatusResponse(
        status=snapshot.status.value,
        output_data=snapshot.output_data,
        processing_step=snapshot.processing_step,
        processing_progress=snapshot.processing_progress,
        error_kind=snapshot.error_kind,
        updated_at=snapshot.updated_at,
    )


@router.post("/{report_id}/abandon", response_model=AbandonResponse)
async def abandon_report(
    report_id: str,
    user: AuthUser = Depends(require_auth),
    state_machine: ReportStateMachine = Depends(get_state_machine),
):
    """Mark a report the user walked away from. Ready and failed reports are left as they are."""
    abandoned = await state_machine.transition(
        report_id,
        ABANDONABLE,
        ReportStatus.ABANDONED,
        user_id=user.user_id,
    )
    if abandoned:
        logger.info("report_abandoned", report_id=report_id, user_id=user.user_id)
        return AbandonResponse(abandoned=True, status=ReportStatus.ABANDONED.value)

    report = await state_machine.get_report(report_id, user_id=user.user_id)
    if report is None:
        raise ReportNotFoundError(report_id)
    return AbandonResponse(abandoned=False, status=report.status)
