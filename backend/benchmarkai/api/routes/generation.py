"""Generation trigger route.

Called by the client (after verification, on retry, on stall) and by internal
callers holding the service-role key. The response returns as soon as the
report is in processing; the AI call runs as a background task and the
caller is emailed the outcome.
"""

import structlog
from fastapi import APIRouter, BackgroundTasks, Depends

from benchmarkai.api.deps import get_generator, get_notifier
from benchmarkai.api.schemas.reports import GenerateReportRequest, GenerateReportResponse
from benchmarkai.core.auth import Caller, require_caller
from benchmarkai.services.notifications import EmailNotifier, generate_and_notify
from benchmarkai.services.report_generator import ReportGenerator

logger = structlog.get_logger(__name__)

router = APIRouter()


@router.post("/generate-report", response_model=GenerateReportResponse)
async def generate_report(
    body: GenerateReportRequest,
    background_tasks: BackgroundTasks,
    caller: Caller = Depends(require_caller),
    generator: ReportGenerator = Depends(get_generator),
    notifier: EmailNotifier = Depends(get_notifier),
):
    """Start (or restart) generation for a paid or failed report.

    Raises:
        ReportNotFoundError(404): no such report for this user
        ReportNotEligibleError(409): report is unpaid or abandoned
    """
    result = await generator.trigger(body.report_id, user_id=caller.user_id)
    if result.started:
        email = caller.user.email if caller.user else None
        background_tasks.add_task(generate_and_notify, generator, notifier, body.report_id, email)
        logger.info("report_generation_scheduled", report_id=body.report_id, service=caller.is_service)

    return GenerateReportResponse(
        success=True,
        message=result.message,
        report_id=body.report_id,
        status=result.status.value if result.status else None,
    )
