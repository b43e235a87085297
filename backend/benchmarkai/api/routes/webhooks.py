"""Stripe webhook route: verify, mark paid, acknowledge, continue in background."""

import structlog
from fastapi import APIRouter, BackgroundTasks, Depends, Request
from fastapi.responses import JSONResponse

from benchmarkai.api.deps import get_webhook_ingestor
from benchmarkai.core.exceptions import BenchmarkError
from benchmarkai.services.webhook_ingestor import WebhookIngestor

logger = structlog.get_logger(__name__)

router = APIRouter()


@router.post("/stripe-webhook")
async def stripe_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    ingestor: WebhookIngestor = Depends(get_webhook_ingestor),
):
    """Handle Stripe webhook events with signature verification.

    Returns 200 as soon as the report is paid; generation continues after the
    response is sent. 401 for unauthenticated deliveries, 400 for malformed
    ones, 500 (so Stripe redelivers) when the paid write itself fails.
    """
    body = await request.body()
    event = ingestor.verify_event(body, request.headers.get("stripe-signature"))

    try:
        job = await ingestor.handle_event(event)
    except BenchmarkError:
        raise
    except Exception as exc:
        logger.error(
            "stripe_webhook_processing_failed",
            event_type=event.get("type"),
            error=str(exc),
            error_type=type(exc).__name__,
            exc_info=True,
        )
        return JSONResponse(status_code=500, content={"error": "Webhook processing failed"})

    if job is not None:
        background_tasks.add_task(ingestor.run_post_payment, job)

    return {"received": True}
