"""Stripe webhook ingestion in two phases.

Phase one runs inside the request: verify the signature, apply
``draft -> paid``, and let the route acknowledge. Phase two
(``run_post_payment``) is scheduled as a background task and drives the
report to ready or failed; nothing in it can reach the already-sent response.
"""

from dataclasses import dataclass

import stripe
import structlog
from tenacity import retry, retry_if_not_exception_type, stop_after_attempt, wait_exponential

from benchmarkai.core.config import get_settings
from benchmarkai.core.exceptions import (
    BadRequestError,
    BenchmarkError,
    MissingMetadataError,
    NotAuthenticatedError,
    ReportNotEligibleError,
    ReportNotFoundError,
)
from benchmarkai.lifecycle.schemas import ReportStatus
from benchmarkai.lifecycle.state_machine import PAID_STATUSES, ReportStateMachine
from benchmarkai.services.notifications import EmailNotifier, generate_and_notify, send_payment_confirmation
from benchmarkai.services.payment_gateway import PAID_PAYMENT_STATUSES, PaymentGateway, session_email, session_metadata
from benchmarkai.services.report_generator import ReportGenerator, TriggerResult

logger = structlog.get_logger(__name__)

PAYMENT_EVENTS = {"checkout.session.completed", "checkout.session.async_payment_succeeded"}


@dataclass(frozen=True)
class PostPaymentJob:
    """What the background continuation needs, captured before the response is sent."""

    report_id: str
    user_id: str
    plan: str | None
    email: str | None
    amount: int | None
    start_generation: bool = True


@retry(
    retry=retry_if_not_exception_type(BenchmarkError),
    stop=stop_after_attempt(4),
    wait=wait_exponential(multiplier=2, min=2, max=8),
    reraise=True,
    before_sleep=lambda rs: logger.warning(
        "post_payment_trigger_retrying",
        attempt=rs.attempt_number,
        sleep_seconds=rs.next_action.sleep,
        error=str(rs.outcome.exception()),
    ),
)
async def _trigger_with_retry(generator: ReportGenerator, report_id: str) -> TriggerResult:
    """Start generation, retrying transient failures (2s, 4s, 8s).

    Domain errors (report gone, not eligible) propagate on the first attempt.
    """
    return await generator.trigger(report_id)


class WebhookIngestor:
    def __init__(
        self,
        state_machine: ReportStateMachine,
        gateway: PaymentGateway,
        generator: ReportGenerator,
        notifier: EmailNotifier,
    ):
        self.state_machine = state_machine
        self.gateway = gateway
        self.generator = generator
        self.notifier = notifier

    def verify_event(self, payload: bytes, signature: str | None):
        """Authenticate the delivery and decode the event.

        Raises:
            NotAuthenticatedError: signing secret unset, signature missing or invalid
            BadRequestError: payload is not a valid event
        """
        settings = get_settings()
        if not settings.stripe_webhook_secret:
            logger.error("stripe_webhook_secret_missing")
            raise NotAuthenticatedError("Webhook signing secret not configured")
        if not signature:
            raise NotAuthenticatedError("Missing stripe-signature header")

        try:
            return stripe.Webhook.construct_event(payload, signature, settings.stripe_webhook_secret)
        except ValueError as exc:
            raise BadRequestError("Invalid payload") from exc
        except stripe.SignatureVerificationError as exc:
            logger.warning("stripe_webhook_signature_invalid")
            raise NotAuthenticatedError("Invalid signature") from exc

    async def handle_event(self, event) -> PostPaymentJob | None:
        """Apply the fast, synchronous part of an event.

        Returns:
            A job for the background continuation when the report has been
            paid (by this delivery or by verify-payment), None otherwise
            (unpaid sessions, abandoned reports, unrelated event types)

        Raises:
            MissingMetadataError: payment event without report_id or user_id
        """
        event_type = event["type"]
        logger.info("stripe_webhook_received", event_type=event_type, event_id=event.get("id"))

        if event_type not in PAYMENT_EVENTS:
            return None

        session = event["data"]["object"]
        metadata = session_metadata(session)
        report_id = metadata.get("report_id")
        user_id = metadata.get("user_id")
        if not report_id or not user_id:
            logger.warning("checkout_completed_missing_metadata", session_id=session.get("id"))
            raise MissingMetadataError("Missing metadata")

        if session.get("payment_status") not in PAID_PAYMENT_STATUSES:
            # Delayed payment methods complete checkout before funds clear
            logger.info(
                "checkout_completed_awaiting_payment",
                report_id=report_id,
                payment_status=session.get("payment_status"),
            )
            return None

        if await self.gateway.confirm_payment(session, user_id=user_id):
            status = ReportStatus.PAID
        else:
            status = await self.state_machine.get_status(report_id)
            logger.info(
                "webhook_duplicate_paid_ignored",
                report_id=report_id,
                status=status.value if status else None,
            )
            if status not in PAID_STATUSES:
                return None

        return PostPaymentJob(
            report_id=report_id,
            user_id=user_id,
            plan=metadata.get("plan"),
            email=session_email(session),
            amount=session.get("amount_total"),
            # Paid through verify-payment: generation may still need starting
            start_generation=status == ReportStatus.PAID,
        )

    async def run_post_payment(self, job: PostPaymentJob) -> None:
        """Background continuation: confirm by email, trigger, generate, notify.

        Never raises. If generation cannot be started after retrying, the
        report is marked failed with a diagnostic step so the client can retry.
        """
        log = logger.bind(report_id=job.report_id)
        await send_payment_confirmation(
            self.state_machine, self.notifier, job.report_id, job.email, job.plan, job.amount
        )

        if not job.start_generation:
            log.info("post_payment_generation_already_handled")
            return

        try:
            result = await _trigger_with_retry(self.generator, job.report_id)
        except (ReportNotEligibleError, ReportNotFoundError) as exc:
            log.info("post_payment_trigger_skipped", reason=exc.message)
            return
        except Exception as exc:
            log.error(
                "post_payment_trigger_failed",
                error=str(exc),
                error_type=type(exc).__name__,
                exc_info=True,
            )
            await self._mark_start_failure(job.report_id, exc)
            return

        if not result.started:
            log.info("post_payment_generation_not_started", status=getattr(result.status, "value", None), reason=result.message)
            return

        status = await generate_and_notify(self.generator, self.notifier, job.report_id, job.email, job.plan)
        if status is None:
            await self._mark_start_failure(job.report_id, RuntimeError("generation run crashed"))

    async def _mark_start_failure(self, report_id: str, exc: Exception) -> None:
        try:
            await self.state_machine.transition(
                report_id,
                [ReportStatus.PAID, ReportStatus.PROCESSING],
                ReportStatus.FAILED,
                patch={
                    "processing_step": f"Error: generation could not start ({type(exc).__name__})",
                    "processing_progress": 0,
                    "error_kind": "InternalError",
                },
            )
        except Exception as write_exc:
            logger.error(
                "post_payment_failure_write_failed",
                report_id=report_id,
                error=str(write_exc),
                error_type=type(write_exc).__name__,
                exc_info=True,
            )
