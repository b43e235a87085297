"""Transactional email notifications.

Posts ``{to, type, data}`` to the email service. Every send is best effort:
failures are logged and swallowed so they can never affect a report's status.
"""

import httpx
import structlog

from benchmarkai.core.config import get_settings
from benchmarkai.lifecycle.schemas import ReportStatus
from benchmarkai.lifecycle.state_machine import ReportStateMachine
from benchmarkai.services.report_generator import ReportGenerator

logger = structlog.get_logger(__name__)

PAYMENT_CONFIRMATION = "payment_confirmation"
REPORT_READY = "report_ready"
GENERATION_FAILED = "generation_failed"


class EmailNotifier:
    def __init__(self, service_url: str | None = None, token: str | None = None, timeout: float = 10.0):
        settings = get_settings()
        self.service_url = service_url if service_url is not None else settings.email_service_url
        self.token = token if token is not None else settings.email_service_token
        self.frontend_url = settings.frontend_url
        self.timeout = timeout

    async def send(self, to: str | None, email_type: str, data: dict) -> bool:
        """Send one email. Returns True if the service accepted it."""
        if not to:
            logger.info("email_skipped_no_recipient", email_type=email_type)
            return False
        if not self.service_url:
            logger.info("email_skipped_not_configured", email_type=email_type)
            return False

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    self.service_url,
                    json={"to": to, "type": email_type, "data": data},
                    headers={"Authorization": f"Bearer {self.token}"},
                )
                response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning("email_send_failed", email_type=email_type, error=str(exc), error_type=type(exc).__name__)
            return False

        logger.info("email_sent", email_type=email_type)
        return True

    async def payment_confirmation(self, to: str | None, plan: str, amount: int | None) -> bool:
        return await self.send(to, PAYMENT_CONFIRMATION, {"plan": plan, "amount": amount})

    async def report_ready(self, to: str | None, report_id: str, plan: str) -> bool:
        return await self.send(
            to,
            REPORT_READY,
            {
                "reportId": report_id,
                "reportTitle": f"Report {plan.upper()}",
                "downloadUrl": f"{self.frontend_url}/app/reports/{report_id}",
            },
        )

    async def generation_failed(self, to: str | None, report_id: str) -> bool:
        return await self.send(
            to,
            GENERATION_FAILED,
            {"reportId": report_id, "retryUrl": f"{self.frontend_url}/app/reports/{report_id}"},
        )


async def send_payment_confirmation(
    state_machine: ReportStateMachine,
    notifier: EmailNotifier,
    report_id: str,
    to: str | None,
    plan: str | None,
    amount: int | None,
) -> bool:
    """Send the payment confirmation at most once per report.

    Both the webhook continuation and verify-payment call this; whichever
    claims the report first sends the email, the other is a logged no-op.
    """
    if not await state_machine.claim_confirmation_email(report_id):
        logger.info("payment_confirmation_already_claimed", report_id=report_id)
        return False
    return await notifier.payment_confirmation(to, plan or "", amount)


async def generate_and_notify(
    generator: ReportGenerator,
    notifier: EmailNotifier,
    report_id: str,
    to: str | None,
    plan: str | None = None,
) -> ReportStatus | None:
    """Run a started generation and email its outcome to ``to``."""
    status = await generator.run(report_id)
    if status not in (ReportStatus.READY, ReportStatus.FAILED):
        return status

    if plan is None:
        report = await generator.state_machine.get_report(report_id)
        plan = report.plan if report else None

    if status == ReportStatus.READY:
        await notifier.report_ready(to, report_id, plan or "standard")
    else:
        await notifier.generation_failed(to, report_id)
    return status
