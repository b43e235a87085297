"""Payment Gateway Adapter: Stripe embedded checkout and payment verification.

Stripe is authoritative for payment. This module only creates sessions,
reads them back, and performs the ``draft -> paid`` transition, which is
shared by the webhook and the client's verify-payment call.
"""

from dataclasses import dataclass

import stripe
import structlog

from benchmarkai.core.auth import AuthUser
from benchmarkai.core.config import get_settings
from benchmarkai.core.exceptions import (
    BadRequestError,
    ForbiddenError,
    InvalidPlanError,
    MissingMetadataError,
    NotAuthenticatedError,
    PriceNotConfiguredError,
    ReportNotEligibleError,
    ReportNotFoundError,
    UpstreamUnavailableError,
)
from benchmarkai.lifecycle.schemas import Plan, ReportStatus
from benchmarkai.lifecycle.state_machine import ReportStateMachine

logger = structlog.get_logger(__name__)

# payment_status values for which a completed checkout counts as paid
PAID_PAYMENT_STATUSES = {"paid", "no_payment_required"}


@dataclass(frozen=True)
class CheckoutSession:
    session_id: str
    client_secret: str


@dataclass(frozen=True)
class VerificationResult:
    paid: bool
    payment_status: str | None
    report_id: str
    report_status: ReportStatus | None
    plan: str | None
    email: str | None = None
    amount: int | None = None


def _get_stripe() -> None:
    """Configure the stripe module with the secret key."""
    settings = get_settings()
    stripe.api_key = settings.stripe_secret_key


def build_price_map() -> dict[Plan, str]:
    """Mapping of plan -> Stripe Price ID from config."""
    settings = get_settings()
    return {
        Plan.STANDARD: settings.stripe_price_standard,
        Plan.PRO: settings.stripe_price_pro,
        Plan.AGENCY: settings.stripe_price_agency,
    }


def parse_plan(value: str | None) -> Plan:
    try:
        return Plan(value)
    except ValueError as exc:
        raise InvalidPlanError(str(value)) from exc


def _object_id(value) -> str | None:
    """Stripe fields may come back expanded (an object) or as a bare id."""
    if value is None or isinstance(value, str):
        return value
    return value.get("id")


def session_metadata(session) -> dict:
    return dict(session.get("metadata") or {})


def session_email(session) -> str | None:
    details = session.get("customer_details") or {}
    return details.get("email") or session.get("customer_email")


def is_session_paid(session) -> bool:
    """A session verified by the client counts as paid once payment cleared or checkout completed."""
    return session.get("payment_status") == "paid" or session.get("status") == "complete"


class PaymentGateway:
    def __init__(self, state_machine: ReportStateMachine):
        self.state_machine = state_machine

    async def create_checkout_session(
        self,
        report_id: str,
        plan: str,
        user: AuthUser | None,
        origin: str | None = None,
    ) -> CheckoutSession:
        """Create an embedded one-time payment session for a draft report.

        Raises:
            InvalidPlanError: plan is not a sold tier
            NotAuthenticatedError: no user, or the user has no email
            ReportNotFoundError: report missing or owned by someone else
            ReportNotEligibleError: report is no longer a draft
            PriceNotConfiguredError: plan price missing from config or unknown to Stripe
            UpstreamUnavailableError: Stripe call failed
        """
        selected = parse_plan(plan)
        if user is None or not user.email:
            raise NotAuthenticatedError("Not authenticated")

        report = await self.state_machine.get_report(report_id, user_id=user.user_id)
        if report is None:
            raise ReportNotFoundError(report_id)
        if report.status != ReportStatus.DRAFT.value:
            raise ReportNotEligibleError(
                report_id, report.status, f"Report has already been paid for (status: {report.status})"
            )

        price_id = build_price_map()[selected]
        if not price_id:
            raise PriceNotConfiguredError(selected.value, "price not configured")

        settings = get_settings()
        _get_stripe()
        return_origin = origin or settings.frontend_url

        try:
            customers = await stripe.Customer.list_async(email=user.email, limit=1)
            customer_id = customers.data[0].id if customers.data else None

            try:
                await stripe.Price.retrieve_async(price_id)
            except stripe.InvalidRequestError as exc:
                logger.error("stripe_price_not_found", plan=selected.value, price_id=price_id)
                raise PriceNotConfiguredError(selected.value) from exc

            params = {
                "line_items": [{"price": price_id, "quantity": 1}],
                "mode": "payment",
                "ui_mode": "embedded",
                "redirect_on_completion": "always",
                "return_url": f"{return_origin}/payment-success?session_id={{CHECKOUT_SESSION_ID}}",
                "metadata": {
                    "user_id": user.user_id,
                    "report_id": report_id,
                    "plan": selected.value,
                },
                "allow_promotion_codes": True,
                "billing_address_collection": "auto",
                "payment_method_types": ["card"],
                "locale": settings.stripe_locale,
            }
            if customer_id:
                params["customer"] = customer_id
            else:
                params["customer_email"] = user.email
                params["customer_creation"] = "always"

            checkout_session = await stripe.checkout.Session.create_async(**params)
        except stripe.StripeError as exc:
            logger.error("stripe_checkout_failed", report_id=report_id, error=str(exc), error_type=type(exc).__name__)
            raise UpstreamUnavailableError("Payment provider unavailable") from exc

        attached = await self.state_machine.attach_checkout_session(
            report_id, user.user_id, checkout_session.id, selected
        )
        if not attached:
            current = await self.state_machine.get_status(report_id)
            raise ReportNotEligibleError(report_id, current.value if current else "unknown")

        logger.info("checkout_session_created", report_id=report_id, plan=selected.value, session_id=checkout_session.id)
        return CheckoutSession(session_id=checkout_session.id, client_secret=checkout_session.client_secret)

    async def confirm_payment(self, session, user_id: str | None = None) -> bool:
        """Perform ``draft -> paid`` from a paid checkout session.

        Returns False when the report is not a draft any more (already paid
        through the other path, or abandoned), which callers treat as a no-op.
        """
        metadata = session_metadata(session)
        report_id = metadata.get("report_id")
        if not report_id:
            raise MissingMetadataError("No report_id in session metadata")

        patch = {
            "stripe_session_id": session.get("id"),
            "stripe_payment_id": _object_id(session.get("payment_intent")),
            "amount_paid": session.get("amount_total"),
        }
        if metadata.get("plan") in {p.value for p in Plan}:
            patch["plan"] = metadata["plan"]

        confirmed = await self.state_machine.transition(
            report_id,
            ReportStatus.DRAFT,
            ReportStatus.PAID,
            patch=patch,
            user_id=user_id,
        )
        if confirmed:
            logger.info("report_payment_confirmed", report_id=report_id, plan=metadata.get("plan"))
        return confirmed

    async def verify_session(self, session_id: str, user: AuthUser) -> VerificationResult:
        """Ask Stripe for the session and converge the report to paid if it is.

        Raises:
            BadRequestError: no session id, or Stripe does not know it
            MissingMetadataError: session carries no report_id
            ForbiddenError: session belongs to another user
            ReportNotFoundError: paid session but the report is gone
            UpstreamUnavailableError: Stripe call failed
        """
        if not session_id:
            raise BadRequestError("sessionId is required")

        _get_stripe()
        try:
            session = await stripe.checkout.Session.retrieve_async(session_id)
        except stripe.InvalidRequestError as exc:
            raise BadRequestError("Unknown checkout session") from exc
        except stripe.StripeError as exc:
            logger.error("stripe_session_retrieve_failed", error=str(exc), error_type=type(exc).__name__)
            raise UpstreamUnavailableError("Payment provider unavailable") from exc

        metadata = session_metadata(session)
        report_id = metadata.get("report_id")
        if not report_id:
            raise MissingMetadataError("No report_id in session metadata")
        if metadata.get("user_id") != user.user_id:
            logger.warning("verify_payment_user_mismatch", report_id=report_id, user_id=user.user_id)
            raise ForbiddenError("Session does not belong to user")

        paid = is_session_paid(session)
        payment_status = session.get("payment_status")
        if not paid:
            return VerificationResult(
                paid=False,
                payment_status=payment_status,
                report_id=report_id,
                report_status=None,
                plan=metadata.get("plan"),
            )

        report = await self.state_machine.get_report(report_id, user_id=user.user_id)
        if report is None:
            raise ReportNotFoundError(report_id)

        status = ReportStatus(report.status)
        if status == ReportStatus.DRAFT:
            # The webhook may be late or lost; converge here
            if await self.confirm_payment(session, user_id=user.user_id):
                logger.info("verify_payment_marked_paid", report_id=report_id)
            status = await self.state_machine.get_status(report_id)

        return VerificationResult(
            paid=True,
            payment_status=payment_status,
            report_id=report_id,
            report_status=status,
            plan=metadata.get("plan") or report.plan,
            email=session_email(session) or user.email,
            amount=session.get("amount_total"),
        )
