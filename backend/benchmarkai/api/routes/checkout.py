"""Checkout routes: Stripe embedded checkout and client-side payment verification."""

from fastapi import APIRouter, BackgroundTasks, Depends, Request

from benchmarkai.api.deps import get_notifier, get_payment_gateway, get_state_machine
from benchmarkai.api.schemas.reports import (
    CheckoutRequest,
    CheckoutResponse,
    VerifyPaymentRequest,
    VerifyPaymentResponse,
)
from benchmarkai.core.auth import AuthUser, require_auth
from benchmarkai.core.config import get_settings
from benchmarkai.lifecycle.state_machine import ReportStateMachine
from benchmarkai.services.notifications import EmailNotifier, send_payment_confirmation
from benchmarkai.services.payment_gateway import PaymentGateway

router = APIRouter()


def _return_origin(request: Request) -> str | None:
    """Use the caller's Origin for the return URL only when it is one we serve."""
    origin = request.headers.get("origin")
    settings = get_settings()
    if origin and (origin == settings.frontend_url or origin in settings.allowed_origins):
        return origin
    return None


@router.post("/create-checkout", response_model=CheckoutResponse)
async def create_checkout(
    body: CheckoutRequest,
    request: Request,
    user: AuthUser = Depends(require_auth),
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    """Create an embedded checkout session for a draft report."""
    session = await gateway.create_checkout_session(
        body.report_id,
        body.plan,
        user,
        origin=_return_origin(request),
    )
    return CheckoutResponse(session_id=session.session_id, client_secret=session.client_secret)


@router.post("/verify-payment", response_model=VerifyPaymentResponse)
async def verify_payment(
    body: VerifyPaymentRequest,
    background_tasks: BackgroundTasks,
    user: AuthUser = Depends(require_auth),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    state_machine: ReportStateMachine = Depends(get_state_machine),
    notifier: EmailNotifier = Depends(get_notifier),
):
    """Confirm payment from the return page, converging the report to paid if the webhook is late."""
    result = await gateway.verify_session(body.session_id, user)
    if result.paid and result.report_status is not None:
        # No-op when the webhook continuation already sent it
        background_tasks.add_task(
            send_payment_confirmation,
            state_machine,
            notifier,
            result.report_id,
            result.email,
            result.plan,
            result.amount,
        )
    return VerifyPaymentResponse(
        paid=result.paid,
        payment_status=result.payment_status,
        report_id=result.report_id,
        report_status=result.report_status.value if result.report_status else None,
        plan=result.plan,
    )
