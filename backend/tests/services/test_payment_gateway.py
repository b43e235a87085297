"""Tests for PaymentGateway: checkout creation, verification and the paid transition.

Stripe's async SDK calls are patched with AsyncMock; sessions are plain dicts.
"""

from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import pytest
import stripe

from benchmarkai.core.auth import AuthUser
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
from benchmarkai.services.payment_gateway import PaymentGateway, is_session_paid, parse_plan
from tests.conftest import OTHER_USER_ID, TEST_USER_EMAIL, TEST_USER_ID

pytestmark = pytest.mark.unit

USER = AuthUser(user_id=TEST_USER_ID, email=TEST_USER_EMAIL)


def _paid_session(report_id: str, user_id: str = TEST_USER_ID, plan: str = "pro", **overrides) -> dict:
    session = {
        "id": "cs_test_paid",
        "status": "complete",
        "payment_status": "paid",
        "payment_intent": "pi_test_123",
        "amount_total": 4999,
        "customer_details": {"email": TEST_USER_EMAIL},
        "metadata": {"report_id": report_id, "user_id": user_id, "plan": plan},
    }
    session.update(overrides)
    return session


@pytest.fixture
def gateway(state_machine) -> PaymentGateway:
    return PaymentGateway(state_machine)


@pytest.fixture
def stripe_checkout():
    """Patch the three Stripe calls checkout creation makes."""
    created = SimpleNamespace(id="cs_test_new", client_secret="cs_test_new_secret_abc")
    with (
        patch("stripe.Customer.list_async", new_callable=AsyncMock) as list_customers,
        patch("stripe.Price.retrieve_async", new_callable=AsyncMock) as retrieve_price,
        patch("stripe.checkout.Session.create_async", new_callable=AsyncMock) as create_session,
    ):
        list_customers.return_value = SimpleNamespace(data=[])
        retrieve_price.return_value = SimpleNamespace(id="price_test_pro")
        create_session.return_value = created
        yield SimpleNamespace(
            list_customers=list_customers,
            retrieve_price=retrieve_price,
            create_session=create_session,
        )


class TestHelpers:
    def test_parse_plan(self):
        assert parse_plan("agency") == Plan.AGENCY

    @pytest.mark.parametrize("value", ["enterprise", "", None])
    def test_parse_plan_rejects_unknown(self, value):
        with pytest.raises(InvalidPlanError):
            parse_plan(value)

    def test_session_paid_by_payment_status(self):
        assert is_session_paid({"payment_status": "paid", "status": "open"})

    def test_session_paid_by_completion(self):
        assert is_session_paid({"payment_status": "unpaid", "status": "complete"})

    def test_open_session_not_paid(self):
        assert not is_session_paid({"payment_status": "unpaid", "status": "open"})


class TestCreateCheckoutSession:
    async def test_creates_embedded_session_for_draft(self, gateway, state_machine, make_report, stripe_checkout):
        report_id = await make_report(plan=Plan.STANDARD)

        session = await gateway.create_checkout_session(report_id, "pro", USER, origin="https://app.example")

        assert session.session_id == "cs_test_new"
        assert session.client_secret == "cs_test_new_secret_abc"
        params = stripe_checkout.create_session.call_args.kwargs
        assert params["ui_mode"] == "embedded"
        assert params["mode"] == "payment"
        assert params["line_items"] == [{"price": "price_test_pro", "quantity": 1}]
        assert params["metadata"] == {"user_id": TEST_USER_ID, "report_id": report_id, "plan": "pro"}
        assert params["return_url"] == "https://app.example/payment-success?session_id={CHECKOUT_SESSION_ID}"
        assert params["customer_email"] == TEST_USER_EMAIL

        report = await state_machine.get_report(report_id)
        assert report.stripe_session_id == "cs_test_new"
        assert report.plan == "pro"
        assert report.status == "draft"

    async def test_reuses_existing_customer(self, gateway, make_report, stripe_checkout):
        stripe_checkout.list_customers.return_value = SimpleNamespace(data=[SimpleNamespace(id="cus_existing")])
        report_id = await make_report()

        await gateway.create_checkout_session(report_id, "standard", USER)

        params = stripe_checkout.create_session.call_args.kwargs
        assert params["customer"] == "cus_existing"
        assert "customer_email" not in params

    async def test_default_return_origin_is_frontend(self, gateway, make_report, stripe_checkout):
        report_id = await make_report()

        await gateway.create_checkout_session(report_id, "standard", USER)

        params = stripe_checkout.create_session.call_args.kwargs
        assert params["return_url"].startswith("http://localhost:5173/payment-success")

    async def test_invalid_plan_rejected_before_stripe(self, gateway, make_report, stripe_checkout):
        report_id = await make_report()

        with pytest.raises(InvalidPlanError):
            await gateway.create_checkout_session(report_id, "platinum", USER)
        stripe_checkout.create_session.assert_not_called()

    async def test_user_without_email_rejected(self, gateway, make_report, stripe_checkout):
        report_id = await make_report()

        with pytest.raises(NotAuthenticatedError):
            await gateway.create_checkout_session(report_id, "pro", AuthUser(user_id=TEST_USER_ID, email=None))

    async def test_other_users_report_not_found(self, gateway, make_report, stripe_checkout):
        report_id = await make_report(user_id=OTHER_USER_ID)

        with pytest.raises(ReportNotFoundError):
            await gateway.create_checkout_session(report_id, "pro", USER)

    async def test_paid_report_not_eligible(self, gateway, make_report, stripe_checkout):
        report_id = await make_report(ReportStatus.PAID)

        with pytest.raises(ReportNotEligibleError):
            await gateway.create_checkout_session(report_id, "pro", USER)
        stripe_checkout.create_session.assert_not_called()

    async def test_unknown_price_at_stripe(self, gateway, make_report, stripe_checkout):
        stripe_checkout.retrieve_price.side_effect = stripe.InvalidRequestError("No such price", "price")
        report_id = await make_report()

        with pytest.raises(PriceNotConfiguredError):
            await gateway.create_checkout_session(report_id, "pro", USER)

    async def test_unconfigured_price(self, gateway, make_report, stripe_checkout):
        report_id = await make_report()

        with patch("benchmarkai.services.payment_gateway.build_price_map", return_value={Plan.PRO: ""}):
            with pytest.raises(PriceNotConfiguredError, match="not configured"):
                await gateway.create_checkout_session(report_id, "pro", USER)

    async def test_stripe_outage_maps_to_upstream_unavailable(self, gateway, make_report, stripe_checkout):
        stripe_checkout.create_session.side_effect = stripe.APIConnectionError("connection reset")
        report_id = await make_report()

        with pytest.raises(UpstreamUnavailableError):
            await gateway.create_checkout_session(report_id, "pro", USER)


class TestConfirmPayment:
    async def test_draft_becomes_paid_with_payment_fields(self, gateway, state_machine, make_report):
        report_id = await make_report(plan=Plan.STANDARD)

        confirmed = await gateway.confirm_payment(_paid_session(report_id, plan="pro"))

        assert confirmed is True
        report = await state_machine.get_report(report_id)
        assert report.status == "paid"
        assert report.plan == "pro"
        assert report.stripe_payment_id == "pi_test_123"
        assert report.amount_paid == 4999

    async def test_expanded_payment_intent(self, gateway, state_machine, make_report):
        report_id = await make_report()

        await gateway.confirm_payment(_paid_session(report_id, payment_intent={"id": "pi_expanded"}))

        assert (await state_machine.get_report(report_id)).stripe_payment_id == "pi_expanded"

    async def test_second_confirmation_is_noop(self, gateway, make_report):
        report_id = await make_report()
        session = _paid_session(report_id)

        assert await gateway.confirm_payment(session) is True
        assert await gateway.confirm_payment(session) is False

    async def test_abandoned_report_not_revived(self, gateway, state_machine, make_report):
        report_id = await make_report(ReportStatus.ABANDONED)

        assert await gateway.confirm_payment(_paid_session(report_id)) is False
        assert await state_machine.get_status(report_id) == ReportStatus.ABANDONED

    async def test_missing_report_id(self, gateway, engine):
        with pytest.raises(MissingMetadataError):
            await gateway.confirm_payment({"id": "cs_x", "metadata": {"user_id": TEST_USER_ID}})


class TestVerifySession:
    async def test_paid_session_converges_draft_to_paid(self, gateway, state_machine, make_report):
        report_id = await make_report()

        with patch("stripe.checkout.Session.retrieve_async", AsyncMock(return_value=_paid_session(report_id))):
            result = await gateway.verify_session("cs_test_paid", USER)

        assert result.paid is True
        assert result.report_status == ReportStatus.PAID
        assert result.plan == "pro"
        assert await state_machine.get_status(report_id) == ReportStatus.PAID

    async def test_already_processing_left_unchanged(self, gateway, state_machine, make_report):
        report_id = await make_report(ReportStatus.PROCESSING)

        with patch("stripe.checkout.Session.retrieve_async", AsyncMock(return_value=_paid_session(report_id))):
            result = await gateway.verify_session("cs_test_paid", USER)

        assert result.paid is True
        assert result.report_status == ReportStatus.PROCESSING

    async def test_unpaid_session_reports_not_paid(self, gateway, state_machine, make_report):
        report_id = await make_report()
        session = _paid_session(report_id, status="open", payment_status="unpaid")

        with patch("stripe.checkout.Session.retrieve_async", AsyncMock(return_value=session)):
            result = await gateway.verify_session("cs_test_paid", USER)

        assert result.paid is False
        assert result.payment_status == "unpaid"
        assert await state_machine.get_status(report_id) == ReportStatus.DRAFT

    async def test_other_users_session_forbidden(self, gateway, make_report):
        report_id = await make_report(user_id=OTHER_USER_ID)
        session = _paid_session(report_id, user_id=OTHER_USER_ID)

        with patch("stripe.checkout.Session.retrieve_async", AsyncMock(return_value=session)):
            with pytest.raises(ForbiddenError):
                await gateway.verify_session("cs_test_paid", USER)

    async def test_empty_session_id(self, gateway):
        with pytest.raises(BadRequestError):
            await gateway.verify_session("", USER)

    async def test_unknown_session(self, gateway):
        error = stripe.InvalidRequestError("No such checkout.session", "id")
        with patch("stripe.checkout.Session.retrieve_async", AsyncMock(side_effect=error)):
            with pytest.raises(BadRequestError):
                await gateway.verify_session("cs_unknown", USER)

    async def test_session_without_report_metadata(self, gateway):
        session = {"id": "cs_x", "status": "complete", "payment_status": "paid", "metadata": {}}
        with patch("stripe.checkout.Session.retrieve_async", AsyncMock(return_value=session)):
            with pytest.raises(MissingMetadataError):
                await gateway.verify_session("cs_x", USER)

    async def test_paid_session_for_deleted_report(self, gateway, engine):
        session = _paid_session("gone-report-id")
        with patch("stripe.checkout.Session.retrieve_async", AsyncMock(return_value=session)):
            with pytest.raises(ReportNotFoundError):
                await gateway.verify_session("cs_test_paid", USER)
