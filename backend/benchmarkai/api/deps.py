"""FastAPI dependencies wiring the lifecycle services together."""

from functools import lru_cache

from fastapi import Depends

from benchmarkai.db.base import get_session_factory
from benchmarkai.lifecycle.state_machine import ReportStateMachine
from benchmarkai.services.ai_client import ReportAIClient, build_ai_client
from benchmarkai.services.notifications import EmailNotifier
from benchmarkai.services.payment_gateway import PaymentGateway
from benchmarkai.services.report_generator import ReportGenerator
from benchmarkai.services.webhook_ingestor import WebhookIngestor


def get_state_machine() -> ReportStateMachine:
    return ReportStateMachine(get_session_factory())


@lru_cache
def get_ai_client() -> ReportAIClient:
    return build_ai_client()


def get_notifier() -> EmailNotifier:
    return EmailNotifier()


def get_generator(
    state_machine: ReportStateMachine = Depends(get_state_machine),
    ai_client: ReportAIClient = Depends(get_ai_client),
) -> ReportGenerator:
    return ReportGenerator(state_machine, ai_client)


def get_payment_gateway(state_machine: ReportStateMachine = Depends(get_state_machine)) -> PaymentGateway:
    return PaymentGateway(state_machine)


def get_webhook_ingestor(
    state_machine: ReportStateMachine = Depends(get_state_machine),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    generator: ReportGenerator = Depends(get_generator),
    notifier: EmailNotifier = Depends(get_notifier),
) -> WebhookIngestor:
    return WebhookIngestor(state_machine, gateway, generator, notifier)
