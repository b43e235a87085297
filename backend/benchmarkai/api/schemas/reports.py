"""Report lifecycle API schemas (camelCase on the wire)."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from benchmarkai.lifecycle.schemas import ReportInput


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------- Reports ----------


class CreateReportRequest(ApiModel):
    plan: str
    input_data: ReportInput


class ReportCreatedResponse(ApiModel):
    id: str
    status: str
    plan: str


class ReportResponse(ApiModel):
    id: str
    status: str
    plan: str
    input_data: dict
    output_data: dict | None = None
    processing_step: str | None = None
    processing_progress: int = 0
    error_kind: str | None = None
    generation_attempts: int = 0
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None = None


class ReportStatusResponse(ApiModel):
    status: str
    output_data: dict | None = None
    processing_step: str | None = None
    processing_progress: int = 0
    error_kind: str | None = None
    updated_at: datetime


class AbandonResponse(ApiModel):
    abandoned: bool
    status: str


# ---------- Checkout ----------


class CheckoutRequest(ApiModel):
    plan: str
    report_id: str


class CheckoutResponse(ApiModel):
    session_id: str
    client_secret: str


class VerifyPaymentRequest(ApiModel):
    session_id: str = ""


class VerifyPaymentResponse(ApiModel):
    paid: bool
    payment_status: str | None = None
    report_id: str
    report_status: str | None = None
    plan: str | None = None


# ---------- Generation ----------


class GenerateReportRequest(ApiModel):
    report_id: str


class GenerateReportResponse(ApiModel):
    success: bool
    message: str
    report_id: str
    status: str | None = None
