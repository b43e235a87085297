"""Report model: one purchased benchmark and its generation lifecycle."""

import uuid
from datetime import UTC, datetime

from sqlalchemy import JSON, CheckConstraint, Column, DateTime, Integer, String, Text

from benchmarkai.db.base import Base


class Report(Base):
    __tablename__ = "reports"
    __table_args__ = (
        # output_data is present exactly when the report is ready
        CheckConstraint(
            "(status = 'ready' AND output_data IS NOT NULL) OR (status <> 'ready' AND output_data IS NULL)",
            name="ck_reports_output_iff_ready",
        ),
        CheckConstraint(
            "processing_progress >= 0 AND processing_progress <= 100",
            name="ck_reports_progress_range",
        ),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(255), nullable=False, index=True)

    status = Column(String(20), nullable=False, default="draft", index=True)  # ReportStatus values
    plan = Column(String(20), nullable=False)  # standard, pro, agency

    # Questionnaire answers, written once at creation
    input_data = Column(JSON, nullable=False)
    # Written once on processing -> ready
    output_data = Column(JSON(none_as_null=True), nullable=True)

    # Payment correlation
    stripe_session_id = Column(String(255), nullable=True, index=True)
    stripe_payment_id = Column(String(255), nullable=True)
    amount_paid = Column(Integer, nullable=True)  # smallest currency unit
    # Set once by whichever path sends the payment confirmation email
    confirmation_sent_at = Column(DateTime(timezone=True), nullable=True)

    # Advisory progress
    processing_step = Column(Text, nullable=True)
    processing_progress = Column(Integer, nullable=False, default=0)

    # Failure tracking
    error_kind = Column(String(50), nullable=True)
    generation_attempts = Column(Integer, nullable=False, default=0)

    # Timestamps; updated_at doubles as the stall-detection signal
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC))
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )
    completed_at = Column(DateTime(timezone=True), nullable=True)
