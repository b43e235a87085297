"""Report state machine backed by conditional row updates.

Every status change is a single ``UPDATE ... WHERE status IN (expected)``.
Concurrent writers (webhook, verify-payment, generator, client abandon) are
ordered by the database: the first matching update wins, everyone else sees
``False`` and treats it as an idempotent no-op.
"""

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Iterable

import structlog
from sqlalchemy import case, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from benchmarkai.core.exceptions import InvalidTransitionError
from benchmarkai.db.models.report import Report
from benchmarkai.lifecycle.schemas import Plan, ReportStatus

logger = structlog.get_logger(__name__)

# Statuses a report can only reach after payment (abandoned excluded)
PAID_STATUSES = (ReportStatus.PAID, ReportStatus.PROCESSING, ReportStatus.READY, ReportStatus.FAILED)


def ensure_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on the way back)."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=UTC)


@dataclass(frozen=True)
class ReportSnapshot:
    """The fields a polling client needs, read in one query."""

    id: str
    status: ReportStatus
    plan: Plan
    output_data: dict | None
    processing_step: str | None
    processing_progress: int
    error_kind: str | None
    updated_at: datetime


class ReportStateMachine:
    """Manages report status transitions with validation."""

    # Valid state transitions
    TRANSITIONS = {
        ReportStatus.DRAFT: [ReportStatus.PAID, ReportStatus.ABANDONED],
        ReportStatus.PAID: [ReportStatus.PROCESSING, ReportStatus.FAILED, ReportStatus.ABANDONED],
        ReportStatus.PROCESSING: [ReportStatus.READY, ReportStatus.FAILED, ReportStatus.ABANDONED],
        ReportStatus.READY: [],  # Terminal state
        ReportStatus.FAILED: [ReportStatus.PROCESSING],  # Retry without repayment
        ReportStatus.ABANDONED: [],  # Terminal state
    }

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def create_report(
        self,
        user_id: str,
        plan: Plan,
        input_data: dict,
        now: datetime | None = None,
    ) -> Report:
        """Persist a new draft report.

        Args:
            user_id: Owner identity
            plan: Tier selected in the wizard
            input_data: Questionnaire answers (stored as-is, never rewritten)
            now: Current time (for deterministic testing)
        """
        now = now or datetime.now(UTC)
        report = Report(
            user_id=user_id,
            plan=plan.value,
            status=ReportStatus.DRAFT.value,
            input_data=input_data,
            processing_progress=0,
            generation_attempts=0,
            created_at=now,
            updated_at=now,
        )
        async with self.session_factory() as session:
            session.add(report)
            await session.commit()
            await session.refresh(report)

        logger.info("report_created", report_id=report.id, user_id=user_id, plan=plan.value)
        return report

    async def get_report(self, report_id: str, user_id: str | None = None) -> Report | None:
        """Load a report, optionally scoped to its owner."""
        stmt = select(Report).where(Report.id == report_id)
        if user_id is not None:
            stmt = stmt.where(Report.user_id == user_id)
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            return result.scalar_one_or_none()

    async def get_status(self, report_id: str) -> ReportStatus | None:
        async with self.session_factory() as session:
            result = await session.execute(select(Report.status).where(Report.id == report_id))
            status = result.scalar_one_or_none()
        return ReportStatus(status) if status is not None else None

    async def poll_fields(self, report_id: str, user_id: str | None = None) -> ReportSnapshot | None:
        """Return the status/progress view a polling client reads."""
        report = await self.get_report(report_id, user_id=user_id)
        if report is None:
            return None

        status = ReportStatus(report.status)
        return ReportSnapshot(
            id=report.id,
            status=status,
            plan=Plan(report.plan),
            output_data=report.output_data if status == ReportStatus.READY else None,
            processing_step=report.processing_step,
            processing_progress=report.processing_progress or 0,
            error_kind=report.error_kind,
            updated_at=ensure_utc(report.updated_at),
        )

    async def transition(
        self,
        report_id: str,
        expected_from: ReportStatus | Iterable[ReportStatus],
        to: ReportStatus,
        patch: dict[str, Any] | None = None,
        user_id: str | None = None,
        now: datetime | None = None,
    ) -> bool:
        """Move a report to ``to`` if its current status is one of ``expected_from``.

        Args:
            report_id: Report identifier
            expected_from: Status (or statuses) the row must currently be in
            to: Target status
            patch: Extra column values written in the same update
            user_id: When set, the row must also belong to this user
            now: Current time (for deterministic testing)

        Returns:
            True if exactly one row changed, False on a precondition miss

        Raises:
            InvalidTransitionError: if any requested edge is not in TRANSITIONS
        """
        now = now or datetime.now(UTC)
        expected = (expected_from,) if isinstance(expected_from, ReportStatus) else tuple(expected_from)
        patch = dict(patch or {})

        for from_status in expected:
            if to not in self.TRANSITIONS.get(from_status, []):
                raise InvalidTransitionError(expected, to)

        # output_data is written on the ready edge and nowhere else
        if (to == ReportStatus.READY) != (patch.get("output_data") is not None):
            raise InvalidTransitionError(expected, to)

        stmt = (
            update(Report)
            .where(Report.id == report_id)
            .where(Report.status.in_([s.value for s in expected]))
        )
        if user_id is not None:
            stmt = stmt.where(Report.user_id == user_id)
        stmt = stmt.values(status=to.value, updated_at=now, **patch).execution_options(
            synchronize_session=False
        )

        async with self.session_factory() as session:
            result = await session.execute(stmt)
            await session.commit()

        applied = result.rowcount == 1
        if applied:
            logger.info(
                "report_transition_applied",
                report_id=report_id,
                from_status=[s.value for s in expected],
                to_status=to.value,
            )
        else:
            logger.info(
                "report_transition_skipped",
                report_id=report_id,
                from_status=[s.value for s in expected],
                to_status=to.value,
            )
        return applied

    async def attach_checkout_session(
        self,
        report_id: str,
        user_id: str,
        session_id: str,
        plan: Plan,
        now: datetime | None = None,
    ) -> bool:
        """Record a new checkout session (and possibly a new plan) on a draft."""
        now = now or datetime.now(UTC)
        stmt = (
            update(Report)
            .where(
                Report.id == report_id,
                Report.user_id == user_id,
                Report.status == ReportStatus.DRAFT.value,
            )
            .values(stripe_session_id=session_id, plan=plan.value, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            await session.commit()
        return result.rowcount == 1

    async def claim_confirmation_email(self, report_id: str, now: datetime | None = None) -> bool:
        """Claim the right to send the payment confirmation for a paid report.

        Returns True for exactly one caller per report, whichever path (webhook
        or verify-payment) marked it paid. ``updated_at`` is left untouched so
        the claim never masks a stalled generation.
        """
        now = now or datetime.now(UTC)
        stmt = (
            update(Report)
            .where(
                Report.id == report_id,
                Report.confirmation_sent_at.is_(None),
                Report.status.in_([s.value for s in PAID_STATUSES]),
            )
            .values(confirmation_sent_at=now, updated_at=Report.updated_at)
            .execution_options(synchronize_session=False)
        )
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            await session.commit()
        return result.rowcount == 1

    async def update_progress(
        self,
        report_id: str,
        step: str,
        progress: int,
        now: datetime | None = None,
    ) -> bool:
        """Publish advisory progress while processing.

        Stored progress never goes down; the step text and ``updated_at`` are
        always refreshed so the write also serves as a liveness heartbeat.
        """
        now = now or datetime.now(UTC)
        progress = max(0, min(int(progress), 100))
        stmt = (
            update(Report)
            .where(Report.id == report_id, Report.status == ReportStatus.PROCESSING.value)
            .values(
                processing_step=step,
                processing_progress=case(
                    (Report.processing_progress < progress, progress),
                    else_=Report.processing_progress,
                ),
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            await session.commit()
        return result.rowcount == 1

    async def reclaim_stalled(
        self,
        report_id: str,
        stalled_before: datetime,
        patch: dict[str, Any] | None = None,
        now: datetime | None = None,
    ) -> bool:
        """Take over a processing report whose last write is older than ``stalled_before``.

        Only one concurrent caller can win: the winner's update refreshes
        ``updated_at``, so the second caller's staleness condition no longer holds.
        """
        now = now or datetime.now(UTC)
        stmt = (
            update(Report)
            .where(
                Report.id == report_id,
                Report.status == ReportStatus.PROCESSING.value,
                Report.updated_at < stalled_before,
            )
            .values(updated_at=now, **(patch or {}))
            .execution_options(synchronize_session=False)
        )
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            await session.commit()

        reclaimed = result.rowcount == 1
        if reclaimed:
            logger.warning("report_stall_reclaimed", report_id=report_id, stalled_before=stalled_before.isoformat())
        return reclaimed

    async def fail_stalled(
        self,
        stalled_before: datetime,
        step: str = "Error: generation stalled",
        now: datetime | None = None,
    ) -> list[str]:
        """Mark every processing report not written since ``stalled_before`` as failed.

        Returns:
            IDs of the reports that were failed
        """
        now = now or datetime.now(UTC)
        async with self.session_factory() as session:
            result = await session.execute(
                select(Report.id).where(
                    Report.status == ReportStatus.PROCESSING.value,
                    Report.updated_at < stalled_before,
                )
            )
            candidates = list(result.scalars().all())

        failed: list[str] = []
        for report_id in candidates:
            stmt = (
                update(Report)
                .where(
                    Report.id == report_id,
                    Report.status == ReportStatus.PROCESSING.value,
                    Report.updated_at < stalled_before,
                )
                .values(
                    status=ReportStatus.FAILED.value,
                    processing_step=step,
                    processing_progress=0,
                    error_kind="Timeout",
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            async with self.session_factory() as session:
                result = await session.execute(stmt)
                await session.commit()
            if result.rowcount == 1:
                failed.append(report_id)

        if failed:
            logger.warning("stalled_reports_failed", count=len(failed), report_ids=failed)
        return failed
