"""Report generation: trigger, AI call, parse, and the ready/failed write.

Only the caller that wins the ``-> processing`` transition runs ``generate``.
Everything that can go wrong while producing a report ends in a single
``processing -> failed`` write carrying a typed ``error_kind`` and a
diagnostic step; partial output is never persisted.
"""

import asyncio
import contextlib
import json
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

import structlog
from pydantic import ValidationError

from benchmarkai.core.config import get_settings
from benchmarkai.core.exceptions import (
    GenerationError,
    GenerationTimeoutError,
    MalformedOutputError,
    ReportNotEligibleError,
    ReportNotFoundError,
)
from benchmarkai.db.models.report import Report
from benchmarkai.lifecycle.schemas import REPORT_SCHEMAS, Plan, ReportInput, ReportStatus
from benchmarkai.lifecycle.state_machine import ReportStateMachine
from benchmarkai.services.ai_client import ReportAIClient
from benchmarkai.services.llm_helpers import _parse_json_response
from benchmarkai.services.prompts import build_generation_request

logger = structlog.get_logger(__name__)

# Advisory progress milestones
PROGRESS_STARTED = 5
PROGRESS_PROMPT_READY = 10
PROGRESS_AI_CALL = 30
PROGRESS_AI_CEILING = 85
PROGRESS_PARSED = 95
PROGRESS_DONE = 100
HEARTBEAT_STEP = 5

STEP_STARTED = "Initialising..."
STEP_DONE = "Done"


@dataclass(frozen=True)
class TriggerResult:
    started: bool
    status: ReportStatus
    message: str


def _start_patch() -> dict:
    return {
        "processing_step": STEP_STARTED,
        "processing_progress": PROGRESS_STARTED,
        "error_kind": None,
        "generation_attempts": Report.generation_attempts + 1,
    }


def parse_report_output(raw: str, plan: Plan) -> dict:
    """Strip fences, parse JSON and validate it against the tier's schema.

    Raises:
        MalformedOutputError: invalid JSON, non-object JSON, or missing required sections
    """
    try:
        parsed = _parse_json_response(raw)
    except (json.JSONDecodeError, ValueError) as exc:
        raise MalformedOutputError(f"AI output is not valid JSON: {exc}") from exc

    if not isinstance(parsed, dict):
        raise MalformedOutputError(f"AI output is a JSON {type(parsed).__name__}, expected an object")

    try:
        report = REPORT_SCHEMAS[plan].model_validate(parsed)
    except ValidationError as exc:
        raise MalformedOutputError(
            f"AI output does not match the {plan.value} report schema ({exc.error_count()} errors)"
        ) from exc

    return report.model_dump(mode="json", by_alias=True)


class ReportGenerator:
    """Runs one report through the AI service and records the outcome."""

    def __init__(
        self,
        state_machine: ReportStateMachine,
        ai_client: ReportAIClient,
        timeout_seconds: float | None = None,
        heartbeat_seconds: float | None = None,
        stall_threshold_seconds: float | None = None,
    ):
        settings = get_settings()
        self.state_machine = state_machine
        self.ai_client = ai_client
        self.timeout_seconds = timeout_seconds or settings.generation_timeout_seconds
        self.heartbeat_seconds = heartbeat_seconds or settings.progress_heartbeat_seconds
        self.stall_threshold_seconds = stall_threshold_seconds or settings.stall_threshold_seconds

    async def trigger(
        self,
        report_id: str,
        user_id: str | None = None,
        now: datetime | None = None,
    ) -> TriggerResult:
        """Move a paid or failed report to processing.

        Idempotent: a ready report or one already processing is left alone,
        except that a processing report whose last write is older than the
        stall threshold is reclaimed (at most one concurrent caller wins).

        Raises:
            ReportNotFoundError: no such report (for this user)
            ReportNotEligibleError: report is draft (unpaid) or abandoned
        """
        now = now or datetime.now(UTC)
        report = await self.state_machine.get_report(report_id, user_id=user_id)
        if report is None:
            raise ReportNotFoundError(report_id)

        status = ReportStatus(report.status)
        if status == ReportStatus.DRAFT:
            raise ReportNotEligibleError(report_id, status.value, "Payment required before generation")
        if status == ReportStatus.ABANDONED:
            raise ReportNotEligibleError(report_id, status.value, "Report was abandoned")
        if status == ReportStatus.READY:
            return TriggerResult(started=False, status=status, message="Report already ready")

        if status == ReportStatus.PROCESSING:
            stalled_before = now - timedelta(seconds=self.stall_threshold_seconds)
            if await self.state_machine.reclaim_stalled(report_id, stalled_before, patch=_start_patch(), now=now):
                return TriggerResult(started=True, status=status, message="Stalled generation restarted")
            return TriggerResult(started=False, status=status, message="Report already processing")

        started = await self.state_machine.transition(
            report_id,
            [ReportStatus.PAID, ReportStatus.FAILED],
            ReportStatus.PROCESSING,
            patch=_start_patch(),
            user_id=user_id,
            now=now,
        )
        if not started:
            current = await self.state_machine.get_status(report_id)
            logger.info("report_trigger_lost_race", report_id=report_id, status=current.value if current else None)
            return TriggerResult(started=False, status=current, message="Report state changed concurrently")

        logger.info("report_generation_triggered", report_id=report_id, from_status=status.value)
        return TriggerResult(started=True, status=ReportStatus.PROCESSING, message="Generation started")

    async def generate(self, report_id: str) -> ReportStatus:
        """Produce the report and write ready or failed.

        A paid or failed report is moved to processing first. A ready report
        is never touched. If the report leaves processing while the AI call
        is in flight (e.g. abandoned), the result is discarded.

        Returns:
            The report status after this run

        Raises:
            ReportNotFoundError: no such report
            ReportNotEligibleError: report is draft or abandoned
        """
        report = await self.state_machine.get_report(report_id)
        if report is None:
            raise ReportNotFoundError(report_id)

        status = ReportStatus(report.status)
        if status == ReportStatus.READY:
            logger.info("report_generation_skipped_already_ready", report_id=report_id)
            return status
        if status in (ReportStatus.DRAFT, ReportStatus.ABANDONED):
            raise ReportNotEligibleError(report_id, status.value)
        if status in (ReportStatus.PAID, ReportStatus.FAILED):
            started = await self.state_machine.transition(
                report_id,
                [ReportStatus.PAID, ReportStatus.FAILED],
                ReportStatus.PROCESSING,
                patch=_start_patch(),
            )
            if not started:
                return await self.state_machine.get_status(report_id)

        plan = Plan(report.plan)
        log = logger.bind(report_id=report_id, plan=plan.value)
        started_at = datetime.now(UTC)
        log.info("report_generation_started", attempt=(report.generation_attempts or 0) + 1)

        try:
            output = await self._produce(report_id, plan, report.input_data)
        except GenerationError as exc:
            log.warning("report_generation_failed", error_kind=exc.kind, error=exc.message)
            return await self._fail(report_id, exc.kind, exc.message)
        except Exception as exc:
            log.error(
                "report_generation_crashed",
                error=str(exc),
                error_type=type(exc).__name__,
                exc_info=True,
            )
            return await self._fail(report_id, "InternalError", "Unexpected error during generation")

        output["report_metadata"] = {
            "title": output.get("title"),
            "generated_date": datetime.now(UTC).date().isoformat(),
            "business_name": report.input_data.get("businessName"),
            "sector": report.input_data.get("sector"),
            "tier": plan.value,
        }

        completed_at = datetime.now(UTC)
        completed = await self.state_machine.transition(
            report_id,
            ReportStatus.PROCESSING,
            ReportStatus.READY,
            patch={
                "output_data": output,
                "completed_at": completed_at,
                "processing_step": STEP_DONE,
                "processing_progress": PROGRESS_DONE,
                "error_kind": None,
            },
            now=completed_at,
        )
        if not completed:
            current = await self.state_machine.get_status(report_id)
            log.warning("report_generation_result_discarded", status=current.value if current else None)
            return current

        log.info(
            "report_generation_completed",
            duration_seconds=round((completed_at - started_at).total_seconds(), 2),
        )
        return ReportStatus.READY

    async def run(self, report_id: str) -> ReportStatus | None:
        """Background entry point: ``generate`` with every exception contained."""
        try:
            return await self.generate(report_id)
        except Exception as exc:
            logger.error(
                "report_generation_run_failed",
                report_id=report_id,
                error=str(exc),
                error_type=type(exc).__name__,
                exc_info=True,
            )
            return None

    async def _produce(self, report_id: str, plan: Plan, input_data: dict) -> dict:
        try:
            report_input = ReportInput.model_validate(input_data)
        except ValidationError as exc:
            raise GenerationError(f"Questionnaire data is invalid ({exc.error_count()} errors)") from exc

        request = build_generation_request(report_input, plan)
        await self.state_machine.update_progress(report_id, "Preparing analysis", PROGRESS_PROMPT_READY)
        await self.state_machine.update_progress(report_id, "Generating report", PROGRESS_AI_CALL)

        heartbeat = asyncio.create_task(self._heartbeat(report_id))
        try:
            raw = await asyncio.wait_for(self.ai_client.complete(request), timeout=self.timeout_seconds)
        except asyncio.TimeoutError as exc:
            raise GenerationTimeoutError(
                f"Generation timed out after {int(self.timeout_seconds)} seconds"
            ) from exc
        finally:
            heartbeat.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await heartbeat

        output = parse_report_output(raw, plan)
        await self.state_machine.update_progress(report_id, "Finalising report", PROGRESS_PARSED)
        return output

    async def _heartbeat(self, report_id: str) -> None:
        """Keep ``updated_at`` fresh during the AI call so stall detection does not misfire."""
        progress = PROGRESS_AI_CALL
        while True:
            await asyncio.sleep(self.heartbeat_seconds)
            progress = min(progress + HEARTBEAT_STEP, PROGRESS_AI_CEILING)
            try:
                await self.state_machine.update_progress(report_id, "Generating report", progress)
            except Exception as exc:
                # Missing one heartbeat only risks a stall reclaim; the AI call keeps going
                logger.warning(
                    "report_heartbeat_failed",
                    report_id=report_id,
                    error=str(exc),
                    error_type=type(exc).__name__,
                )

    async def _fail(self, report_id: str, kind: str, message: str) -> ReportStatus:
        failed = await self.state_machine.transition(
            report_id,
            ReportStatus.PROCESSING,
            ReportStatus.FAILED,
            patch={
                "processing_step": f"Error: {message}",
                "processing_progress": 0,
                "error_kind": kind,
            },
        )
        if not failed:
            current = await self.state_machine.get_status(report_id)
            logger.warning("report_failure_not_recorded", report_id=report_id, status=current.value if current else None)
            return current
        return ReportStatus.FAILED
