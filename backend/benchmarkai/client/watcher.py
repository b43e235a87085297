"""Client Lifecycle Watcher: drives a report from the payment return page to a terminal state.

verify payment -> trigger if needed -> poll until ready/failed, with
monotonic displayed progress, a hard client-side timeout, one automatic
re-trigger for a stalled report, manual retry, and abandonment on close.

Exactly one polling task exists at a time. Every path that stops or
restarts polling goes through ``_cancel_polling`` first.
"""

import asyncio
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Callable, Protocol

import structlog

from benchmarkai.client.api import ApiRequestError
from benchmarkai.domain.progress import ProgressHighWaterMark, synthetic_progress

logger = structlog.get_logger(__name__)


class WatcherPhase(str, Enum):
    VERIFYING = "verifying"
    VERIFIED = "verified"
    GENERATING = "generating"
    READY = "ready"
    FAILED = "failed"
    ERROR = "error"
    ABANDONED = "abandoned"


# Phases in which leaving the page abandons the report
ACTIVE_PHASES = {WatcherPhase.VERIFYING, WatcherPhase.VERIFIED, WatcherPhase.GENERATING}


class LifecycleApi(Protocol):
    async def verify_payment(self, session_id: str) -> dict: ...

    async def trigger_generation(self, report_id: str) -> dict: ...

    async def poll_report(self, report_id: str) -> dict: ...

    async def abandon_report(self, report_id: str) -> dict: ...


@dataclass
class WatcherConfig:
    poll_interval: float = 3.0
    max_wait: float = 360.0
    stall_threshold: float = 120.0
    verified_progress: int = 20
    triggered_progress: int = 30
    processing_progress: int = 40
    synthetic_start: int = 30
    synthetic_cap: int = 95
    retry_floor: int = 30


@dataclass(frozen=True)
class WatcherState:
    phase: WatcherPhase
    progress: int
    report_id: str | None = None
    report_status: str | None = None
    step: str | None = None
    message: str | None = None
    output_data: dict | None = field(default=None, repr=False)


class ReportLifecycleWatcher:
    """One watcher per payment return page visit."""

    def __init__(
        self,
        api: LifecycleApi,
        config: WatcherConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] = lambda: datetime.now(UTC),
        on_change: Callable[[WatcherState], Any] | None = None,
    ):
        self.api = api
        self.config = config or WatcherConfig()
        self._clock = clock
        self._now = now
        self._on_change = on_change

        self._progress = ProgressHighWaterMark()
        self._phase = WatcherPhase.VERIFYING
        self._report_id: str | None = None
        self._report_status: str | None = None
        self._step: str | None = None
        self._message: str | None = None
        self._output: dict | None = None

        self._poll_task: asyncio.Task | None = None
        self._poll_started_at = 0.0
        self._stall_retriggered = False

    @property
    def state(self) -> WatcherState:
        return WatcherState(
            phase=self._phase,
            progress=self._progress.value,
            report_id=self._report_id,
            report_status=self._report_status,
            step=self._step,
            message=self._message,
            output_data=self._output,
        )

    @property
    def stall_retriggered(self) -> bool:
        return self._stall_retriggered

    @property
    def polling(self) -> bool:
        return self._poll_task is not None and not self._poll_task.done()

    async def start(self, session_id: str) -> WatcherState:
        """Verify the checkout session and start generation or polling as needed."""
        self._set(WatcherPhase.VERIFYING)
        try:
            result = await self.api.verify_payment(session_id)
        except ApiRequestError as exc:
            self._set(WatcherPhase.ERROR, message=exc.message)
            return self.state

        self._report_id = result.get("reportId")
        if not result.get("paid"):
            self._set(WatcherPhase.ERROR, message="Payment has not been confirmed")
            return self.state

        status = result.get("reportStatus")
        self._report_status = status
        self._progress.offer(self.config.verified_progress)
        self._set(WatcherPhase.VERIFIED)

        if status == "ready":
            await self._load_ready_report()
        elif status == "failed":
            self._set(WatcherPhase.FAILED, message="Generation failed. You can retry.")
        elif status == "paid":
            await self._trigger(raise_errors=False)
            self._progress.offer(self.config.triggered_progress)
            self._start_polling()
        elif status == "processing":
            self._progress.offer(self.config.processing_progress)
            self._start_polling()
        else:
            self._set(WatcherPhase.ERROR, message=f"Report cannot be generated (status: {status})")
        return self.state

    async def retry(self) -> WatcherState:
        """Manual retry after a failure or a client-side timeout. Never asks for payment again.

        A no-op outside the failed phase, so a running or finished report keeps
        its displayed progress.
        """
        if self._phase != WatcherPhase.FAILED:
            logger.info("report_retry_ignored", report_id=self._report_id, phase=self._phase.value)
            return self.state

        self._cancel_polling()
        try:
            await self._trigger(raise_errors=True)
        except ApiRequestError as exc:
            self._set(WatcherPhase.FAILED, message=exc.message)
            return self.state

        self._progress.reset(self.config.retry_floor)
        self._message = None
        self._start_polling()
        return self.state

    async def close(self) -> WatcherState:
        """Stop polling; abandon the report if the user leaves mid-flight."""
        self._cancel_polling()
        if self._phase in ACTIVE_PHASES and self._report_id is not None:
            try:
                await self.api.abandon_report(self._report_id)
            except ApiRequestError as exc:
                logger.info("report_abandon_failed", report_id=self._report_id, error=exc.message)
            self._set(WatcherPhase.ABANDONED)
        return self.state

    async def wait(self) -> WatcherState:
        """Wait for the current polling task to finish."""
        task = self._poll_task
        if task is not None:
            try:
                await task
            except asyncio.CancelledError:
                pass
        return self.state

    # ── polling ─────────────────────────────────────────────────────

    def _start_polling(self) -> None:
        self._cancel_polling()
        self._poll_started_at = self._clock()
        self._set(WatcherPhase.GENERATING)
        self._poll_task = asyncio.create_task(self._poll_loop())

    def _cancel_polling(self) -> None:
        task, self._poll_task = self._poll_task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def _poll_loop(self) -> None:
        while True:
            elapsed = self._clock() - self._poll_started_at
            if elapsed >= self.config.max_wait:
                logger.warning("report_watch_timed_out", report_id=self._report_id, elapsed_seconds=round(elapsed, 1))
                self._set(WatcherPhase.FAILED, message="Generation is taking longer than expected. You can retry.")
                return

            try:
                snapshot = await self.api.poll_report(self._report_id)
            except ApiRequestError as exc:
                logger.info("report_poll_failed", report_id=self._report_id, error=exc.message)
            else:
                if await self._apply(snapshot, elapsed):
                    return

            await asyncio.sleep(self.config.poll_interval)

    async def _apply(self, snapshot: dict, elapsed: float) -> bool:
        """Fold one poll result into the displayed state. Returns True when polling should stop."""
        status = snapshot.get("status")
        self._report_status = status
        self._step = snapshot.get("processingStep") or self._step

        if status == "ready":
            self._output = snapshot.get("outputData")
            self._progress.offer(100)
            self._set(WatcherPhase.READY)
            return True
        if status == "failed":
            self._set(WatcherPhase.FAILED, message=snapshot.get("processingStep") or "Generation failed")
            return True
        if status == "abandoned":
            self._set(WatcherPhase.ABANDONED)
            return True

        server_progress = snapshot.get("processingProgress")
        if status == "processing" and server_progress:
            # Only a ready report is ever shown complete
            self._progress.offer(min(server_progress, 99))
        else:
            self._progress.offer(
                synthetic_progress(
                    elapsed,
                    self.config.max_wait,
                    start=self.config.synthetic_start,
                    cap=self.config.synthetic_cap,
                )
            )
        self._notify()

        if status in ("paid", "processing") and not self._stall_retriggered and self._is_stalled(snapshot):
            self._stall_retriggered = True
            logger.warning("report_stall_detected", report_id=self._report_id, status=status)
            await self._trigger(raise_errors=False)
        return False

    def _is_stalled(self, snapshot: dict) -> bool:
        updated_at = snapshot.get("updatedAt")
        if not updated_at:
            return False
        last_write = datetime.fromisoformat(updated_at.replace("Z", "+00:00"))
        if last_write.tzinfo is None:
            last_write = last_write.replace(tzinfo=UTC)
        return (self._now() - last_write).total_seconds() > self.config.stall_threshold

    # ── helpers ─────────────────────────────────────────────────────

    async def _trigger(self, raise_errors: bool) -> None:
        try:
            await self.api.trigger_generation(self._report_id)
        except ApiRequestError as exc:
            logger.info("report_trigger_failed", report_id=self._report_id, error=exc.message)
            if raise_errors:
                raise

    async def _load_ready_report(self) -> None:
        try:
            snapshot = await self.api.poll_report(self._report_id)
            self._output = snapshot.get("outputData")
        except ApiRequestError as exc:
            logger.info("report_fetch_failed", report_id=self._report_id, error=exc.message)
        self._progress.offer(100)
        self._set(WatcherPhase.READY)

    def _set(self, phase: WatcherPhase, message: str | None = None) -> None:
        self._phase = phase
        if message is not None:
            self._message = message
        self._notify()

    def _notify(self) -> None:
        if self._on_change is not None:
            self._on_change(self.state)
