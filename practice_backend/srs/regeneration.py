"""Batch regeneration of every device's review queue.

Overlapping triggers (timer ticks, repeated "regenerate now" calls) share a
single in-flight run. One device failing never stops the batch; it is
logged and picked up again on the next run. A run that fails outright is
recorded as failed, counted in metrics and reported to the alert webhook.
"""

import asyncio
import logging
import threading
import time
import traceback
from collections.abc import Awaitable, Callable
from concurrent.futures import Future
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Generic, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from practice_backend.config import SchedulerConfig, settings, utcnow
from practice_backend.database import async_session
from practice_backend.metrics import emit_metric
from practice_backend.models.job_run import JobRun
from practice_backend.notifier import JobFailureNotification, JobNotifier
from practice_backend.srs.catalog import SqlTaskCatalog, TaskCatalog
from practice_backend.srs.queue import build_queue
from practice_backend.srs.state_store import list_device_ids

logger = logging.getLogger(__name__)

T = TypeVar("T")

JOB_NAME = "regenerate_queues"
METRIC_DURATION = "background_job_duration_ms"
METRIC_FAILURE_TOTAL = "background_job_failure_total"


class SingleFlight(Generic[T]):
    """Run at most one call at a time; overlapping callers await the same result.

    The in-flight handle is a ``concurrent.futures.Future`` guarded by a
    thread lock, so callers on other threads or event loops can join too.
    The call itself runs in its own task: cancelling or timing out one
    caller never cancels the shared run or the other callers.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._inflight: Future[T] | None = None
        self._runner: asyncio.Task | None = None

    @property
    def in_flight(self) -> bool:
        with self._lock:
            return self._inflight is not None

    async def run(self, func: Callable[[], Awaitable[T]]) -> T:
        with self._lock:
            future = self._inflight
            is_leader = future is None
            if is_leader:
                future = Future()
                # A running future can no longer be cancelled by a caller.
                future.set_running_or_notify_cancel()
                self._inflight = future

        if is_leader:
            self._runner = asyncio.ensure_future(self._drive(func, future))
        else:
            logger.debug("Joining in-flight run")
        return await asyncio.shield(asyncio.wrap_future(future))

    async def _drive(self, func: Callable[[], Awaitable[T]], future: Future) -> None:
        try:
            result = await func()
        except BaseException as exc:
            self._release()
            future.set_exception(exc)
            if not isinstance(exc, Exception):
                raise
        else:
            self._release()
            future.set_result(result)

    def _release(self) -> None:
        with self._lock:
            self._inflight = None


@dataclass
class RegenerationSummary:
    """Outcome of one regeneration run."""

    enabled: bool
    devices: int = 0
    rebuilt: int = 0
    failed: int = 0
    failed_devices: list[str] = field(default_factory=list)
    duration_ms: float = 0.0
    job_run_id: int | None = None


def _serialise_error(error: BaseException) -> dict:
    return {
        "name": type(error).__name__,
        "message": str(error),
        "stack": "".join(traceback.format_exception(error)),
    }


class QueueRegenerator:
    """Rebuilds the queue of every device that has scheduling state."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        config: SchedulerConfig,
        catalog_factory: Callable[[AsyncSession], TaskCatalog] = SqlTaskCatalog,
        notifier: JobNotifier | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.config = config
        self.catalog_factory = catalog_factory
        self.notifier = notifier or JobNotifier(None)
        self._flight: SingleFlight[RegenerationSummary] = SingleFlight()

    @property
    def is_running(self) -> bool:
        return self._flight.in_flight

    async def regenerate_all(
        self,
        triggered_by: str | None = None,
        reason: str | None = None,
    ) -> RegenerationSummary:
        """Rebuild all device queues, or join the run already in progress.

        Cancelling the caller (e.g. a timeout) abandons the wait, not the run.
        Returns a summary with ``enabled=False`` when the adaptive queue is off.
        """
        if not self.config.adaptive_enabled:
            logger.info("Adaptive queue disabled; skipping queue regeneration")
            return RegenerationSummary(enabled=False)
        return await self._flight.run(lambda: self._run(triggered_by, reason))

    async def _run(self, triggered_by: str | None, reason: str | None) -> RegenerationSummary:
        started_at = utcnow()
        started = time.perf_counter()
        job_run_id = await self._start_job(started_at, triggered_by, reason)
        logger.info("Queue regeneration started (run %d, triggered by %s)", job_run_id, triggered_by)

        try:
            async with self.session_factory() as session:
                device_ids = await list_device_ids(session)

            summary = RegenerationSummary(enabled=True, devices=len(device_ids), job_run_id=job_run_id)
            for device_id in device_ids:
                if await self._regenerate_device(device_id):
                    summary.rebuilt += 1
                else:
                    summary.failed += 1
                    summary.failed_devices.append(device_id)
            summary.duration_ms = (time.perf_counter() - started) * 1000
        except BaseException as exc:
            duration_ms = (time.perf_counter() - started) * 1000
            logger.exception("Queue regeneration run %d failed after %.0f ms", job_run_id, duration_ms)
            await asyncio.shield(self._record_failure(job_run_id, started_at, duration_ms, exc))
            raise

        emit_metric(METRIC_DURATION, summary.duration_ms, job=JOB_NAME, status="success")
        await self._finish_job(job_run_id, "success", summary.duration_ms, stats=asdict(summary))
        logger.info(
            "Queue regeneration run %d finished: %d/%d devices rebuilt, %d failed in %.0f ms",
            job_run_id,
            summary.rebuilt,
            summary.devices,
            summary.failed,
            summary.duration_ms,
        )
        return summary

    async def _regenerate_device(self, device_id: str) -> bool:
        try:
            async with self.session_factory() as session:
                await build_queue(session, device_id, self.config, catalog=self.catalog_factory(session))
        except Exception:
            logger.exception("Failed to regenerate queue for device %s", device_id)
            return False
        return True

    async def _record_failure(
        self,
        job_run_id: int,
        started_at: datetime,
        duration_ms: float,
        exc: BaseException,
    ) -> None:
        emit_metric(METRIC_DURATION, duration_ms, job=JOB_NAME, status="failed")
        emit_metric(METRIC_FAILURE_TOTAL, 1, job=JOB_NAME)

        error = _serialise_error(exc)
        try:
            await self._finish_job(job_run_id, "failed", duration_ms, error=error)
        except Exception:
            logger.exception("Could not mark job run %d as failed", job_run_id)

        await self.notifier.notify_failure(
            JobFailureNotification(
                job_name=JOB_NAME,
                started_at=started_at,
                finished_at=utcnow(),
                duration_ms=duration_ms,
                error=error,
            )
        )

    async def _start_job(self, started_at: datetime, triggered_by: str | None, reason: str | None) -> int:
        async with self.session_factory() as session:
            run = JobRun(
                job_name=JOB_NAME,
                status="running",
                started_at=started_at,
                triggered_by=triggered_by,
                reason=reason,
                stats={"triggered_by": triggered_by, "reason": reason},
            )
            session.add(run)
            await session.flush()
            run_id = run.id
            await session.commit()
            return run_id

    async def _finish_job(
        self,
        job_run_id: int,
        status: str,
        duration_ms: float,
        stats: dict | None = None,
        error: dict | None = None,
    ) -> None:
        async with self.session_factory() as session:
            run = await session.get(JobRun, job_run_id)
            if run is None:
                logger.warning("Job run %d disappeared before it could be finished", job_run_id)
                return
            run.status = status
            run.finished_at = utcnow()
            run.duration_ms = duration_ms
            if stats is not None:
                run.stats = stats
            run.error = error
            await session.commit()


# Lazy singleton so every trigger in the process shares one single-flight guard.
_regenerator: QueueRegenerator | None = None


def get_regenerator() -> QueueRegenerator:
    """Return the process-wide QueueRegenerator, creating it on first call."""
    global _regenerator
    if _regenerator is None:
        _regenerator = QueueRegenerator(
            async_session,
            SchedulerConfig.from_settings(settings),
            notifier=JobNotifier(settings.job_alert_webhook_url),
        )
    return _regenerator
