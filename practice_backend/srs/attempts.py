"""Attempt processing: applies one practice outcome to a task's scheduling state.

Each attempt moves the task one Leitner box up (correct) or down
(incorrect), refreshes the running aggregates and derived weights, and
reschedules the task. The device's cached queue is then marked stale so
the next read rebuilds it.
"""

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from practice_backend.config import SchedulerConfig, to_naive_utc, utcnow
from practice_backend.models.scheduling_state import PracticeResult, SchedulingState
from practice_backend.srs.cache import invalidate_queue
from practice_backend.srs.catalog import SqlTaskCatalog, TaskCatalog
from practice_backend.srs.priority import (
    MAX_BOX,
    PriorityInputs,
    compute_accuracy_weight,
    compute_latency_weight,
    compute_next_due_date,
    compute_priority_score,
    compute_stability_weight,
)
from practice_backend.srs.queue import DEFAULT_LEVEL, ensure_minimum_states
from practice_backend.srs.state_store import get_state

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PracticeAttempt:
    """A single practice outcome reported by a device."""

    device_id: str
    task_id: str
    result: PracticeResult | str
    response_ms: float
    level: str | None = None
    user_id: int | None = None
    practiced_at: datetime | None = None


@dataclass(frozen=True)
class AttemptUpdate:
    """New scheduling values for a task after one attempt."""

    box: int
    total_attempts: int
    correct_attempts: int
    average_response_ms: float
    accuracy_weight: float
    latency_weight: float
    stability_weight: float
    priority_score: float
    due_at: datetime


@dataclass(frozen=True)
class AttemptOutcome:
    """What a recorded attempt changed, detached from the database session."""

    device_id: str
    task_id: str
    result: PracticeResult
    previous_box: int
    previous_due_at: datetime | None
    update: AttemptUpdate
    practiced_at: datetime


def compute_attempt_update(
    previous: SchedulingState | None,
    result: PracticeResult,
    response_ms: float,
    practiced_at: datetime,
) -> AttemptUpdate:
    """Fold one attempt into the previous state (or a blank box-1 state)."""
    previous_box = previous.box if previous else 1
    previous_total = previous.total_attempts if previous else 0
    previous_correct = previous.correct_attempts if previous else 0
    previous_average = previous.average_response_ms if previous else 0.0

    total_attempts = previous_total + 1
    correct_attempts = previous_correct + (1 if result == PracticeResult.CORRECT else 0)
    average_response_ms = (previous_average * previous_total + response_ms) / total_attempts

    if result == PracticeResult.CORRECT:
        box = min(MAX_BOX, previous_box + 1)
    else:
        box = max(1, previous_box - 1)

    accuracy_weight = compute_accuracy_weight(total_attempts, correct_attempts)
    latency_weight = compute_latency_weight(average_response_ms)
    stability_weight = compute_stability_weight(box, total_attempts)
    due_at = compute_next_due_date(box, practiced_at)
    priority_score = compute_priority_score(
        PriorityInputs(
            accuracy_weight=accuracy_weight,
            latency_weight=latency_weight,
            stability_weight=stability_weight,
            box=box,
            due_at=due_at,
            now=practiced_at,
        )
    )

    return AttemptUpdate(
        box=box,
        total_attempts=total_attempts,
        correct_attempts=correct_attempts,
        average_response_ms=average_response_ms,
        accuracy_weight=accuracy_weight,
        latency_weight=latency_weight,
        stability_weight=stability_weight,
        priority_score=priority_score,
        due_at=due_at,
    )


async def _write_attempt(
    session: AsyncSession,
    attempt: PracticeAttempt,
    result: PracticeResult,
    response_ms: float,
    practiced_at: datetime,
) -> AttemptOutcome:
    existing = await get_state(session, attempt.device_id, attempt.task_id)
    update = compute_attempt_update(existing, result, response_ms, practiced_at)
    values = {
        "box": update.box,
        "total_attempts": update.total_attempts,
        "correct_attempts": update.correct_attempts,
        "average_response_ms": update.average_response_ms,
        "accuracy_weight": update.accuracy_weight,
        "latency_weight": update.latency_weight,
        "stability_weight": update.stability_weight,
        "priority_score": update.priority_score,
        "due_at": update.due_at,
        "last_result": result.value,
        "last_practiced_at": practiced_at,
        "updated_at": practiced_at,
    }

    if existing is not None:
        previous_box, previous_due_at = existing.box, existing.due_at
        for key, value in values.items():
            setattr(existing, key, value)
        existing.level = attempt.level or existing.level or DEFAULT_LEVEL
        if attempt.user_id is not None:
            existing.user_id = attempt.user_id
    else:
        previous_box, previous_due_at = 1, None
        session.add(
            SchedulingState(
                device_id=attempt.device_id,
                task_id=attempt.task_id,
                user_id=attempt.user_id,
                level=attempt.level or DEFAULT_LEVEL,
                created_at=practiced_at,
                **values,
            )
        )

    await session.commit()
    return AttemptOutcome(
        device_id=attempt.device_id,
        task_id=attempt.task_id,
        result=result,
        previous_box=previous_box,
        previous_due_at=previous_due_at,
        update=update,
        practiced_at=practiced_at,
    )


async def record_attempt(
    session: AsyncSession,
    attempt: PracticeAttempt,
    config: SchedulerConfig,
    catalog: TaskCatalog | None = None,
) -> AttemptOutcome:
    """Record a practice attempt and mark the device's queue stale.

    The state read-modify-write is retried when a concurrent submission for
    the same (device, task) wins the race. If it still cannot be written the
    error propagates and nothing is recorded.

    Backfill and queue invalidation run afterwards; if they fail the attempt
    stays recorded and the cached queue simply lives until its TTL.

    Args:
        session: Database session.
        attempt: The practice outcome to apply.
        config: Scheduler configuration.
        catalog: Backfill source (defaults to the tasks table).

    Returns:
        An AttemptOutcome describing the new scheduling state.
    """
    result = PracticeResult(attempt.result)
    response_ms = max(0.0, float(attempt.response_ms))
    practiced_at = to_naive_utc(attempt.practiced_at) if attempt.practiced_at else utcnow()

    retrying = AsyncRetrying(
        stop=stop_after_attempt(config.max_write_retries),
        wait=wait_exponential(multiplier=0.01, max=0.2),
        retry=retry_if_exception_type((StaleDataError, IntegrityError)),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    async for retry_state in retrying:
        with retry_state:
            try:
                outcome = await _write_attempt(session, attempt, result, response_ms, practiced_at)
            except SQLAlchemyError:
                await session.rollback()
                raise

    logger.info(
        "Recorded %s attempt for device %s task %s: box %d -> %d",
        result.value,
        attempt.device_id,
        attempt.task_id,
        outcome.previous_box,
        outcome.update.box,
    )

    try:
        if config.adaptive_enabled:
            await ensure_minimum_states(
                session,
                catalog or SqlTaskCatalog(session),
                attempt.device_id,
                config,
                level_hint=attempt.level,
                now=practiced_at,
            )
        await invalidate_queue(session, attempt.device_id, practiced_at)
        await session.commit()
    except SQLAlchemyError:
        await session.rollback()
        logger.exception(
            "Attempt for device %s recorded, but backfill/invalidation failed; queue stays cached until TTL",
            attempt.device_id,
        )

    return outcome
