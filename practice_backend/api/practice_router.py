"""API routes for practice submissions and adaptive queues."""

import asyncio
import logging
from collections.abc import Awaitable
from dataclasses import asdict
from typing import TypeVar

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from practice_backend.api.schemas import (
    PracticeSubmission,
    PracticeSubmissionResponse,
    QueueItemResponse,
    QueueMetrics,
    QueueResponse,
    RegenerationResponse,
)
from practice_backend.config import SchedulerConfig, settings
from practice_backend.database import get_session
from practice_backend.srs.attempts import PracticeAttempt, record_attempt
from practice_backend.srs.cache import get_or_build_queue
from practice_backend.srs.fallback import rank_fallback
from practice_backend.srs.regeneration import QueueRegenerator, get_regenerator

logger = logging.getLogger(__name__)

T = TypeVar("T")

router = APIRouter(prefix="/api", tags=["practice"])


def get_scheduler_config() -> SchedulerConfig:
    """Read the scheduler configuration once per request."""
    return SchedulerConfig.from_settings(settings)


async def _timeboxed_read(read: Awaitable[T], device_id: str) -> T:
    """Await a queue read within ``read_timeout_seconds``, mapping failures to HTTP errors."""
    try:
        return await asyncio.wait_for(read, timeout=settings.read_timeout_seconds)
    except TimeoutError:
        logger.warning("Queue read for device %s timed out", device_id)
        raise HTTPException(status_code=504, detail="Queue generation timed out") from None
    except SQLAlchemyError:
        logger.exception("Queue read for device %s failed", device_id)
        raise HTTPException(status_code=503, detail="Queue is temporarily unavailable") from None


@router.post("/practice", response_model=PracticeSubmissionResponse)
async def submit_practice(
    submission: PracticeSubmission,
    db: AsyncSession = Depends(get_session),
    config: SchedulerConfig = Depends(get_scheduler_config),
) -> PracticeSubmissionResponse:
    """Record a practice result and reschedule the task."""
    attempt = PracticeAttempt(
        device_id=submission.device_id,
        task_id=submission.task_id,
        result=submission.result,
        response_ms=submission.response_ms,
        level=submission.level,
        user_id=submission.user_id,
        practiced_at=submission.practiced_at,
    )
    try:
        outcome = await record_attempt(db, attempt, config)
    except SQLAlchemyError:
        logger.exception("Could not record attempt for device %s", submission.device_id)
        raise HTTPException(status_code=503, detail="Practice attempt could not be recorded") from None

    update = outcome.update
    return PracticeSubmissionResponse(
        device_id=outcome.device_id,
        task_id=outcome.task_id,
        result=outcome.result,
        previous_box=outcome.previous_box,
        box=update.box,
        total_attempts=update.total_attempts,
        correct_attempts=update.correct_attempts,
        average_response_ms=update.average_response_ms,
        priority_score=update.priority_score,
        due_at=update.due_at,
    )


@router.get("/queue/{device_id}", response_model=QueueResponse)
async def read_queue(
    device_id: str,
    level: str | None = None,
    db: AsyncSession = Depends(get_session),
    config: SchedulerConfig = Depends(get_scheduler_config),
) -> QueueResponse:
    """Return the device's queue, rebuilding it first if it is stale."""
    if not config.adaptive_enabled:
        ranked = await _timeboxed_read(
            rank_fallback(db, device_id, limit=config.max_queue_items, level_hint=level), device_id
        )
        return QueueResponse(
            enabled=False,
            device_id=device_id,
            items=[
                QueueItemResponse(task_id=task.task_id, priority=task.priority, due_at=task.due_at)
                for task in ranked
            ],
        )

    queue = await _timeboxed_read(get_or_build_queue(db, device_id, config, level_hint=level), device_id)
    return QueueResponse(
        enabled=True,
        device_id=device_id,
        version=queue.version,
        generated_at=queue.generated_at,
        valid_until=queue.valid_until,
        items=[QueueItemResponse(**item) for item in queue.items],
        metrics=QueueMetrics(
            generation_duration_ms=queue.generation_duration_ms,
            item_count=queue.item_count,
        ),
    )


@router.post("/queue/regenerate", response_model=RegenerationResponse)
async def regenerate_queues(
    reason: str | None = None,
    regenerator: QueueRegenerator = Depends(get_regenerator),
) -> RegenerationResponse:
    """Rebuild every device's queue, joining a run already in progress."""
    summary = await regenerator.regenerate_all(triggered_by="api", reason=reason)
    return RegenerationResponse(**asdict(summary))
