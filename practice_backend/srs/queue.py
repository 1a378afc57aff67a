"""Queue building for adaptive practice.

Seeds a device with starter tasks when it knows too few, scores every
scheduling state it has, ranks the result and stores it as the device's
cached review queue.
"""

import logging
import time
import uuid
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from practice_backend.config import SchedulerConfig, utcnow
from practice_backend.database import dialect_insert
from practice_backend.models.review_queue import ReviewQueue
from practice_backend.models.scheduling_state import SchedulingState
from practice_backend.srs.catalog import SqlTaskCatalog, TaskCatalog
from practice_backend.srs.priority import (
    PriorityInputs,
    compute_accuracy_weight,
    compute_latency_weight,
    compute_next_due_date,
    compute_predicted_interval_minutes,
    compute_priority_score,
    compute_stability_weight,
)
from practice_backend.srs.state_store import (
    insert_missing_states,
    known_task_ids,
    list_device_states,
    refresh_priority,
)

logger = logging.getLogger(__name__)

DEFAULT_LEVEL = "A1"
CANDIDATE_OVERFETCH = 4
PRIORITY_DRIFT_TOLERANCE = 1e-4


@dataclass(frozen=True)
class QueueItem:
    """One ranked entry of a review queue."""

    task_id: str
    priority: float
    due_at: datetime
    box: int
    accuracy_weight: float
    latency_weight: float
    stability_weight: float
    predicted_interval_minutes: int
    level: str | None = None

    def to_dict(self) -> dict:
        data = asdict(self)
        data["due_at"] = self.due_at.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "QueueItem":
        return cls(**{**data, "due_at": datetime.fromisoformat(data["due_at"])})


def rank_items(items: list[QueueItem]) -> list[QueueItem]:
    """Order by descending priority; ties go to the earlier due date, then task id."""
    return sorted(items, key=lambda item: (-item.priority, item.due_at, item.task_id))


def _seed_row(device_id: str, task_id: str, level: str, now: datetime) -> dict:
    accuracy = compute_accuracy_weight(0, 0)
    latency = compute_latency_weight(0)
    stability = compute_stability_weight(1, 0)
    priority = compute_priority_score(
        PriorityInputs(
            accuracy_weight=accuracy,
            latency_weight=latency,
            stability_weight=stability,
            box=1,
            due_at=now,
            now=now,
        )
    )
    return {
        "device_id": device_id,
        "task_id": task_id,
        "level": level,
        "box": 1,
        "total_attempts": 0,
        "correct_attempts": 0,
        "average_response_ms": 0.0,
        "accuracy_weight": accuracy,
        "latency_weight": latency,
        "stability_weight": stability,
        "priority_score": priority,
        "due_at": compute_next_due_date(1, now),
        "last_result": None,
        "last_practiced_at": None,
        "created_at": now,
        "updated_at": now,
    }


async def ensure_minimum_states(
    session: AsyncSession,
    catalog: TaskCatalog,
    device_id: str,
    config: SchedulerConfig,
    level_hint: str | None = None,
    now: datetime | None = None,
) -> int:
    """Top a device up to ``config.min_queue_size`` scheduling states.

    New rows start in box 1 and are due immediately. Safe to run
    concurrently: duplicates are dropped by the database, not by a prior read.

    Returns:
        How many rows were inserted.
    """
    now = now or utcnow()
    known = await known_task_ids(session, device_id)
    missing = config.min_queue_size - len(known)
    if missing <= 0:
        return 0

    try:
        candidates = await catalog.list_candidate_tasks(
            known, level_hint, config.min_queue_size * CANDIDATE_OVERFETCH
        )
    except Exception:
        logger.exception("Task catalog lookup failed; skipping backfill for device %s", device_id)
        return 0

    seen = {task_id.lower() for task_id in known}
    rows: list[dict] = []
    for candidate in candidates:
        key = candidate.task_id.lower()
        if key in seen:
            continue
        seen.add(key)
        level = candidate.level or level_hint or DEFAULT_LEVEL
        rows.append(_seed_row(device_id, candidate.task_id, level, now))
        if len(rows) >= missing:
            break

    inserted = await insert_missing_states(session, rows)
    if inserted:
        logger.info(
            "Backfilled %d tasks for device %s (had %d, minimum %d)",
            inserted,
            device_id,
            len(known),
            config.min_queue_size,
        )
    return inserted


async def _score_state(session: AsyncSession, state: SchedulingState, now: datetime) -> QueueItem:
    due_at = state.due_at or compute_next_due_date(state.box, state.updated_at or now)
    priority = compute_priority_score(
        PriorityInputs(
            accuracy_weight=state.accuracy_weight,
            latency_weight=state.latency_weight,
            stability_weight=state.stability_weight,
            box=state.box,
            due_at=due_at,
            now=now,
        )
    )

    if state.due_at is None or abs(priority - state.priority_score) > PRIORITY_DRIFT_TOLERANCE:
        await refresh_priority(session, state, priority, due_at, now)

    return QueueItem(
        task_id=state.task_id,
        priority=priority,
        due_at=due_at,
        box=state.box,
        accuracy_weight=state.accuracy_weight,
        latency_weight=state.latency_weight,
        stability_weight=state.stability_weight,
        predicted_interval_minutes=compute_predicted_interval_minutes(state.box),
        level=state.level,
    )


async def store_queue(
    session: AsyncSession,
    device_id: str,
    items: list[QueueItem],
    generated_at: datetime,
    duration_ms: float,
    ttl: timedelta,
    user_id: int | None = None,
) -> None:
    """Upsert the device's queue row with a fresh version."""
    values = {
        "user_id": user_id,
        "version": uuid.uuid4().hex,
        "generated_at": generated_at,
        "valid_until": generated_at + ttl,
        "generation_duration_ms": duration_ms,
        "item_count": len(items),
        "items": [item.to_dict() for item in items],
        "updated_at": generated_at,
    }
    stmt = (
        dialect_insert(session, ReviewQueue)
        .values(device_id=device_id, created_at=generated_at, **values)
        .on_conflict_do_update(index_elements=["device_id"], set_=values)
    )
    await session.execute(stmt)


async def build_queue(
    session: AsyncSession,
    device_id: str,
    config: SchedulerConfig,
    catalog: TaskCatalog | None = None,
    level_hint: str | None = None,
    now: datetime | None = None,
) -> ReviewQueue | None:
    """Rebuild and store the review queue for a device.

    Args:
        session: Database session.
        device_id: The device to build the queue for.
        config: Scheduler configuration (feature flag, sizes, TTL).
        catalog: Where backfill candidates come from (defaults to the tasks table).
        level_hint: Preferred CEFR level for backfilled tasks.
        now: Generation time (defaults to utcnow).

    Returns:
        The stored ReviewQueue, or None when the adaptive queue is disabled.
    """
    if not config.adaptive_enabled:
        logger.debug("Adaptive queue disabled; not building queue for device %s", device_id)
        return None

    now = now or utcnow()
    catalog = catalog or SqlTaskCatalog(session)
    started = time.perf_counter()

    await ensure_minimum_states(session, catalog, device_id, config, level_hint, now)
    states = await list_device_states(session, device_id)
    items = [await _score_state(session, state, now) for state in states]
    ranked = rank_items(items)[: config.max_queue_items]

    duration_ms = (time.perf_counter() - started) * 1000
    user_id = next((state.user_id for state in states if state.user_id is not None), None)
    await store_queue(session, device_id, ranked, now, duration_ms, config.queue_ttl, user_id)
    await session.commit()

    result = await session.execute(
        select(ReviewQueue)
        .where(ReviewQueue.device_id == device_id)
        .execution_options(populate_existing=True)
    )
    queue = result.scalar_one()
    logger.info(
        "Built queue for device %s: %d of %d tasks in %.1f ms",
        device_id,
        len(ranked),
        len(states),
        duration_ms,
    )
    return queue
