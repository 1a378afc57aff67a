"""Deterministic task ranking that needs no persisted queue.

Used whenever adaptive queues are switched off, or for tasks that have no
scheduling state yet. Scores come straight from whatever attempt
aggregates exist at read time; ties between unseen tasks are broken by a
stable hash of the task id so the order never flickers between requests.
"""

import logging
import zlib
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from practice_backend.config import utcnow
from practice_backend.models.scheduling_state import PracticeResult, SchedulingState
from practice_backend.srs.catalog import SqlTaskCatalog, TaskCatalog
from practice_backend.srs.priority import clamp
from practice_backend.srs.state_store import list_device_states

logger = logging.getLogger(__name__)

JITTER_BUCKETS = 1000


@dataclass(frozen=True)
class FallbackWeights:
    """Tuning constants for the fallback score. Only their shape matters."""

    new_task_baseline: float = 0.9
    accuracy_shortfall: float = 0.5
    incorrect_bonus: float = 0.2
    urgency: float = 0.3
    urgency_horizon: timedelta = timedelta(hours=72)
    jitter_scale: float = 0.01


DEFAULT_FALLBACK_WEIGHTS = FallbackWeights()


@dataclass(frozen=True)
class AttemptSnapshot:
    """Per-task attempt aggregates available at read time."""

    total_attempts: int
    correct_attempts: int
    last_result: PracticeResult | None = None
    due_at: datetime | None = None

    @classmethod
    def from_state(cls, state: SchedulingState) -> "AttemptSnapshot":
        return cls(
            total_attempts=state.total_attempts,
            correct_attempts=state.correct_attempts,
            last_result=PracticeResult(state.last_result) if state.last_result else None,
            due_at=state.due_at,
        )


@dataclass(frozen=True)
class RankedTask:
    task_id: str
    priority: float
    due_at: datetime | None = None


def stable_jitter(task_id: str, scale: float = DEFAULT_FALLBACK_WEIGHTS.jitter_scale) -> float:
    """Small tie-breaking offset in ``[0, scale)`` that depends only on the task id."""
    bucket = zlib.crc32(task_id.encode("utf-8")) % JITTER_BUCKETS
    return bucket / JITTER_BUCKETS * scale


def _urgency(due_at: datetime | None, now: datetime, horizon: timedelta) -> float:
    """0 when due a full horizon away, 0.5 when due now, 1 once a horizon overdue."""
    if due_at is None:
        return 1.0
    horizon_seconds = horizon.total_seconds()
    seconds_until_due = (due_at - now).total_seconds()
    return clamp((horizon_seconds - seconds_until_due) / (2 * horizon_seconds), 0.0, 1.0)


def fallback_priority(
    snapshot: AttemptSnapshot | None,
    task_id: str,
    now: datetime,
    weights: FallbackWeights = DEFAULT_FALLBACK_WEIGHTS,
) -> float:
    """Score a task without any adaptive state.

    Never-seen tasks get a fixed high baseline. Seen tasks combine an
    accuracy shortfall penalty, a bonus if the last answer was wrong and a
    bounded urgency term. Both paths add the same deterministic jitter.
    """
    jitter = stable_jitter(task_id, weights.jitter_scale)
    if snapshot is None:
        return weights.new_task_baseline + jitter

    if snapshot.total_attempts > 0:
        accuracy = clamp(snapshot.correct_attempts / snapshot.total_attempts, 0.0, 1.0)
    else:
        accuracy = 0.0
    score = (1.0 - accuracy) * weights.accuracy_shortfall
    if snapshot.last_result == PracticeResult.INCORRECT:
        score += weights.incorrect_bonus
    score += _urgency(snapshot.due_at, now, weights.urgency_horizon) * weights.urgency
    return score + jitter


def rank_tasks(
    snapshots: dict[str, AttemptSnapshot | None],
    now: datetime,
    weights: FallbackWeights = DEFAULT_FALLBACK_WEIGHTS,
) -> list[RankedTask]:
    ranked = [
        RankedTask(
            task_id=task_id,
            priority=fallback_priority(snapshot, task_id, now, weights),
            due_at=snapshot.due_at if snapshot else None,
        )
        for task_id, snapshot in snapshots.items()
    ]
    return sorted(ranked, key=lambda task: (-task.priority, task.task_id))


async def rank_fallback(
    session: AsyncSession,
    device_id: str,
    limit: int,
    catalog: TaskCatalog | None = None,
    now: datetime | None = None,
    level_hint: str | None = None,
    weights: FallbackWeights = DEFAULT_FALLBACK_WEIGHTS,
) -> list[RankedTask]:
    """Rank a device's known tasks together with unseen catalog candidates.

    Reads only; nothing is written and no queue is stored.
    """
    now = now or utcnow()
    catalog = catalog or SqlTaskCatalog(session)
    states = await list_device_states(session, device_id)
    snapshots: dict[str, AttemptSnapshot | None] = {
        state.task_id: AttemptSnapshot.from_state(state) if state.total_attempts else None
        for state in states
    }

    try:
        candidates = await catalog.list_candidate_tasks(set(snapshots), level_hint, limit)
    except Exception:
        logger.exception("Task catalog lookup failed; ranking known tasks only for device %s", device_id)
        candidates = []
    for candidate in candidates:
        snapshots.setdefault(candidate.task_id, None)

    ranked = rank_tasks(snapshots, now, weights)[:limit]
    logger.debug(
        "Fallback ranking for device %s: %d known, %d candidates, %d returned",
        device_id,
        len(states),
        len(candidates),
        len(ranked),
    )
    return ranked
