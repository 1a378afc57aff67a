"""Read/write contracts for per-device scheduling state.

Every write that can race is either revision-guarded (the ORM's
``version_id_col`` on ``SchedulingState.revision``) or an
``INSERT ... ON CONFLICT DO NOTHING`` keyed on ``(device_id, task_id)``.
"""

import logging
from datetime import datetime

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from practice_backend.database import dialect_insert
from practice_backend.models.scheduling_state import SchedulingState

logger = logging.getLogger(__name__)


async def get_state(session: AsyncSession, device_id: str, task_id: str) -> SchedulingState | None:
    stmt = (
        select(SchedulingState)
        .where(
            SchedulingState.device_id == device_id,
            SchedulingState.task_id == task_id,
        )
        .execution_options(populate_existing=True)
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def list_device_states(session: AsyncSession, device_id: str) -> list[SchedulingState]:
    stmt = (
        select(SchedulingState)
        .where(SchedulingState.device_id == device_id)
        .order_by(SchedulingState.task_id.asc())
        .execution_options(populate_existing=True)
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def known_task_ids(session: AsyncSession, device_id: str) -> set[str]:
    stmt = select(SchedulingState.task_id).where(SchedulingState.device_id == device_id)
    result = await session.execute(stmt)
    return set(result.scalars().all())


async def count_device_states(session: AsyncSession, device_id: str) -> int:
    stmt = select(func.count(SchedulingState.id)).where(SchedulingState.device_id == device_id)
    return (await session.execute(stmt)).scalar() or 0


async def list_device_ids(session: AsyncSession) -> list[str]:
    """Return every device that has at least one scheduling state, in a stable order."""
    stmt = select(SchedulingState.device_id).distinct().order_by(SchedulingState.device_id.asc())
    result = await session.execute(stmt)
    return [device_id for device_id in result.scalars().all() if device_id]


async def insert_missing_states(session: AsyncSession, rows: list[dict]) -> int:
    """Insert seed rows, silently skipping any (device, task) pair that already exists.

    Returns the number of rows the database reports as inserted.
    """
    if not rows:
        return 0
    stmt = (
        dialect_insert(session, SchedulingState)
        .values([{"revision": 1, **row} for row in rows])
        .on_conflict_do_nothing(index_elements=["device_id", "task_id"])
    )
    result = await session.execute(stmt)
    inserted = max(result.rowcount or 0, 0)
    logger.debug("Seeded %d of %d scheduling states", inserted, len(rows))
    return inserted


async def refresh_priority(
    session: AsyncSession,
    state: SchedulingState,
    priority_score: float,
    due_at: datetime,
    now: datetime,
) -> bool:
    """Write a recomputed priority/due date unless the row changed since it was read.

    Returns False when a concurrent writer bumped the revision first; the
    fresher row wins and the caller just moves on.
    """
    stmt = (
        update(SchedulingState)
        .where(
            SchedulingState.id == state.id,
            SchedulingState.revision == state.revision,
        )
        .values(
            priority_score=priority_score,
            due_at=due_at,
            updated_at=now,
            revision=SchedulingState.revision + 1,
        )
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    if result.rowcount == 0:
        logger.debug("Skipped priority refresh for state %d: row changed concurrently", state.id)
        return False

    for key, value in (
        ("priority_score", priority_score),
        ("due_at", due_at),
        ("updated_at", now),
        ("revision", state.revision + 1),
    ):
        set_committed_value(state, key, value)
    return True
