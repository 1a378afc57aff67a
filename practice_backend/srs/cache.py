"""Read-through cache over the stored review queues.

A queue is served as long as it is fresh. New attempts only push its
``valid_until`` into the past, so the row stays readable while the next
read (or the regeneration job) rebuilds it.
"""

import logging
from datetime import datetime, timedelta

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from practice_backend.config import SchedulerConfig, utcnow
from practice_backend.models.review_queue import ReviewQueue
from practice_backend.srs.catalog import TaskCatalog
from practice_backend.srs.queue import build_queue

logger = logging.getLogger(__name__)


async def fetch_queue(session: AsyncSession, device_id: str) -> ReviewQueue | None:
    stmt = (
        select(ReviewQueue)
        .where(ReviewQueue.device_id == device_id)
        .execution_options(populate_existing=True)
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


def is_queue_stale(queue: ReviewQueue | None, now: datetime | None = None) -> bool:
    """Return True if there is no queue or its TTL has run out."""
    if queue is None or queue.valid_until is None:
        return True
    now = now or utcnow()
    return now >= queue.valid_until


async def invalidate_queue(session: AsyncSession, device_id: str, now: datetime | None = None) -> None:
    """Mark the device's queue stale without deleting it."""
    now = now or utcnow()
    stmt = (
        update(ReviewQueue)
        .where(ReviewQueue.device_id == device_id)
        .values(valid_until=now - timedelta(milliseconds=1), updated_at=now)
        .execution_options(synchronize_session=False)
    )
    await session.execute(stmt)
    logger.debug("Invalidated queue for device %s", device_id)


async def get_or_build_queue(
    session: AsyncSession,
    device_id: str,
    config: SchedulerConfig,
    catalog: TaskCatalog | None = None,
    level_hint: str | None = None,
    now: datetime | None = None,
) -> ReviewQueue | None:
    """Serve the cached queue, rebuilding it first if it is missing or stale.

    Returns None when the adaptive queue is disabled.
    """
    if not config.adaptive_enabled:
        return None

    now = now or utcnow()
    queue = await fetch_queue(session, device_id)
    if not is_queue_stale(queue, now):
        logger.debug("Serving cached queue %s for device %s", queue.version, device_id)
        return queue

    logger.info("Queue for device %s is %s; rebuilding", device_id, "stale" if queue else "missing")
    return await build_queue(session, device_id, config, catalog=catalog, level_hint=level_hint, now=now)
