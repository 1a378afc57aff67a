"""Task catalog: the pool new practice tasks are drawn from.

The queue builder only needs ``list_candidate_tasks``; anything that
implements it can stand in for the database-backed catalog.
"""

import logging
from collections.abc import Collection
from dataclasses import dataclass
from typing import Protocol

from sqlalchemy import case, func, literal, select
from sqlalchemy.ext.asyncio import AsyncSession

from practice_backend.models.task import Task

logger = logging.getLogger(__name__)

CEFR_LEVELS = ("A1", "A2", "B1", "B2", "C1", "C2")
UNKNOWN_LEVEL_RANK = len(CEFR_LEVELS)


@dataclass(frozen=True)
class CandidateTask:
    task_id: str
    level: str | None = None


class TaskCatalog(Protocol):
    async def list_candidate_tasks(
        self,
        exclude_known: Collection[str],
        level_hint: str | None,
        limit: int,
    ) -> list[CandidateTask]: ...


def level_rank(level: str | None) -> int:
    """Map a CEFR level to 0 (A1) .. 5 (C2); unknown levels sort last."""
    if not level:
        return UNKNOWN_LEVEL_RANK
    normalized = level.strip().upper()
    if normalized in CEFR_LEVELS:
        return CEFR_LEVELS.index(normalized)
    return UNKNOWN_LEVEL_RANK


class SqlTaskCatalog:
    """Reads candidate tasks from the ``tasks`` table.

    Candidates are active tasks the device has not seen, ordered by how far
    their level is from the hint (easiest first when there is no hint),
    then alphabetically by lemma so the order never depends on insert time.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def list_candidate_tasks(
        self,
        exclude_known: Collection[str],
        level_hint: str | None,
        limit: int,
    ) -> list[CandidateTask]:
        if limit <= 0:
            return []

        rank_expr = case(
            *[(func.upper(Task.level) == level, rank) for rank, level in enumerate(CEFR_LEVELS)],
            else_=UNKNOWN_LEVEL_RANK,
        )
        hint_rank = level_rank(level_hint) if level_hint else 0
        distance_expr = func.abs(rank_expr - literal(hint_rank))

        stmt = select(Task.id, Task.level).where(Task.active.is_(True))
        if exclude_known:
            stmt = stmt.where(Task.id.not_in(list(exclude_known)))
        stmt = stmt.order_by(
            distance_expr.asc(),
            rank_expr.asc(),
            func.lower(Task.lemma).asc(),
            Task.id.asc(),
        ).limit(limit)

        result = await self.session.execute(stmt)
        candidates = [CandidateTask(task_id=row.id, level=row.level) for row in result.all()]
        logger.debug(
            "Catalog returned %d candidates (hint=%s, excluded=%d)",
            len(candidates),
            level_hint,
            len(exclude_known),
        )
        return candidates
