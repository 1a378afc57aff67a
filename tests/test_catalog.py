"""Tests for the task catalog and its candidate ordering."""

import pytest

from practice_backend.models.task import Task
from practice_backend.srs.catalog import UNKNOWN_LEVEL_RANK, SqlTaskCatalog, level_rank
from conftest import add_tasks


async def _seed_levels(db) -> None:
    await add_tasks(db, 2, level="B1", prefix="mid")
    await add_tasks(db, 2, level="A1", prefix="easy")
    await add_tasks(db, 1, level=None, prefix="odd")


class TestLevelRank:
    def test_known_levels(self) -> None:
        assert level_rank("A1") == 0
        assert level_rank("b2") == 3
        assert level_rank(" C2 ") == 5

    def test_unknown_levels_sort_last(self) -> None:
        assert level_rank(None) == UNKNOWN_LEVEL_RANK
        assert level_rank("expert") == UNKNOWN_LEVEL_RANK


class TestSqlTaskCatalog:
    @pytest.mark.asyncio
    async def test_easiest_first_without_hint(self, db) -> None:
        await _seed_levels(db)

        candidates = await SqlTaskCatalog(db).list_candidate_tasks(set(), None, 10)

        assert [c.task_id for c in candidates] == ["easy:000", "easy:001", "mid:000", "mid:001", "odd:000"]
        assert candidates[0].level == "A1"
        assert candidates[-1].level is None

    @pytest.mark.asyncio
    async def test_nearest_level_first_with_hint(self, db) -> None:
        await _seed_levels(db)

        candidates = await SqlTaskCatalog(db).list_candidate_tasks(set(), "b1", 10)

        assert [c.task_id for c in candidates] == ["mid:000", "mid:001", "easy:000", "easy:001", "odd:000"]

    @pytest.mark.asyncio
    async def test_excludes_known_and_inactive(self, db) -> None:
        await add_tasks(db, 3)
        await add_tasks(db, 2, prefix="retired", active=False)

        candidates = await SqlTaskCatalog(db).list_candidate_tasks({"verb:001"}, None, 10)

        assert [c.task_id for c in candidates] == ["verb:000", "verb:002"]

    @pytest.mark.asyncio
    async def test_lemma_order_ignores_case(self, db) -> None:
        db.add_all(
            [
                Task(id="t-zebra", lemma="Zebra", level="A1"),
                Task(id="t-apfel", lemma="apfel", level="A1"),
                Task(id="t-Birne", lemma="Birne", level="A1"),
            ]
        )
        await db.commit()

        candidates = await SqlTaskCatalog(db).list_candidate_tasks(set(), None, 10)

        assert [c.task_id for c in candidates] == ["t-apfel", "t-Birne", "t-zebra"]

    @pytest.mark.asyncio
    async def test_limit(self, db) -> None:
        await add_tasks(db, 10)
        catalog = SqlTaskCatalog(db)
        assert len(await catalog.list_candidate_tasks(set(), None, 4)) == 4
        assert await catalog.list_candidate_tasks(set(), None, 0) == []
