"""Load a practice task catalog into the database.

Usage:
    python -m scripts.load_tasks data/tasks.json
    python -m scripts.load_tasks data/tasks.json --deactivate-missing

The JSON file is a list of objects with ``lemma`` and optionally ``id``,
``pos``, ``level`` and ``active``. Re-running is safe: existing tasks are
updated in place.
"""

import argparse
import asyncio
import json
import logging
from pathlib import Path

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from practice_backend.database import async_session, engine
from practice_backend.models import Base
from practice_backend.models.task import Task


def task_id_for(entry: dict) -> str:
    """Use the explicit id if given, otherwise ``pos:lemma``."""
    if entry.get("id"):
        return str(entry["id"])
    return f"{entry.get('pos', 'verb')}:{entry['lemma'].strip().lower()}"


async def load_tasks(
    entries: list[dict],
    session_factory: async_sessionmaker[AsyncSession] = async_session,
    deactivate_missing: bool = False,
) -> tuple[int, int]:
    """Insert or update catalog tasks.

    Returns:
        Tuple of (created, updated).
    """
    created = updated = 0
    seen: set[str] = set()

    async with session_factory() as session:
        existing = {task.id: task for task in (await session.execute(select(Task))).scalars().all()}

        for entry in entries:
            if not entry.get("lemma"):
                logging.warning("Skipping entry without lemma: %s", entry)
                continue
            task_id = task_id_for(entry)
            if task_id in seen:
                logging.info("Skipping duplicate: %s", task_id)
                continue
            seen.add(task_id)

            level = entry.get("level")
            task = existing.get(task_id)
            if task is None:
                session.add(
                    Task(
                        id=task_id,
                        lemma=entry["lemma"].strip(),
                        pos=entry.get("pos", "verb"),
                        level=level.upper() if level else None,
                        active=entry.get("active", True),
                    )
                )
                created += 1
            else:
                task.lemma = entry["lemma"].strip()
                task.pos = entry.get("pos", task.pos)
                task.level = level.upper() if level else task.level
                task.active = entry.get("active", True)
                updated += 1

        if deactivate_missing:
            for task_id, task in existing.items():
                if task_id not in seen and task.active:
                    task.active = False
                    logging.info("Deactivated %s", task_id)

        await session.commit()

    logging.info("Loaded %d new tasks, updated %d", created, updated)
    return created, updated


async def main_async(args: argparse.Namespace) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    entries = json.loads(args.tasks.read_text(encoding="utf-8"))
    created, updated = await load_tasks(entries, deactivate_missing=args.deactivate_missing)
    print(f"Created {created} tasks, updated {updated}.")


def main() -> None:
    parser = argparse.ArgumentParser(description="Load a practice task catalog into the database")
    parser.add_argument("tasks", type=Path, help="Path to tasks.json")
    parser.add_argument(
        "--deactivate-missing",
        action="store_true",
        help="Mark tasks not present in the file as inactive",
    )
    parser.add_argument("-v", "--verbose", action="store_true")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )

    asyncio.run(main_async(args))
    print("Done.")


if __name__ == "__main__":
    main()
