"""Shared fixtures: a throwaway SQLite database per test and catalog helpers."""

import os

# Must be set before practice_backend is imported anywhere.
os.environ.setdefault("PRACTICE_DATABASE_URL", "sqlite+aiosqlite:///:memory:")

from datetime import datetime, timedelta  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402

from practice_backend.config import SchedulerConfig  # noqa: E402
from practice_backend.models import Base, SchedulingState, Task  # noqa: E402
from practice_backend.srs.priority import (  # noqa: E402
    PriorityInputs,
    compute_accuracy_weight,
    compute_latency_weight,
    compute_next_due_date,
    compute_priority_score,
    compute_stability_weight,
)

NOW = datetime(2024, 1, 1, 12, 0, 0)


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'scheduler.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def config() -> SchedulerConfig:
    return SchedulerConfig(
        adaptive_enabled=True,
        min_queue_size=20,
        max_queue_items=50,
        queue_ttl=timedelta(minutes=15),
    )


async def add_tasks(
    session: AsyncSession,
    count: int,
    level: str | None = "A1",
    prefix: str = "verb",
    active: bool = True,
) -> list[str]:
    """Insert ``count`` catalog tasks and return their ids."""
    ids = [f"{prefix}:{i:03d}" for i in range(count)]
    session.add_all(
        Task(id=task_id, lemma=f"{prefix}{i:03d}", pos="verb", level=level, active=active)
        for i, task_id in enumerate(ids)
    )
    await session.commit()
    return ids


async def add_state(
    session: AsyncSession,
    device_id: str,
    task_id: str,
    box: int = 1,
    total_attempts: int = 0,
    correct_attempts: int = 0,
    average_response_ms: float = 5000.0,
    practiced_at: datetime = NOW,
    last_result: str | None = "correct",
) -> SchedulingState:
    """Insert a scheduling state whose derived fields are consistent with its inputs."""
    accuracy = compute_accuracy_weight(total_attempts, correct_attempts)
    latency = compute_latency_weight(average_response_ms)
    stability = compute_stability_weight(box, total_attempts)
    due_at = compute_next_due_date(box, practiced_at)
    state = SchedulingState(
        device_id=device_id,
        task_id=task_id,
        box=box,
        total_attempts=total_attempts,
        correct_attempts=correct_attempts,
        average_response_ms=average_response_ms,
        accuracy_weight=accuracy,
        latency_weight=latency,
        stability_weight=stability,
        priority_score=compute_priority_score(
            PriorityInputs(
                accuracy_weight=accuracy,
                latency_weight=latency,
                stability_weight=stability,
                box=box,
                due_at=due_at,
                now=practiced_at,
            )
        ),
        due_at=due_at,
        last_result=last_result,
        last_practiced_at=practiced_at,
        created_at=practiced_at,
        updated_at=practiced_at,
    )
    session.add(state)
    await session.commit()
    return state
