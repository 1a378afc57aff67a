"""Per-device scheduling state for a practice task."""

from datetime import datetime
from enum import Enum

from sqlalchemy import DateTime, Float, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from practice_backend.models.base import Base, TimestampMixin


class PracticeResult(str, Enum):
    """Outcome of a single practice attempt."""

    CORRECT = "correct"
    INCORRECT = "incorrect"


class SchedulingState(Base, TimestampMixin):
    """Leitner box, attempt aggregates and derived weights for a (device, task) pair."""

    __tablename__ = "scheduling_state"
    __table_args__ = (
        UniqueConstraint("device_id", "task_id", name="uq_scheduling_state_device_task"),
        Index("ix_scheduling_state_device", "device_id"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    device_id: Mapped[str] = mapped_column(String(128), nullable=False)
    task_id: Mapped[str] = mapped_column(String(255), nullable=False)
    user_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    level: Mapped[str] = mapped_column(String(10), nullable=False, default="A1")  # CEFR: A1-C2
    box: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    total_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    correct_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    average_response_ms: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    accuracy_weight: Mapped[float] = mapped_column(Float, nullable=False, default=0.5)
    latency_weight: Mapped[float] = mapped_column(Float, nullable=False, default=1.0)
    stability_weight: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    priority_score: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    due_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    last_result: Mapped[str | None] = mapped_column(String(16), nullable=True)  # correct, incorrect
    last_practiced_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    revision: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": revision}
