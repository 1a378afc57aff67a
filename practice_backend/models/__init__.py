"""SQLAlchemy ORM models for the practice scheduler database."""

from practice_backend.models.base import Base
from practice_backend.models.job_run import JobRun
from practice_backend.models.review_queue import ReviewQueue
from practice_backend.models.scheduling_state import PracticeResult, SchedulingState
from practice_backend.models.task import Task

__all__ = ["Base", "JobRun", "PracticeResult", "ReviewQueue", "SchedulingState", "Task"]
