"""Pydantic schemas for API request/response models."""

from datetime import datetime

from pydantic import BaseModel, Field

from practice_backend.models.scheduling_state import PracticeResult

# --- Practice ---


class PracticeSubmission(BaseModel):
    """A validated practice result reported by a device."""

    device_id: str = Field(min_length=1, max_length=128)
    task_id: str = Field(min_length=1, max_length=255)
    result: PracticeResult
    response_ms: int = Field(ge=0)
    level: str | None = None  # CEFR: A1-C2
    user_id: int | None = None
    practiced_at: datetime | None = None


class PracticeSubmissionResponse(BaseModel):
    """Scheduling state of the task after the attempt was recorded."""

    device_id: str
    task_id: str
    result: PracticeResult
    previous_box: int
    box: int
    total_attempts: int
    correct_attempts: int
    average_response_ms: float
    priority_score: float
    due_at: datetime


# --- Queue ---


class QueueItemResponse(BaseModel):
    """One ranked task. Weight fields are absent for fallback rankings."""

    task_id: str
    priority: float
    due_at: datetime | None = None
    box: int | None = None
    accuracy_weight: float | None = None
    latency_weight: float | None = None
    stability_weight: float | None = None
    predicted_interval_minutes: int | None = None
    level: str | None = None


class QueueMetrics(BaseModel):
    generation_duration_ms: float
    item_count: int


class QueueResponse(BaseModel):
    """A device's practice queue, adaptive when enabled, fallback-ranked otherwise."""

    enabled: bool
    device_id: str
    version: str | None = None
    generated_at: datetime | None = None
    valid_until: datetime | None = None
    items: list[QueueItemResponse]
    metrics: QueueMetrics | None = None


class RegenerationResponse(BaseModel):
    """Summary of a queue regeneration run."""

    enabled: bool
    devices: int
    rebuilt: int
    failed: int
    failed_devices: list[str]
    duration_ms: float
    job_run_id: int | None = None
