"""Score model for the adaptive practice queue.

Pure functions mapping a task's attempt aggregates to bounded weights,
a Leitner-box due date and a composite priority score. Nothing here touches
the database or the clock; callers always pass ``now`` in.

Key concepts:
- Box: Leitner stage in [1, MAX_BOX]; higher boxes wait longer before review.
- Accuracy weight: share of correct attempts (0.5 when never attempted).
- Latency weight: how close the average response time is to the target.
- Stability weight: confidence from box level and attempt count.
- Priority: higher means the task should be shown sooner.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta

MAX_BOX = 5

# Indexed by box - 1; must stay strictly increasing.
BOX_INTERVALS: tuple[timedelta, ...] = (
    timedelta(0),
    timedelta(hours=12),
    timedelta(hours=24),
    timedelta(hours=72),
    timedelta(days=7),
)

TARGET_RESPONSE_MS = 8_000
MIN_LATENCY_WEIGHT = 0.2
PRIORITY_DUE_SOFT_CAP = timedelta(hours=6)
MAX_PRIORITY = 1.5

ACCURACY_PENALTY_WEIGHT = 0.45
LATENCY_PENALTY_WEIGHT = 0.2
DUE_URGENCY_WEIGHT = 0.25
STABILITY_PENALTY_WEIGHT = 0.05
BOX_PENALTY_WEIGHT = 0.05
OVERDUE_BONUS_WEIGHT = 0.25


@dataclass(frozen=True)
class PriorityInputs:
    """Everything the composite priority depends on."""

    accuracy_weight: float
    latency_weight: float
    stability_weight: float
    box: int
    due_at: datetime | None
    now: datetime


def clamp(value: float, low: float, high: float) -> float:
    """Clamp ``value`` into ``[low, high]``; NaN maps to ``low``."""
    if value != value:
        return low
    return max(low, min(high, value))


def clamp_box(box: int) -> int:
    return int(clamp(round(box), 1, MAX_BOX))


def _normalised_box(box: int) -> float:
    return clamp((box - 1) / max(1, MAX_BOX - 1), 0.0, 1.0)


def compute_accuracy_weight(total_attempts: int, correct_attempts: int) -> float:
    if total_attempts <= 0:
        return 0.5
    return round(clamp(correct_attempts / total_attempts, 0.0, 1.0), 4)


def compute_latency_weight(average_response_ms: float) -> float:
    """Return 1.0 at or under the target response time, decaying to MIN_LATENCY_WEIGHT."""
    if average_response_ms <= 0:
        return 1.0
    return round(clamp(TARGET_RESPONSE_MS / average_response_ms, MIN_LATENCY_WEIGHT, 1.0), 4)


def compute_stability_weight(box: int, total_attempts: int) -> float:
    attempt_factor = clamp(total_attempts / 10, 0.0, 1.0)
    stability = 0.6 * _normalised_box(box) + 0.4 * attempt_factor
    return round(clamp(stability, 0.0, 1.0), 4)


def interval_for_box(box: int) -> timedelta:
    return BOX_INTERVALS[clamp_box(box) - 1]


def compute_next_due_date(box: int, now: datetime) -> datetime:
    """Return when a task in ``box`` practised at ``now`` becomes due again."""
    return now + interval_for_box(box)


def compute_predicted_interval_minutes(box: int) -> int:
    return max(1, round(interval_for_box(box).total_seconds() / 60))


def compute_priority_score(inputs: PriorityInputs) -> float:
    """Combine weights and due-ness into a single ranking score.

    Weak accuracy and slow answers dominate, followed by how close the
    task is to its due date. Overdue tasks earn an extra bonus that keeps
    growing until PRIORITY_DUE_SOFT_CAP past the due date, so an overdue
    task always outranks the same task scored exactly at its due time.
    """
    due_at = inputs.due_at or inputs.now
    seconds_until_due = (due_at - inputs.now).total_seconds()
    soft_cap = PRIORITY_DUE_SOFT_CAP.total_seconds()

    if seconds_until_due <= 0:
        due_urgency = 1.0
        overdue_ratio = clamp(-seconds_until_due / soft_cap, 0.0, 1.0)
    else:
        due_urgency = 1.0 - clamp(seconds_until_due / soft_cap, 0.0, 1.0)
        overdue_ratio = 0.0

    accuracy_penalty = 1.0 - clamp(inputs.accuracy_weight, 0.0, 1.0)
    latency_penalty = 1.0 - clamp(inputs.latency_weight, 0.0, 1.0)
    stability_penalty = 1.0 - clamp(inputs.stability_weight, 0.0, 1.0)
    box_penalty = 1.0 - _normalised_box(inputs.box)

    raw_score = (
        accuracy_penalty * ACCURACY_PENALTY_WEIGHT
        + latency_penalty * LATENCY_PENALTY_WEIGHT
        + due_urgency * DUE_URGENCY_WEIGHT
        + stability_penalty * STABILITY_PENALTY_WEIGHT
        + box_penalty * BOX_PENALTY_WEIGHT
        + overdue_ratio * OVERDUE_BONUS_WEIGHT
    )
    return clamp(raw_score, 0.0, MAX_PRIORITY)
