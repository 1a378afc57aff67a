"""Adaptive practice scheduling: scoring, attempts, queues and regeneration."""

from practice_backend.srs.attempts import AttemptOutcome, PracticeAttempt, record_attempt
from practice_backend.srs.cache import fetch_queue, get_or_build_queue, invalidate_queue, is_queue_stale
from practice_backend.srs.fallback import fallback_priority, rank_fallback
from practice_backend.srs.queue import QueueItem, build_queue, ensure_minimum_states
from practice_backend.srs.regeneration import QueueRegenerator, RegenerationSummary, get_regenerator

__all__ = [
    "AttemptOutcome",
    "PracticeAttempt",
    "QueueItem",
    "QueueRegenerator",
    "RegenerationSummary",
    "build_queue",
    "ensure_minimum_states",
    "fallback_priority",
    "fetch_queue",
    "get_or_build_queue",
    "get_regenerator",
    "invalidate_queue",
    "is_queue_stale",
    "rank_fallback",
    "record_attempt",
]
