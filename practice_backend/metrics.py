"""In-process metric events.

Code emits named events with a value and string tags; whatever exporter the
deployment uses subscribes with ``register_metric_handler``. With no handler
registered, events are only logged at debug level.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MetricEvent:
    name: str
    value: float = 1.0
    tags: dict[str, str] = field(default_factory=dict)


MetricHandler = Callable[[MetricEvent], None]

_handlers: list[MetricHandler] = []


def register_metric_handler(handler: MetricHandler) -> Callable[[], None]:
    """Subscribe ``handler`` to every metric event; returns an unsubscribe callback."""
    _handlers.append(handler)

    def unregister() -> None:
        if handler in _handlers:
            _handlers.remove(handler)

    return unregister


def emit_metric(name: str, value: float = 1.0, **tags: str) -> None:
    event = MetricEvent(name=name, value=value, tags=tags)
    logger.debug("metric %s=%s %s", name, value, tags)
    for handler in list(_handlers):
        try:
            handler(event)
        except Exception:
            logger.exception("Metric handler failed for %s", name)
