"""Failure alerts for background jobs, posted to an optional webhook."""

import logging
from dataclasses import dataclass
from datetime import datetime

import httpx

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 10.0


@dataclass(frozen=True)
class JobFailureNotification:
    job_name: str
    started_at: datetime
    finished_at: datetime
    duration_ms: float
    error: dict

    def to_payload(self) -> dict:
        return {
            "job": self.job_name,
            "status": "failed",
            "startedAt": self.started_at.isoformat(),
            "finishedAt": self.finished_at.isoformat(),
            "durationMs": self.duration_ms,
            "error": self.error,
        }


class JobNotifier:
    """Posts job failures to a webhook. Delivery problems are logged, never raised."""

    def __init__(
        self,
        webhook_url: str | None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.webhook_url = (webhook_url or "").strip() or None
        self.transport = transport

    async def notify_failure(self, notification: JobFailureNotification) -> bool:
        """Send the alert.

        Returns:
            True if the webhook accepted it, False if skipped or undeliverable.
        """
        if not self.webhook_url:
            logger.warning(
                "No job alert webhook configured; skipping failure notification for %s",
                notification.job_name,
            )
            return False

        try:
            async with httpx.AsyncClient(timeout=REQUEST_TIMEOUT, transport=self.transport) as client:
                response = await client.post(self.webhook_url, json=notification.to_payload())
                response.raise_for_status()
        except httpx.HTTPError:
            logger.exception("Failed to send failure notification for job %s", notification.job_name)
            return False

        logger.info(
            "Sent failure notification for job %s (webhook status %d)",
            notification.job_name,
            response.status_code,
        )
        return True
