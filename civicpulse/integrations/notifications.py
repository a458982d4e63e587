"""
Notification Dispatch

Tells citizens their report was resolved. Fire-and-forget: failures are
logged and never reach the caller.
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional

import httpx

from civicpulse.utils.config import get_settings

logger = logging.getLogger(__name__)


class Notifier(ABC):

    @abstractmethod
    async def notify_resolved(self, user_id: str, report_id: str, title: str) -> None:
        ...

    async def close(self):
        pass


class LogNotifier(Notifier):
    """Default when no delivery channel is configured."""

    async def notify_resolved(self, user_id: str, report_id: str, title: str) -> None:
        logger.info(f"Report resolved notification: user={user_id} report={report_id} title={title!r}")


class WebhookNotifier(Notifier):
    """POSTs a JSON event to a delivery service (SMS/email/push gateway)."""

    def __init__(
        self,
        url: str,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.url = url
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout))

    async def notify_resolved(self, user_id: str, report_id: str, title: str) -> None:
        payload = {
            "type": "report_resolved",
            "userId": user_id,
            "reportId": report_id,
            "title": "Your report has been resolved",
            "body": f"Your report \"{title}\" has been marked as resolved.",
        }
        try:
            response = await self._client.post(self.url, json=payload)
            response.raise_for_status()
            logger.info(f"Resolution notification sent for report {report_id}")
        except httpx.HTTPError as e:
            logger.warning(f"Resolution notification failed for report {report_id}: {e}")

    async def close(self):
        await self._client.aclose()


def build_notifier() -> Notifier:
    settings = get_settings()
    if settings.NOTIFICATION_WEBHOOK_URL:
        return WebhookNotifier(settings.NOTIFICATION_WEBHOOK_URL, timeout=settings.API_TIMEOUT)
    return LogNotifier()
