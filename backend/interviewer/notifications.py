from __future__ import annotations

import logging
import time
import uuid
from enum import Enum
from threading import Lock
from typing import Protocol

logger = logging.getLogger("interviewer.notifications")


class NotificationType(str, Enum):
    INTERVIEW_STARTED = "INTERVIEW_STARTED"
    INTERVIEW_COMPLETED = "INTERVIEW_COMPLETED"
    RESULTS_READY = "RESULTS_READY"


class NotificationService(Protocol):
    async def create(self, target_id: str, type: NotificationType, message: str, link: str | None = None) -> None:
        ...


class LocalNotificationService:
    """Keeps notifications in memory; delivery channels live outside this service."""

    def __init__(self, max_items: int = 500):
        self._lock = Lock()
        self._items: list[dict] = []
        self.max_items = max(1, int(max_items))

    async def create(self, target_id: str, type: NotificationType, message: str, link: str | None = None) -> None:
        item = {
            "id": str(uuid.uuid4()),
            "target_id": target_id,
            "type": NotificationType(type).value,
            "message": message,
            "link": link,
            "created_at": time.time(),
            "is_read": False,
        }
        with self._lock:
            self._items.append(item)
            del self._items[:-self.max_items]
        logger.info("notification created | target=%s type=%s", target_id, item["type"])

    def list_for(self, target_id: str) -> list[dict]:
        with self._lock:
            return [dict(item) for item in self._items if item["target_id"] == target_id]


async def notify_safely(
    notifier: NotificationService | None,
    target_id: str,
    type: NotificationType,
    message: str,
    link: str | None = None,
) -> None:
    """Fire-and-forget: delivery failures are logged, never raised to the event handler."""
    if notifier is None:
        return
    try:
        await notifier.create(target_id=target_id, type=type, message=message, link=link)
    except Exception as exc:
        logger.warning("notification failed | target=%s type=%s err=%s", target_id, type, exc)
