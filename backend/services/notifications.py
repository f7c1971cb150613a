"""Notification sinks for push delivery.

Push delivery is an external collaborator. Whatever sink is configured, a
failed delivery is logged and dropped; it never fails the message write that
triggered it.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Protocol, runtime_checkable

import requests

from backend import config
from backend.observability import record_notification_failure

logger = logging.getLogger("luna.notifications")


@runtime_checkable
class NotificationSink(Protocol):
    async def notify(self, user_ids: list[str], title: str, body: str, data: dict[str, Any] | None = None) -> None: ...


class LoggingNotificationSink:
    """Default sink when no push relay is configured."""

    async def notify(self, user_ids: list[str], title: str, body: str, data: dict[str, Any] | None = None) -> None:
        logger.info("Notification for %s: %s (%s)", ",".join(user_ids), title, (data or {}).get("type", ""))


class HttpNotificationSink:
    """Posts notification payloads to a push relay over HTTP."""

    def __init__(self, url: str, timeout: float = 5.0, session: requests.Session | None = None):
        self.url = url
        self.timeout = timeout
        self.session = session or requests.Session()

    def _post(self, payload: dict[str, Any]) -> None:
        response = self.session.post(self.url, json=payload, timeout=self.timeout)
        response.raise_for_status()

    async def notify(self, user_ids: list[str], title: str, body: str, data: dict[str, Any] | None = None) -> None:
        payload = {
            "userIds": list(user_ids),
            "title": title or config.PUSH_DEFAULT_TITLE,
            "body": body,
            "icon": "/icon.svg",
            "badge": "/icon.svg",
            "data": data or {},
        }
        await asyncio.to_thread(self._post, payload)


def build_notification_sink() -> NotificationSink:
    if config.PUSH_RELAY_URL:
        logger.info("Push relay configured: %s", config.PUSH_RELAY_URL)
        return HttpNotificationSink(config.PUSH_RELAY_URL, timeout=config.PUSH_RELAY_TIMEOUT_SECONDS)
    logger.warning("Push relay not configured - notifications will only be logged")
    return LoggingNotificationSink()


async def notify_safely(
    sink: NotificationSink, user_ids: list[str], title: str, body: str, data: dict[str, Any] | None = None,
) -> bool:
    """Deliver through ``sink``; swallow and log any failure. Returns success."""
    if not user_ids:
        return True
    try:
        await sink.notify(user_ids, title, body, data)
        return True
    except Exception as exc:  # noqa: BLE001
        logger.warning("Notification delivery failed for %s: %s", ",".join(user_ids), exc)
        record_notification_failure(type(sink).__name__)
        return False
