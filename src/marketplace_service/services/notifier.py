"""Notification dispatch and per-user inbox."""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING, Any, Protocol

from service_commons.exceptions import ServiceError

from marketplace_service.domain import Notification, now_iso
from marketplace_service.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from marketplace_service.services.marketplace_store import MarketplaceStore


class EventSink(Protocol):
    """Anything that can deliver a notification to a user."""

    def publish(self, user_id: str, notification: Notification) -> None: ...


class StoreEventSink:
    """Persists notifications so users can read them later."""

    def __init__(self, store: MarketplaceStore) -> None:
        self._store = store

    def publish(self, user_id: str, notification: Notification) -> None:
        self._store.insert_notification(
            {
                "notification_id": f"ntf-{uuid.uuid4()}",
                "user_id": user_id,
                "type": notification.type,
                "title": notification.title,
                "message": notification.message,
                "related_id": notification.related_id,
                "related_type": notification.related_type,
                "metadata": notification.payload(),
                "created_at": now_iso(),
            }
        )


class LoggingEventSink:
    """Writes each notification to the service log."""

    def __init__(self) -> None:
        self._logger = get_logger(__name__)

    def publish(self, user_id: str, notification: Notification) -> None:
        self._logger.info(
            "Notification published",
            extra={
                "user_id": user_id,
                "notification_type": notification.type,
                "related_id": notification.related_id,
            },
        )


class NotificationEmitter:
    """
    Fire-and-forget delivery to every configured sink.

    Called only after the economic effect has committed. A failing sink is
    logged and skipped; it never fails the operation that emitted.
    """

    def __init__(self, sinks: Sequence[EventSink]) -> None:
        self._sinks = list(sinks)
        self._logger = get_logger(__name__)

    def emit(self, notifications: Iterable[Notification]) -> None:
        for notification in notifications:
            for sink in self._sinks:
                try:
                    sink.publish(notification.user_id, notification)
                except Exception:
                    self._logger.warning(
                        "Notification delivery failed",
                        exc_info=True,
                        extra={
                            "user_id": notification.user_id,
                            "notification_type": notification.type,
                            "sink": type(sink).__name__,
                        },
                    )


class NotificationInbox:
    """Read side of persisted notifications."""

    def __init__(self, store: MarketplaceStore) -> None:
        self._store = store

    def list_notifications(
        self, user_id: str, *, unread_only: bool = False, limit: int = 50
    ) -> list[dict[str, Any]]:
        return self._store.list_notifications(user_id, unread_only=unread_only, limit=limit)

    def unread_count(self, user_id: str) -> int:
        return self._store.count_unread_notifications(user_id)

    def mark_read(self, user_id: str, notification_id: str) -> dict[str, Any]:
        """Mark one notification read; only its recipient can see it."""
        if self._store.mark_notifications_read(user_id, notification_id) == 0:
            raise ServiceError("NOTIFICATION_NOT_FOUND", "Notification not found", 404, {})
        notification = self._store.get_notification(user_id, notification_id)
        if notification is None:
            raise ServiceError("NOTIFICATION_NOT_FOUND", "Notification not found", 404, {})
        return notification

    def mark_all_read(self, user_id: str) -> int:
        """Mark every unread notification read and return how many changed."""
        return self._store.mark_notifications_read(user_id, None)
