"""
Notification events emitted on trade state changes.

The core only describes what happened. Delivery and retry belong to the
channel, and a failing channel never affects the operation that emitted
the event.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class NotificationKind(str, Enum):
    TRADE_REQUEST_RECEIVED = "trade_request_received"
    TRADE_REQUEST_ACCEPTED = "trade_request_accepted"
    TRADE_REQUEST_REJECTED = "trade_request_rejected"
    ROOM_INVITE_RECEIVED = "room_invite_received"
    ROOM_INVITE_ACCEPTED = "room_invite_accepted"
    ROOM_INVITE_REJECTED = "room_invite_rejected"
    TRADE_ACCEPTED = "trade_accepted"
    TRADE_REJECTED = "trade_rejected"
    TRADE_CANCELLED = "trade_cancelled"
    TRADE_COMPLETED = "trade_completed"


@dataclass(frozen=True)
class NotificationEvent:
    """Something a user should hear about."""

    kind: NotificationKind
    user_id: str
    title: str
    message: str
    data: dict[str, Any] = field(default_factory=dict)


class NotificationChannel(Protocol):
    def publish(self, event: NotificationEvent) -> None: ...


class LoggingNotificationChannel:
    """Default channel: records events in the application log."""

    def publish(self, event: NotificationEvent) -> None:
        logger.info(
            "NOTIFICATION",
            extra={
                "kind": event.kind.value,
                "user_id": event.user_id,
                "title": event.title,
                "data": event.data,
            },
        )


class RecordingNotificationChannel:
    """Keeps published events in memory."""

    def __init__(self) -> None:
        self.events: list[NotificationEvent] = []

    def publish(self, event: NotificationEvent) -> None:
        self.events.append(event)

    def kinds(self) -> list[NotificationKind]:
        return [event.kind for event in self.events]


def publish_all(channel: NotificationChannel, events: list[NotificationEvent]) -> None:
    """
    Fire-and-forget delivery of events.

    Call only after the unit of work has committed.
    """
    for event in events:
        try:
            channel.publish(event)
        except Exception:
            logger.warning(
                "NOTIFICATION_PUBLISH_FAILED",
                extra={"kind": event.kind.value, "user_id": event.user_id},
                exc_info=True,
            )
