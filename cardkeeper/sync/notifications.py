"""
User-facing feedback for collection changes.

The engine decides that a notification is due and what it says; rendering
belongs to whatever implements `NotificationSink`.
"""

import logging
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol
from uuid import uuid4

from cardkeeper.config import ERROR_NOTIFICATION_SECONDS, SUCCESS_NOTIFICATION_SECONDS
from cardkeeper.models.collection import Collection
from cardkeeper.models.failure import KnownError, RefusalError

logger = logging.getLogger(__name__)


class NotificationLevel(str, Enum):
    SUCCESS = "success"
    ERROR = "error"
    INFO = "info"


@dataclass(frozen=True)
class Notification:
    """A short-lived, dismissible message."""

    level: NotificationLevel
    title: str
    description: str = ""
    duration: float = SUCCESS_NOTIFICATION_SECONDS
    retryable: bool = False
    id: str = field(default_factory=lambda: uuid4().hex)


class NotificationSink(Protocol):
    def notify(self, notification: Notification) -> None: ...


class LoggingNotificationSink:
    """Writes notifications to the log. Default sink for headless use."""

    def notify(self, notification: Notification) -> None:
        level = logging.WARNING if notification.level is NotificationLevel.ERROR else logging.INFO
        logger.log(
            level,
            "NOTIFICATION",
            extra={
                "notification_level": notification.level.value,
                "title": notification.title,
                "description": notification.description,
            },
        )


class NotificationFeed:
    """
    Bounded list of undismissed notifications.

    Oldest entries fall off once `max_items` is reached. Optionally forwards
    every notification to another sink.
    """

    def __init__(self, max_items: int = 50, forward: NotificationSink | None = None) -> None:
        self._items: deque[Notification] = deque(maxlen=max_items)
        self._forward = forward

    def notify(self, notification: Notification) -> None:
        self._items.append(notification)
        if self._forward is not None:
            self._forward.notify(notification)

    def pending(self) -> list[Notification]:
        return list(self._items)

    def dismiss(self, notification_id: str) -> bool:
        for item in self._items:
            if item.id == notification_id:
                self._items.remove(item)
                return True
        return False

    def clear(self) -> None:
        self._items.clear()

    def __len__(self) -> int:
        return len(self._items)


# =============================================================================
# MESSAGES
# =============================================================================


def _collection_label(collection: Collection | None) -> str:
    return collection.name if collection is not None else "your collection"


def _failure(title: str, description: str, retryable: bool) -> Notification:
    return Notification(
        level=NotificationLevel.ERROR,
        title=title,
        description=description,
        duration=ERROR_NOTIFICATION_SECONDS,
        retryable=retryable,
    )


def card_added(collection: Collection | None, copies: int = 1) -> Notification:
    what = "Card" if copies == 1 else f"{copies} copies"
    return Notification(
        level=NotificationLevel.SUCCESS,
        title="Card added",
        description=f"{what} added to {_collection_label(collection)}",
    )


def card_removed(collection: Collection | None, remaining: int) -> Notification:
    if remaining > 0:
        return Notification(
            level=NotificationLevel.SUCCESS,
            title="Card updated",
            description=f"Quantity decreased to {remaining}",
        )
    return Notification(
        level=NotificationLevel.SUCCESS,
        title="Card removed",
        description=f"Removed from {_collection_label(collection)}",
    )


def quantity_set(quantity: int) -> Notification:
    return Notification(
        level=NotificationLevel.SUCCESS,
        title="Quantity updated",
        description=f"Quantity set to {quantity}",
    )


def add_failed(error: KnownError) -> Notification:
    return _failure(
        "Failed to add card",
        "There was a problem adding the card. Please try again.",
        error.retryable,
    )


def remove_failed(error: KnownError) -> Notification:
    return _failure(
        "Failed to remove card",
        "There was a problem removing the card. Please try again.",
        error.retryable,
    )


def set_quantity_failed(error: KnownError) -> Notification:
    return _failure(
        "Error updating card",
        "The quantity could not be saved. Please try again.",
        error.retryable,
    )


def refused(error: RefusalError) -> Notification:
    """Immediate feedback for rejected input."""
    return _failure(error.message, error.suggestion or "", error.retryable)


def collection_created(collection: Collection) -> Notification:
    return Notification(
        level=NotificationLevel.SUCCESS,
        title="Collection created",
        description=f"{collection.name} was created",
    )


def collection_updated(collection: Collection) -> Notification:
    return Notification(
        level=NotificationLevel.SUCCESS,
        title="Collection updated",
        description=f"{collection.name} was updated",
    )


def collection_deleted(collection: Collection | None) -> Notification:
    return Notification(
        level=NotificationLevel.SUCCESS,
        title="Collection deleted",
        description=f"{_collection_label(collection)} was deleted",
    )


def collection_failed(action: str, error: KnownError) -> Notification:
    return _failure(f"Error {action} collection", error.message, error.retryable)
