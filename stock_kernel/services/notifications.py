"""
NotificationBus -- outbound notifications for external collaborators.

Responsibility:
    Fans committed stock changes out to subscribers (real-time UI refresh,
    transaction history display, operational monitoring).  Synchronous and
    in-process; transports are the subscribers' concern.

Architecture position:
    Kernel > Services.  Published to by StockTransactionProcessor after
    commit and by ConsistencyReconciler after a verify/repair.

Invariants enforced:
    - Notifications are only published after the unit of work commits.
    - A failing handler is logged and skipped; it never affects the
      committed movement or the other handlers.
"""

import threading
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass
from typing import ClassVar
from uuid import UUID

from stock_kernel.domain.dtos import ConsistencyReport, Direction, LedgerEntryRecord
from stock_kernel.logging_config import get_logger

logger = get_logger("services.notifications")

TOPIC_STOCK_CHANGED = "stock_changed"
TOPIC_MOVEMENT_RECORDED = "movement_recorded"
TOPIC_CONSISTENCY_REPORT = "consistency_report"
TOPIC_ALL = "*"


@dataclass(frozen=True)
class StockChanged:
    topic: ClassVar[str] = TOPIC_STOCK_CHANGED

    product_id: UUID
    new_quantity: int
    direction: Direction
    quantity_delta: int


@dataclass(frozen=True)
class MovementRecorded:
    topic: ClassVar[str] = TOPIC_MOVEMENT_RECORDED

    entry: LedgerEntryRecord


@dataclass(frozen=True)
class ConsistencyReportEmitted:
    topic: ClassVar[str] = TOPIC_CONSISTENCY_REPORT

    report: ConsistencyReport
    repaired: bool


Notification = StockChanged | MovementRecorded | ConsistencyReportEmitted
Handler = Callable[[Notification], None]


class NotificationBus:
    """
    Thread-safe topic-based publish/subscribe.

    Subscribing to ``TOPIC_ALL`` receives every notification.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._handlers: dict[str, list[Handler]] = defaultdict(list)

    def subscribe(self, topic: str, handler: Handler) -> Callable[[], None]:
        """Register ``handler``; returns a function that unsubscribes it."""
        with self._lock:
            self._handlers[topic].append(handler)

        def unsubscribe() -> None:
            with self._lock:
                if handler in self._handlers[topic]:
                    self._handlers[topic].remove(handler)

        return unsubscribe

    def publish(self, notification: Notification) -> None:
        with self._lock:
            handlers = list(self._handlers[notification.topic]) + list(
                self._handlers[TOPIC_ALL]
            )

        for handler in handlers:
            try:
                handler(notification)
            except Exception:
                logger.exception(
                    "notification_handler_failed",
                    extra={
                        "topic": notification.topic,
                        "handler": getattr(handler, "__qualname__", repr(handler)),
                    },
                )
