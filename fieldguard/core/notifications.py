"""
Save notifications: a short message with an optional undo action, fanned out
to whoever renders them (toast, HTTP poller, CLI).
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional

from . import config
from ..util.logging import logger

UndoAction = Callable[[], Awaitable[Any]]
Subscriber = Callable[["SaveNotification"], None]


@dataclass
class SaveNotification:
    message: str
    record_id: str
    on_undo: Optional[UndoAction] = None
    action_label: str = "Undo"
    duration_sec: int = field(default_factory=config.get_undo_window)
    created_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "message": self.message,
            "record_id": self.record_id,
            "action_label": self.action_label if self.on_undo else None,
            "duration_sec": self.duration_sec,
            "created_at": self.created_at.isoformat()
        }


class NotificationCenter:
    """Publishes notifications to subscribers and keeps the most recent ones."""

    def __init__(self, history_size: int = 20):
        self._subscribers: List[Subscriber] = []
        self.history: List[SaveNotification] = []
        self.history_size = history_size

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register a subscriber; returns a function that unsubscribes it."""
        self._subscribers.append(callback)
        return lambda: self.unsubscribe(callback)

    def unsubscribe(self, callback: Subscriber) -> None:
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    def publish(self, notification: SaveNotification) -> None:
        self.history.append(notification)
        del self.history[:-self.history_size]

        for callback in list(self._subscribers):
            try:
                callback(notification)
            except Exception as e:
                # A broken renderer must not fail the save that triggered it
                logger.error(f"Notification subscriber failed: {e}")

    def latest(self) -> Optional[SaveNotification]:
        return self.history[-1] if self.history else None
