"""
Transient user notifications.

Every failure produces a destructive notification with a short title and
the underlying message; every success produces a confirmation. The
history is bounded and drained by GET /api/notifications.
"""
import logging
from collections import deque
from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import List

logger = logging.getLogger(__name__)


@dataclass
class Notification:
    title: str
    description: str
    variant: str = "default"  # default, destructive
    created_at: str = field(default_factory=lambda: datetime.utcnow().isoformat())

    def to_dict(self) -> dict:
        return asdict(self)


class Notifier:
    def __init__(self, history_size: int = 50):
        self._history = deque(maxlen=history_size)

    def success(self, title: str, description: str = "") -> Notification:
        logger.info(f"{title}: {description}")
        return self._push(Notification(title=title, description=description))

    def error(self, title: str, description: str = "") -> Notification:
        logger.error(f"{title}: {description}")
        return self._push(Notification(title=title, description=description, variant="destructive"))

    def _push(self, notification: Notification) -> Notification:
        self._history.append(notification)
        return notification

    def recent(self) -> List[Notification]:
        return list(self._history)

    def drain(self) -> List[Notification]:
        items = list(self._history)
        self._history.clear()
        return items
