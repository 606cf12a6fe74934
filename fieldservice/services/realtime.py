"""
In-process change notification hub.

Backends publish one ChangeEvent per committed write; subscribers register
per table with an event mask ("*" or a set of INSERT / UPDATE / DELETE).
Delivery is at-most-once and unordered relative to the writer's own
follow-up reads, which is fine for consumers that re-fetch wholesale.

Usage:
    feed = ChangeFeed()
    handle = feed.subscribe("service_orders", "*", on_change)
    feed.publish("INSERT", "service_orders")
    feed.unsubscribe(handle)
"""
import itertools
import logging
from dataclasses import dataclass
from typing import Callable, Dict, FrozenSet, Iterable, Union

logger = logging.getLogger(__name__)

CHANGE_EVENTS = frozenset({"INSERT", "UPDATE", "DELETE"})


@dataclass(frozen=True)
class ChangeEvent:
    event: str
    table: str


@dataclass(frozen=True)
class Subscription:
    """Handle returned by subscribe(); pass it back to unsubscribe()"""
    id: int
    table: str
    events: FrozenSet[str]


def _normalize_mask(events: Union[str, Iterable[str]]) -> FrozenSet[str]:
    if events == "*":
        return CHANGE_EVENTS
    if isinstance(events, str):
        events = [events]
    mask = frozenset(e.upper() for e in events)
    unknown = mask - CHANGE_EVENTS
    if unknown:
        raise ValueError(f"Unknown change events: {', '.join(sorted(unknown))}")
    return mask


class ChangeFeed:
    """Fan-out of table change events to registered callbacks"""

    def __init__(self):
        self._ids = itertools.count(1)
        self._subscriptions: Dict[int, tuple] = {}

    def subscribe(self, table: str, events, callback: Callable[[ChangeEvent], None]) -> Subscription:
        handle = Subscription(id=next(self._ids), table=table, events=_normalize_mask(events))
        self._subscriptions[handle.id] = (handle, callback)
        logger.debug(f"Subscribed #{handle.id} to {table} {sorted(handle.events)}")
        return handle

    def unsubscribe(self, handle: Subscription) -> bool:
        removed = self._subscriptions.pop(handle.id, None) is not None
        if removed:
            logger.debug(f"Unsubscribed #{handle.id} from {handle.table}")
        return removed

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def publish(self, event: str, table: str) -> int:
        """Deliver an event to every matching subscriber. Returns deliveries made."""
        change = ChangeEvent(event=event.upper(), table=table)
        delivered = 0
        # Copy: callbacks may subscribe or unsubscribe while we iterate
        for handle, callback in list(self._subscriptions.values()):
            if handle.table != table or change.event not in handle.events:
                continue
            if handle.id not in self._subscriptions:
                continue
            try:
                callback(change)
                delivered += 1
            except Exception as e:
                logger.error(f"Change subscriber #{handle.id} failed on {table} {change.event}: {e}")
        return delivered
