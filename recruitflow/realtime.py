"""In-process change feed.

Every write in :mod:`recruitflow.services` publishes a :class:`ChangeEvent`
carrying the full row. Subscribers register per table, optionally narrowed
to rows whose ``column`` equals ``value`` (e.g. notes of one candidate).
"""

import asyncio
import logging
import threading
from collections import defaultdict
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import AliasChoices, BaseModel, Field, ValidationError

from .models import utc_now

logger = logging.getLogger(__name__)

EventType = Literal["INSERT", "UPDATE", "DELETE"]


class ChangeEvent(BaseModel):
    event_type: EventType = Field(validation_alias=AliasChoices("event_type", "eventType"))
    table: str
    new: dict[str, Any] = Field(default_factory=dict)
    old: dict[str, Any] = Field(default_factory=dict)
    commit_timestamp: datetime = Field(default_factory=utc_now)

    @property
    def record(self) -> dict[str, Any]:
        return self.old if self.event_type == "DELETE" else self.new


def parse_event(payload: Any) -> Optional[ChangeEvent]:
    """Validate a raw event payload; malformed payloads are logged and dropped."""
    try:
        return ChangeEvent.model_validate(payload)
    except ValidationError as exc:
        logger.warning("Dropping malformed change event: %s", exc)
        return None


@dataclass(slots=True)
class Subscription:
    table: str
    callback: Callable[[ChangeEvent], None]
    column: Optional[str] = None
    value: Any = None

    def matches(self, event: ChangeEvent) -> bool:
        if event.table != self.table:
            return False
        if self.column is None:
            return True
        return event.record.get(self.column) == self.value


class EventBus:
    def __init__(self) -> None:
        self._subscriptions: dict[str, list[Subscription]] = defaultdict(list)
        self._lock = threading.Lock()

    def subscribe(
        self,
        table: str,
        callback: Callable[[ChangeEvent], None],
        column: Optional[str] = None,
        value: Any = None,
    ) -> Callable[[], None]:
        """Register ``callback`` and return a function that removes it again."""
        subscription = Subscription(table=table, callback=callback, column=column, value=value)
        with self._lock:
            self._subscriptions[table].append(subscription)

        def unsubscribe() -> None:
            with self._lock:
                if subscription in self._subscriptions.get(table, []):
                    self._subscriptions[table].remove(subscription)

        return unsubscribe

    def publish(self, event: ChangeEvent) -> None:
        with self._lock:
            subscriptions = list(self._subscriptions.get(event.table, []))

        for subscription in subscriptions:
            if not subscription.matches(event):
                continue
            try:
                subscription.callback(event)
            except Exception:
                # One broken subscriber must not starve the others
                logger.exception("Subscriber failed on %s event for %s", event.event_type, event.table)

    def subscriber_count(self, table: str) -> int:
        with self._lock:
            return len(self._subscriptions.get(table, []))

    async def stream(
        self,
        table: str,
        column: Optional[str] = None,
        value: Any = None,
    ) -> AsyncIterator[ChangeEvent]:
        """Yield events for ``table`` until the consumer stops iterating."""
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue[ChangeEvent] = asyncio.Queue()

        def forward(event: ChangeEvent) -> None:
            loop.call_soon_threadsafe(queue.put_nowait, event)

        unsubscribe = self.subscribe(table, forward, column=column, value=value)
        try:
            while True:
                yield await queue.get()
        finally:
            unsubscribe()


event_bus = EventBus()


def get_event_bus() -> EventBus:
    return event_bus


def publish_change(
    event_type: EventType,
    table: str,
    new: Optional[dict[str, Any]] = None,
    old: Optional[dict[str, Any]] = None,
    bus: Optional[EventBus] = None,
) -> ChangeEvent:
    event = ChangeEvent(event_type=event_type, table=table, new=new or {}, old=old or {})
    (bus or event_bus).publish(event)
    return event
