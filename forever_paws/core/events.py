"""
Typed in-process event bus.

Handlers subscribe to an event class and receive instances of it (or of a
subclass). A failing handler is logged and never affects the publisher or
other handlers.
"""

from __future__ import annotations

import threading
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Type, TypeVar

from ..utils.logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class Event:
    """Base class for all events."""


@dataclass(frozen=True)
class UserSignedIn(Event):
    user_id: str
    email: str
    # The persisted session already belonged to this user (e.g. a relaunch)
    resumed: bool = False


@dataclass(frozen=True)
class UserSwitched(Event):
    """A different user signed in than the last one seen in this process."""
    previous_user_id: Optional[str]
    user_id: str


@dataclass(frozen=True)
class UserSignedOut(Event):
    user_id: Optional[str]


@dataclass(frozen=True)
class SyncCompleted(Event):
    user_id: str
    inserted: int
    updated: int
    deleted: int
    failed_entities: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class LocalStoreChanged(Event):
    """A local table changed; UI layers refresh what they show."""
    table: str
    user_id: Optional[str] = None


@dataclass(frozen=True)
class OrderStatusChanged(Event):
    order_id: str
    user_id: str
    status: str
    payment_status: str


E = TypeVar("E", bound=Event)
Handler = Callable[[E], None]


class EventBus:
    """In-process event bus keyed by event type."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subscribers: Dict[Type[Event], List[Callable]] = defaultdict(list)

    def subscribe(self, event_type: Type[E], handler: Handler) -> Callable[[], None]:
        """Register a handler. Returns a callable that unsubscribes it."""
        with self._lock:
            self._subscribers[event_type].append(handler)

        def unsubscribe() -> None:
            with self._lock:
                handlers = self._subscribers.get(event_type, [])
                if handler in handlers:
                    handlers.remove(handler)

        return unsubscribe

    def publish(self, event: Event) -> None:
        handlers: List[Callable] = []
        with self._lock:
            for event_type, subscribed in self._subscribers.items():
                if isinstance(event, event_type):
                    handlers.extend(subscribed)
        for handler in handlers:
            try:
                handler(event)
            except Exception as e:
                logger.exception(
                    "Event handler failed",
                    event=type(event).__name__,
                    handler=getattr(handler, "__qualname__", repr(handler)),
                    error=str(e),
                )
