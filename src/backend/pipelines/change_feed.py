from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Dict, List, Protocol

from common.logger import get_logger

logger = get_logger(__name__)


class ChangeKind(str, Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    ANY = "*"


@dataclass(frozen=True)
class ChangeEvent:
    """A change happened in ``collection``; the row payload is not needed."""

    collection: str
    kind: ChangeKind = ChangeKind.ANY
    received_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


ChangeHandler = Callable[[ChangeEvent], None]


class Subscription(Protocol):
    def unsubscribe(self) -> None:
        ...


class ChangeFeed(Protocol):
    def subscribe(self, collection: str, handler: ChangeHandler) -> Subscription:
        """Call ``handler`` for every change in ``collection`` until unsubscribed."""
        ...


class _LocalSubscription:
    def __init__(self, feed: "LocalChangeFeed", collection: str, handler: ChangeHandler) -> None:
        self._feed = feed
        self._collection = collection
        self._handler = handler
        self._active = True

    def unsubscribe(self) -> None:
        if not self._active:
            return
        self._active = False
        self._feed._remove(self._collection, self._handler)


class LocalChangeFeed:
    """In-process feed; database webhooks and tests publish into it."""

    def __init__(self) -> None:
        self._handlers: Dict[str, List[ChangeHandler]] = {}

    def subscribe(self, collection: str, handler: ChangeHandler) -> Subscription:
        self._handlers.setdefault(collection, []).append(handler)
        return _LocalSubscription(self, collection, handler)

    def publish(self, event: ChangeEvent) -> int:
        """Deliver ``event`` to every subscriber of its collection; returns how many."""
        handlers = list(self._handlers.get(event.collection, ()))
        if not handlers:
            logger.debug("No subscribers for change on %s.", event.collection)
        for handler in handlers:
            handler(event)
        return len(handlers)

    def subscriber_count(self, collection: str | None = None) -> int:
        if collection is not None:
            return len(self._handlers.get(collection, ()))
        return sum(len(h) for h in self._handlers.values())

    def _remove(self, collection: str, handler: ChangeHandler) -> None:
        handlers = self._handlers.get(collection)
        if not handlers:
            return
        try:
            handlers.remove(handler)
        except ValueError:
            return
        if not handlers:
            del self._handlers[collection]
