"""
Observable state container.

CatalogStore holds the one current StoreSnapshot and broadcasts every new
snapshot to its subscribers. Snapshots are frozen; consumers read them and
issue commands through the SyncOrchestrator, never mutating state directly.

Status messages are transient: each carries an expiry time and disappears from
snapshots once MESSAGE_TTL_SECONDS have passed.
"""

import logging
import threading
import time
from typing import Any, Callable, Dict, List, Tuple

from craftify.models import StatusMessage, StoreSnapshot

logger = logging.getLogger(__name__)

# How long a status message stays visible
MESSAGE_TTL_SECONDS = 4.0

Subscriber = Callable[[StoreSnapshot], None]


class CatalogStore:
    """Single-owner state container with a subscription list."""

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._snapshot = StoreSnapshot()
        self._subscribers: List[Subscriber] = []
        self._lock = threading.RLock()

    def snapshot(self) -> StoreSnapshot:
        """Current snapshot, with an expired status message already dismissed."""
        with self._lock:
            message = self._snapshot.message
            if message is not None and self._clock() >= message.expires_at:
                self._snapshot = self._snapshot.model_copy(update={"message": None})
            return self._snapshot

    def subscribe(self, subscriber: Subscriber, emit_current: bool = True) -> Callable[[], None]:
        """
        Register subscriber for future snapshots.

        Args:
            subscriber: Called with each new snapshot
            emit_current: Also call it right away with the current snapshot

        Returns:
            A function that removes the subscription
        """
        with self._lock:
            self._subscribers.append(subscriber)
            current = self.snapshot()
        if emit_current:
            self._deliver(subscriber, current)

        def unsubscribe() -> None:
            with self._lock:
                if subscriber in self._subscribers:
                    self._subscribers.remove(subscriber)

        return unsubscribe

    def _apply(self, changes: Dict[str, Any]) -> Tuple[StoreSnapshot, List[Subscriber]]:
        # Caller holds self._lock
        self._snapshot = self._snapshot.model_copy(update=changes)
        return self._snapshot, list(self._subscribers)

    def _broadcast(self, snapshot: StoreSnapshot, subscribers: List[Subscriber]) -> StoreSnapshot:
        for subscriber in subscribers:
            self._deliver(subscriber, snapshot)
        return snapshot

    def update(self, **changes: Any) -> StoreSnapshot:
        """Replace the given snapshot fields and broadcast the result."""
        with self._lock:
            snapshot, subscribers = self._apply(changes)
        return self._broadcast(snapshot, subscribers)

    def update_sync(self, **changes: Any) -> StoreSnapshot:
        """Replace fields of the nested SyncState."""
        with self._lock:
            sync = self._snapshot.sync.model_copy(update=changes)
            snapshot, subscribers = self._apply({"sync": sync})
        return self._broadcast(snapshot, subscribers)

    def post_message(self, text: str, level: str = "info", ttl: float = MESSAGE_TTL_SECONDS) -> StoreSnapshot:
        message = StatusMessage(text=text, level=level, expires_at=self._clock() + ttl)
        return self.update(message=message)

    @staticmethod
    def _deliver(subscriber: Subscriber, snapshot: StoreSnapshot) -> None:
        # A failing subscriber must not block the others
        try:
            subscriber(snapshot)
        except Exception as exc:
            logger.error("Store subscriber %r failed: %s", subscriber, exc, exc_info=True)
