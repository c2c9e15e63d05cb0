"""
Base connector contracts for the managed cloud services.

The synchronizer treats the cloud database and the cloud key-value store as
opaque remote services. This module defines the two interfaces every backend
must implement, so the fetcher and the orchestrator never depend on a specific
transport:

- BaseDatabaseConnector: match-all queries with cursor-based pagination
- BaseKeyValueStore: get / set / synchronize, plus change listeners for
  externally-originated updates (another device changed a value)
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

# Listener signature: receives the list of keys that changed remotely
ChangeListener = Callable[[List[str]], None]


@dataclass
class RemoteRecord:
    """A raw record as returned by the database: its record name and field values."""
    record_name: str
    fields: Dict[str, Any] = field(default_factory=dict)


@dataclass
class QueryPage:
    """
    One page of query results.

    Attributes:
        records: Records matched on this page
        cursor: Opaque continuation token, or None when no more results remain
    """
    records: List[RemoteRecord]
    cursor: Optional[str] = None


class BaseDatabaseConnector(ABC):
    """
    Abstract base class for the remote record database.

    Implementations raise craftify.errors.RemoteServiceError on any page-level
    failure; classification and retries happen in the fetcher.
    """

    @abstractmethod
    def query(self, record_type: str, cursor: Optional[str] = None) -> QueryPage:
        """
        Run a match-all query for record_type.

        Args:
            record_type: Record type to query (e.g., "Recipe")
            cursor: Continuation token from a previous page, or None for the first page

        Returns:
            QueryPage with the matched records and the next cursor (if any)
        """
        pass


class BaseKeyValueStore(ABC):
    """
    Abstract base class for the cloud key-value store.

    Writes are local first and reach the remote side on synchronize(). Values
    changed by another device are reported to listeners registered with
    add_change_listener(); delivery is at-least-once and may be stale.
    """

    def __init__(self) -> None:
        self._listeners: List[ChangeListener] = []

    @abstractmethod
    def get(self, key: str) -> Any:
        """Return the current value for key, or None if unset."""
        pass

    @abstractmethod
    def set(self, key: str, value: Any) -> None:
        """Set key to value (visible locally immediately, pushed on synchronize())."""
        pass

    @abstractmethod
    def synchronize(self) -> bool:
        """Push pending writes and pull remote values. Returns True on success."""
        pass

    def add_change_listener(self, listener: ChangeListener) -> None:
        """Register a callback for externally-originated changes."""
        self._listeners.append(listener)

    def remove_change_listener(self, listener: ChangeListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def notify_external_change(self, keys: List[str]) -> None:
        """Deliver an external change notification to every registered listener."""
        for listener in list(self._listeners):
            listener(list(keys))
