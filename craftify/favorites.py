"""
Favorites reconciliation against the current catalog.

Favorite ids live in the cloud key-value store under FAVORITES_KEY, so they
follow the user across devices. An id is only valid while the catalog has an
item with that id; reconcile() drops the others and writes the pruned list
back. Reconciliation is idempotent, so running it again on a duplicate or
stale change notification is harmless.
"""

import logging
import threading
from typing import Any, Iterable, List, Optional, Set

from craftify.connectors.base import BaseKeyValueStore
from craftify.models import CatalogItem

logger = logging.getLogger(__name__)

FAVORITES_KEY = "favoriteRecipes"


def coerce_ids(value: Any) -> List[int]:
    """Turn a stored value into a list of distinct int ids, keeping first occurrences."""
    if not isinstance(value, list):
        return []
    ids: List[int] = []
    seen = set()
    for entry in value:
        if isinstance(entry, bool) or not isinstance(entry, int):
            continue
        if entry not in seen:
            seen.add(entry)
            ids.append(entry)
    return ids


def reconcile(
    catalog: Iterable[CatalogItem],
    stored_ids: List[int],
    kv_store: Optional[BaseKeyValueStore] = None,
    key: str = FAVORITES_KEY,
) -> List[int]:
    """
    Filter stored_ids down to ids present in catalog.

    Args:
        catalog: Current catalog items
        stored_ids: Favorite ids as stored, in user order
        kv_store: Where to write the pruned list back; None skips the write
        key: Key holding the favorite list

    Returns:
        Surviving ids in their original order

    Examples:
        >>> items = [CatalogItem(id=i, name=str(i), image="", ingredients=[], output=1, category="")
        ...          for i in (1, 2, 3)]
        >>> reconcile(items, [5, 2, 9, 1])
        [2, 1]
    """
    known = {item.id for item in catalog}
    valid = [i for i in stored_ids if i in known]

    if len(valid) < len(stored_ids) and kv_store is not None:
        logger.info("Pruning %d stale favorite id(s)", len(stored_ids) - len(valid))
        kv_store.set(key, valid)
        kv_store.synchronize()
    return valid


class FavoritesManager:
    """
    Favorite list with write-through to the key-value store.

    The stored list in the key-value store is the source of truth. ids is the
    view of it restricted to the catalog from the last reconcile(). toggle()
    and clear() edit the stored list, so ids hidden by an unconfirmed catalog
    survive a toggle. Every toggle() writes immediately (no batching), so two
    toggles in a row mean two writes.
    """

    def __init__(self, kv_store: BaseKeyValueStore, key: str = FAVORITES_KEY) -> None:
        self.kv_store = kv_store
        self.key = key
        self._ids: List[int] = []
        # Catalog ids seen by the last reconcile(); None until the first one
        self._known: Optional[Set[int]] = None
        self._lock = threading.RLock()

    @property
    def ids(self) -> List[int]:
        with self._lock:
            return list(self._ids)

    def stored_ids(self) -> List[int]:
        return coerce_ids(self.kv_store.get(self.key))

    def _visible(self, stored: List[int]) -> List[int]:
        if self._known is None:
            return list(stored)
        return [i for i in stored if i in self._known]

    def reconcile(self, catalog: Iterable[CatalogItem], prune: bool = True) -> List[int]:
        """
        Re-validate the stored list against catalog.

        With prune=False the in-memory view is filtered but nothing is written
        back (used when the catalog may be incomplete).
        """
        catalog = list(catalog)
        with self._lock:
            self._known = {item.id for item in catalog}
            self._ids = reconcile(catalog, self.stored_ids(), self.kv_store if prune else None, key=self.key)
            return list(self._ids)

    def is_favorite(self, item_id: int) -> bool:
        with self._lock:
            return item_id in self._ids

    def toggle(self, item_id: int) -> bool:
        """
        Add item_id to the stored list if absent, remove it if present, then write through.

        The key-value synchronize runs after the local write, outside the lock.

        Returns:
            True if the id is a favorite after the call
        """
        with self._lock:
            stored = self.stored_ids()
            if item_id in stored:
                stored.remove(item_id)
                now_favorite = False
            else:
                stored.append(item_id)
                now_favorite = True
            self.kv_store.set(self.key, stored)
            self._ids = self._visible(stored)
        self._synchronize()
        return now_favorite

    def clear(self) -> bool:
        with self._lock:
            self._ids = []
            self.kv_store.set(self.key, [])
        return self._synchronize()

    def favorite_items(self, catalog: Iterable[CatalogItem]) -> List[CatalogItem]:
        by_id = {item.id: item for item in catalog}
        return [by_id[i] for i in self.ids if i in by_id]

    def _synchronize(self) -> bool:
        ok = self.kv_store.synchronize()
        if not ok:
            logger.warning("Favorites saved locally but not yet synchronized")
        return ok
