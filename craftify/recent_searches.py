"""
Recent search tracking.

The list holds up to MAX_RECENT_SEARCHES distinct recipe names, most recent
first, stored as a JSON-encoded string array in local preferences. A stored
value that does not decode is treated as an empty list.
"""

import json
import logging
from typing import Iterable, List

from craftify.models import MAX_RECENT_SEARCHES, CatalogItem
from craftify.preferences import PREF_KEY_RECENT_SEARCHES, LocalPreferences

logger = logging.getLogger(__name__)


class RecentSearchTracker:
    """Recent search names on top of LocalPreferences."""

    def __init__(self, preferences: LocalPreferences, key: str = PREF_KEY_RECENT_SEARCHES,
                 limit: int = MAX_RECENT_SEARCHES) -> None:
        self.preferences = preferences
        self.key = key
        self.limit = limit

    def names(self) -> List[str]:
        """Current list, most recent first."""
        raw = self.preferences.get_string(self.key)
        if not raw:
            return []
        try:
            decoded = json.loads(raw)
        except ValueError:
            logger.debug("Recent searches value is not valid JSON; treating as empty")
            return []
        if not isinstance(decoded, list):
            return []
        return [name for name in decoded if isinstance(name, str)][: self.limit]

    def _store(self, names: List[str]) -> bool:
        return self.preferences.set_string(self.key, json.dumps(names, ensure_ascii=False))

    def record(self, name: str) -> List[str]:
        """Move name to the front (adding it if new) and keep the first `limit` entries."""
        names = [n for n in self.names() if n != name]
        names.insert(0, name)
        names = names[: self.limit]
        self._store(names)
        return names

    def remove(self, name: str) -> List[str]:
        """Drop every occurrence of name; no-op if it is not in the list."""
        current = self.names()
        names = [n for n in current if n != name]
        if names != current:
            self._store(names)
        return names

    def clear_all(self) -> bool:
        return self._store([])

    def known_names(self, catalog: Iterable[CatalogItem]) -> List[str]:
        """The stored list restricted to names still present in catalog (stored value untouched)."""
        known = {item.name for item in catalog}
        return [name for name in self.names() if name in known]
