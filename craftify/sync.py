"""
Synchronization orchestrator for the recipe catalog.

SyncOrchestrator is the single owner of the in-memory catalog and the sync
state. Everything else (views, the HTTP API) reads StoreSnapshots from its
CatalogStore and calls the operations defined here.

Sync flow: request_sync() / sync() -> CatalogFetcher.fetch_catalog() (background
worker) -> replace catalog -> LocalCacheStore.save() -> reconcile favorites ->
status "synced". On failure the current catalog is kept and status becomes
"failed" with a transient message.

Concurrency rules:
- At most one catalog fetch is in flight; further requests are dropped
- The fetch itself runs without the state lock; every mutation of the store
  and the recent searches happens under self._lock, so there is a single
  writer at any time
- FavoritesManager serializes its own state; favorite toggles and clears
  synchronize the key-value store outside self._lock
- Favorites are reconciled only after the new catalog is in place
"""

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional

from craftify.cache import LocalCacheStore
from craftify.connectors.base import BaseDatabaseConnector, BaseKeyValueStore
from craftify.errors import ErrorKind, FetchError
from craftify.favorites import FAVORITES_KEY, FavoritesManager
from craftify.fetcher import (
    COMMAND_RECORD_TYPE,
    MAX_ATTEMPTS,
    RECIPE_RECORD_TYPE,
    RETRY_DELAY_SECONDS,
    CatalogFetcher,
    FetchResult,
    decode_command,
    decode_recipe,
)
from craftify.models import CatalogItem, ConsoleCommand, StoreSnapshot, SyncErrorInfo, SyncStatus
from craftify.preferences import LocalPreferences
from craftify.recent_searches import RecentSearchTracker
from craftify.store import CatalogStore

logger = logging.getLogger(__name__)

# Minimum time between two automatic catalog fetches
FETCH_COOLDOWN_SECONDS = 30.0

EDITION_ALL = "all"
EDITION_BEDROCK = "bedrock"
EDITION_JAVA = "java"
ALLOWED_EDITIONS = [EDITION_ALL, EDITION_BEDROCK, EDITION_JAVA]

NO_CONNECTION_MESSAGE = "No internet connection. Please connect to sync recipes."


class SyncOrchestrator:
    """
    Owns the catalog, the favorites and the recent searches, and keeps them in sync.

    Attributes:
        store: CatalogStore publishing StoreSnapshots
        favorites: FavoritesManager bound to the key-value store
        recent_searches: RecentSearchTracker bound to local preferences
    """

    def __init__(
        self,
        database: BaseDatabaseConnector,
        kv_store: BaseKeyValueStore,
        cache: LocalCacheStore,
        preferences: LocalPreferences,
        store: Optional[CatalogStore] = None,
        fetch_cooldown: float = FETCH_COOLDOWN_SECONDS,
        max_attempts: int = MAX_ATTEMPTS,
        retry_delay: float = RETRY_DELAY_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.time,
        executor: Optional[ThreadPoolExecutor] = None,
    ) -> None:
        self._clock = clock
        self.store = store or CatalogStore(clock=clock)
        self.cache = cache
        self.kv_store = kv_store
        self.favorites = FavoritesManager(kv_store)
        self.recent_searches = RecentSearchTracker(preferences)
        self.fetcher: CatalogFetcher[CatalogItem] = CatalogFetcher(
            database, RECIPE_RECORD_TYPE, decode_recipe,
            max_attempts=max_attempts, retry_delay=retry_delay, sleep=sleep,
        )
        self.command_fetcher: CatalogFetcher[ConsoleCommand] = CatalogFetcher(
            database, COMMAND_RECORD_TYPE, decode_command,
            max_attempts=max_attempts, retry_delay=retry_delay, sleep=sleep,
        )
        self.fetch_cooldown = fetch_cooldown

        self._lock = threading.RLock()
        self._in_flight = False
        self._last_fetch_at: Optional[float] = None
        # True only while the catalog comes from a fetch where every record decoded
        self._catalog_complete = False
        self._executor = executor
        self._owns_executor = executor is None

        self.kv_store.add_change_listener(self._on_external_change)
        self._load_from_cache()

    # ------------------------------------------------------------------
    # State access
    # ------------------------------------------------------------------

    def snapshot(self) -> StoreSnapshot:
        return self.store.snapshot()

    @property
    def recipes(self) -> List[CatalogItem]:
        return list(self.store.snapshot().recipes)

    @property
    def is_syncing(self) -> bool:
        with self._lock:
            return self._in_flight

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------

    def _load_from_cache(self) -> None:
        items = self.cache.load()
        with self._lock:
            recent = tuple(self.recent_searches.names())
            if not items:
                logger.info("No local cache found; catalog will be fetched on first sync")
                self.store.update(recent_searches=recent)
                return

            recipes = tuple(sorted(items, key=lambda item: (item.name, item.id)))
            self.store.update(recipes=recipes, recent_searches=recent)
            # The cached catalog may be out of date, so nothing is written back
            favorite_ids = self.favorites.reconcile(recipes, prune=False)
            self.store.update(favorite_ids=tuple(favorite_ids))
            self.store.update_sync(status=SyncStatus.SYNCED, is_stale=True)

    # ------------------------------------------------------------------
    # Catalog sync
    # ------------------------------------------------------------------

    def _begin(self, manual: bool) -> bool:
        """Enter the syncing state, or return False if this request is dropped."""
        with self._lock:
            if self._in_flight:
                logger.info("Sync already in progress; request dropped")
                return False

            if not self.store.snapshot().sync.is_connected:
                logger.warning("Sync requested while offline")
                self.store.update_sync(
                    last_error=SyncErrorInfo(kind=ErrorKind.NETWORK.value, message=NO_CONNECTION_MESSAGE)
                )
                self.store.post_message(NO_CONNECTION_MESSAGE, level="error")
                return False

            if not manual and self._last_fetch_at is not None:
                elapsed = self._clock() - self._last_fetch_at
                if elapsed < self.fetch_cooldown:
                    logger.info("Skipping recipe fetch; last fetch was %.1fs ago (cooldown %.0fs)",
                                elapsed, self.fetch_cooldown)
                    return False

            self._in_flight = True
            self.store.update_sync(status=SyncStatus.SYNCING, is_manual=manual, last_error=None)
            return True

    def sync(self, manual: bool = False) -> bool:
        """
        Run a full catalog sync on the calling thread.

        Returns:
            True if a fetch ran and succeeded; False if it failed or the request
            was dropped (already syncing, offline, or inside the cooldown)
        """
        if not self._begin(manual):
            return False
        return self._run(manual)

    def request_sync(self, manual: bool = False) -> Optional["Future[bool]"]:
        """
        Start a catalog sync on the background worker.

        Returns:
            Future resolving to the sync result, or None if the request was dropped
        """
        if not self._begin(manual):
            return None
        return self._get_executor().submit(self._run, manual)

    def _get_executor(self) -> ThreadPoolExecutor:
        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="craftify-sync")
            return self._executor

    def _run(self, manual: bool) -> bool:
        logger.info("Catalog sync started (manual=%s)", manual)
        try:
            result = self.fetcher.fetch_catalog()
        except FetchError as e:
            self._finish_failure(e)
            return False
        except Exception as e:
            logger.error("Unexpected error during catalog sync: %s", e, exc_info=True)
            self._finish_failure(FetchError(ErrorKind.UNKNOWN, str(e)))
            return False
        self._finish_success(result)
        return True

    def _finish_success(self, result: FetchResult[CatalogItem]) -> None:
        recipes = tuple(result.items)
        with self._lock:
            try:
                self.store.update(recipes=recipes)
                if not self.cache.save(recipes):
                    logger.warning("Catalog synced but local cache could not be updated")
                self._last_fetch_at = self._clock()
                self._catalog_complete = result.complete

                if not result.complete:
                    logger.warning("Catalog fetch skipped %d record(s); favorites will not be pruned",
                                   result.skipped)
                favorite_ids = self.favorites.reconcile(recipes, prune=result.complete)
                self.store.update(
                    favorite_ids=tuple(favorite_ids),
                    recent_searches=tuple(self.recent_searches.names()),
                )
                self.store.update_sync(
                    status=SyncStatus.SYNCED,
                    last_synced_at=datetime.now(timezone.utc),
                    last_error=None,
                    is_stale=False,
                    is_manual=False,
                )
            finally:
                self._in_flight = False
        logger.info("Catalog sync finished: %d recipes", len(recipes))

    def _finish_failure(self, error: FetchError) -> None:
        with self._lock:
            self._in_flight = False
            self.store.update_sync(
                status=SyncStatus.FAILED,
                last_error=SyncErrorInfo(kind=error.kind.value, message=error.user_message),
                is_manual=False,
            )
            self.store.post_message(error.user_message, level="error")
        logger.error("Catalog sync failed after %d attempt(s): %s", error.attempts, error)

    def set_connected(self, connected: bool) -> None:
        """Record connectivity changes reported by the platform."""
        with self._lock:
            self.store.update_sync(is_connected=connected)

    def sync_status_text(self) -> str:
        """One-line sync status for display."""
        sync = self.store.snapshot().sync
        if not sync.is_connected:
            return "No internet connection"
        if sync.last_synced_at is not None:
            local = sync.last_synced_at.astimezone()
            return f"Last synced: {local.strftime('%Y-%m-%d %H:%M')}"
        if sync.status == SyncStatus.SYNCING:
            return "Syncing recipes..."
        if sync.last_error is not None:
            return f"Sync failed: {sync.last_error.message}"
        return "Not synced"

    # ------------------------------------------------------------------
    # Favorites
    # ------------------------------------------------------------------

    def toggle_favorite(self, item_id: int) -> bool:
        """
        Toggle item_id in the favorites and write through. Returns the new favorite state.

        The key-value synchronize happens without holding the state lock.
        """
        now_favorite = self.favorites.toggle(item_id)
        with self._lock:
            self.store.update(favorite_ids=tuple(self.favorites.ids))
        return now_favorite

    def is_favorite(self, item_id: int) -> bool:
        with self._lock:
            return self.favorites.is_favorite(item_id)

    def reconcile_favorites(self) -> List[int]:
        """Re-validate stored favorites against the current catalog."""
        with self._lock:
            recipes = self.store.snapshot().recipes
            favorite_ids = self.favorites.reconcile(recipes, prune=self._catalog_complete)
            self.store.update(favorite_ids=tuple(favorite_ids))
            return favorite_ids

    def _on_external_change(self, keys: List[str]) -> None:
        if FAVORITES_KEY in keys:
            logger.info("Favorites changed on another device; reconciling")
            self.reconcile_favorites()

    def on_app_foreground(self) -> None:
        """Pull remote key-value changes and re-validate local lists."""
        self.kv_store.synchronize()
        self.reconcile_favorites()
        with self._lock:
            self.store.update(recent_searches=tuple(self.recent_searches.names()))

    # ------------------------------------------------------------------
    # Recent searches
    # ------------------------------------------------------------------

    def record_search(self, name: str) -> List[str]:
        with self._lock:
            names = self.recent_searches.record(name)
            self.store.update(recent_searches=tuple(names))
            return names

    def remove_search(self, name: str) -> List[str]:
        with self._lock:
            names = self.recent_searches.remove(name)
            self.store.update(recent_searches=tuple(names))
            return names

    def clear_recent_searches(self) -> bool:
        with self._lock:
            ok = self.recent_searches.clear_all()
            self.store.update(recent_searches=tuple(self.recent_searches.names()))
            return ok

    def recent_search_recipes(self) -> List[CatalogItem]:
        """Recipes for the recent search names that are still in the catalog, in list order."""
        snapshot = self.store.snapshot()
        by_name = {recipe.name: recipe for recipe in snapshot.recipes}
        return [by_name[name] for name in snapshot.recent_searches if name in by_name]

    # ------------------------------------------------------------------
    # Clearing
    # ------------------------------------------------------------------

    def _clear_catalog(self) -> bool:
        with self._lock:
            ok = self.cache.clear()
            self._catalog_complete = False
            self._last_fetch_at = None
            self.store.update(recipes=())
            self.store.update_sync(status=SyncStatus.IDLE, last_synced_at=None, is_stale=False)
            return ok

    def clear_cache(self) -> bool:
        """Delete the local snapshot and empty the in-memory catalog. Remote lists are untouched."""
        ok = self._clear_catalog()
        self.store.post_message(
            "Cache cleared successfully." if ok else "Failed to clear cache.",
            level="info" if ok else "error",
        )
        return ok

    def clear_all_data(self) -> bool:
        """
        Clear the cache, the catalog, the favorites (locally and remotely) and the recent searches.

        Every step is attempted even if an earlier one fails.

        Returns:
            True only if every step succeeded
        """
        steps: Dict[str, Callable[[], bool]] = {
            "cache": self._clear_catalog,
            "favorites": self._clear_favorites,
            "recent_searches": self.clear_recent_searches,
        }
        results: Dict[str, bool] = {}
        for name, step in steps.items():
            try:
                results[name] = bool(step())
            except Exception as e:
                logger.error("Clearing %s failed: %s", name, e, exc_info=True)
                results[name] = False

        ok = all(results.values())
        if not ok:
            logger.warning("Clear all data incomplete: %s", results)
        self.store.post_message(
            "All data cleared successfully." if ok else "Failed to clear all data.",
            level="info" if ok else "error",
        )
        return ok

    def _clear_favorites(self) -> bool:
        try:
            return self.favorites.clear()
        finally:
            with self._lock:
                self.store.update(favorite_ids=())

    # ------------------------------------------------------------------
    # Catalog queries
    # ------------------------------------------------------------------

    def get_recipe(self, item_id: int) -> Optional[CatalogItem]:
        for recipe in self.store.snapshot().recipes:
            if recipe.id == item_id:
                return recipe
        return None

    def categories(self) -> List[str]:
        return sorted({recipe.category for recipe in self.store.snapshot().recipes})

    def filtered_recipes(self, search_text: str = "", category: Optional[str] = None) -> List[CatalogItem]:
        """Recipes in the given category whose name contains search_text (case-insensitive)."""
        needle = (search_text or "").strip().lower()
        return [
            recipe
            for recipe in self.store.snapshot().recipes
            if (category is None or recipe.category == category)
            and (not needle or needle in recipe.name.lower())
        ]

    def search_recipes(self, text: str = "", favorites_only: bool = False) -> List[CatalogItem]:
        """Recipes whose name, category or any ingredient contains text (case-insensitive)."""
        snapshot = self.store.snapshot()
        base = snapshot.favorites if favorites_only else list(snapshot.recipes)
        needle = (text or "").strip().lower()
        if not needle:
            return base
        return [
            recipe
            for recipe in base
            if needle in recipe.name.lower()
            or needle in recipe.category.lower()
            or any(needle in ingredient.lower() for ingredient in recipe.ingredients)
        ]

    @staticmethod
    def grouped_by_initial(recipes: Iterable[CatalogItem]) -> Dict[str, List[CatalogItem]]:
        """Group recipes by the upper-cased first letter of their name, each group sorted by name."""
        groups: Dict[str, List[CatalogItem]] = {}
        for recipe in recipes:
            key = recipe.name[:1].upper()
            groups.setdefault(key, []).append(recipe)
        for key in groups:
            groups[key].sort(key=lambda r: r.name)
        return dict(sorted(groups.items()))

    # ------------------------------------------------------------------
    # Console commands
    # ------------------------------------------------------------------

    def refresh_commands(self) -> bool:
        """Fetch the console command reference and publish it."""
        try:
            result = self.command_fetcher.fetch_catalog()
        except FetchError as e:
            logger.error("Console command fetch failed: %s", e)
            self.store.post_message(e.user_message, level="error")
            return False
        with self._lock:
            self.store.update(commands=tuple(result.items))
        return True

    def filtered_commands(self, search_text: str = "", edition: str = EDITION_ALL) -> List[ConsoleCommand]:
        """
        Commands available in edition whose name or description contains search_text.

        Args:
            search_text: Case-insensitive substring; empty matches everything
            edition: "all", "bedrock" or "java"; anything else is treated as "all"
        """
        needle = (search_text or "").strip().lower()
        result = []
        for command in self.store.snapshot().commands:
            if edition == EDITION_BEDROCK and not command.works_in_bedrock:
                continue
            if edition == EDITION_JAVA and not command.works_in_java:
                continue
            if needle and needle not in command.name.lower() and needle not in command.description.lower():
                continue
            result.append(command)
        return result

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    def close(self, wait: bool = True) -> None:
        self.kv_store.remove_change_listener(self._on_external_change)
        if self._executor is not None and self._owns_executor:
            self._executor.shutdown(wait=wait)
            self._executor = None
