"""
Tests for the synchronization orchestrator.

These tests use a mocked database connector, the in-memory key-value store and
real file-backed cache/preferences under tmp_path to verify that:
- The local cache is published immediately on startup
- Successful syncs replace the catalog, save the cache and prune favorites
- Failed syncs keep the current catalog and record the error
- Concurrent sync requests are coalesced
- Clearing operations attempt every step
- External key-value changes trigger reconciliation
"""

import threading
from unittest.mock import Mock, patch

from craftify.cache import LocalCacheStore
from craftify.connectors.base import BaseDatabaseConnector, QueryPage, RemoteRecord
from craftify.connectors.kv_connector import InMemoryKeyValueStore
from craftify.errors import RemoteServiceError
from craftify.favorites import FAVORITES_KEY
from craftify.models import CatalogItem, SyncStatus
from craftify.preferences import LocalPreferences
from craftify.sync import SyncOrchestrator


class FakeClock:
    def __init__(self, now=1_000_000.0):
        self.now = now

    def __call__(self):
        return self.now


def make_record(record_id, name, category="Tools", ingredients=None):
    return RemoteRecord(
        record_name=str(record_id),
        fields={
            "name": name,
            "image": name.lower(),
            "ingredients": ingredients or ["Stick", "", "", "", "", "", "", "", ""],
            "output": 1,
            "category": category,
        },
    )


def make_item(item_id, name, category="Tools"):
    return CatalogItem(id=item_id, name=name, image=name.lower(), ingredients=["Stick"], output=1,
                       category=category)


def catalog_page():
    return QueryPage(records=[
        make_record(3, "Wooden Pickaxe", ingredients=["Planks", "Planks", "Planks", "", "Stick", "", "", "Stick", ""]),
        make_record(1, "Anvil", category="Utility"),
        make_record(2, "Torch", category="Lighting", ingredients=["Coal", "Stick"]),
    ])


def build(tmp_path, pages=None, kv=None, cached=None, clock=None, **kwargs):
    database = Mock(spec=BaseDatabaseConnector)
    if pages is not None:
        database.query.side_effect = pages
    kv = kv if kv is not None else InMemoryKeyValueStore()
    cache = LocalCacheStore(tmp_path)
    if cached:
        cache.save(cached)
    orchestrator = SyncOrchestrator(
        database=database,
        kv_store=kv,
        cache=cache,
        preferences=LocalPreferences(tmp_path),
        sleep=Mock(),
        clock=clock or FakeClock(),
        **kwargs,
    )
    return orchestrator, database, kv, cache


class TestStartup:
    """Test cache loading on construction."""

    def test_publishes_cached_catalog_sorted(self, tmp_path):
        cached = [make_item(2, "Torch"), make_item(1, "Anvil")]
        orchestrator, database, _, _ = build(tmp_path, cached=cached)

        snapshot = orchestrator.snapshot()
        assert [r.name for r in snapshot.recipes] == ["Anvil", "Torch"]
        assert snapshot.sync.status == SyncStatus.SYNCED
        assert snapshot.sync.is_stale
        database.query.assert_not_called()

    def test_cached_catalog_does_not_prune_remote_favorites(self, tmp_path):
        kv = InMemoryKeyValueStore({FAVORITES_KEY: [1, 50]})
        orchestrator, _, kv, _ = build(tmp_path, kv=kv, cached=[make_item(1, "Anvil")])

        assert orchestrator.snapshot().favorite_ids == (1,)
        assert kv.get(FAVORITES_KEY) == [1, 50]

    def test_no_cache_starts_idle(self, tmp_path):
        orchestrator, _, _, _ = build(tmp_path)
        snapshot = orchestrator.snapshot()
        assert snapshot.recipes == ()
        assert snapshot.sync.status == SyncStatus.IDLE
        assert orchestrator.sync_status_text() == "Not synced"


class TestSync:
    """Test the sync success and failure paths."""

    def test_success_replaces_catalog_and_saves_cache(self, tmp_path):
        orchestrator, _, _, cache = build(tmp_path, pages=[catalog_page()], cached=[make_item(9, "Old")])

        assert orchestrator.sync() is True

        snapshot = orchestrator.snapshot()
        assert [r.name for r in snapshot.recipes] == ["Anvil", "Torch", "Wooden Pickaxe"]
        assert snapshot.sync.status == SyncStatus.SYNCED
        assert snapshot.sync.last_synced_at is not None
        assert not snapshot.sync.is_stale
        assert [r.id for r in cache.load()] == [1, 2, 3]
        assert orchestrator.sync_status_text().startswith("Last synced: ")

    def test_success_prunes_favorites_and_writes_back(self, tmp_path):
        kv = InMemoryKeyValueStore({FAVORITES_KEY: [5, 2, 9, 1]})
        orchestrator, _, kv, _ = build(tmp_path, pages=[catalog_page()], kv=kv)

        orchestrator.sync()

        assert orchestrator.snapshot().favorite_ids == (2, 1)
        assert kv.get(FAVORITES_KEY) == [2, 1]

    def test_partial_fetch_does_not_write_back(self, tmp_path):
        page = catalog_page()
        page.records.append(RemoteRecord(record_name="7", fields={"name": "Broken"}))
        kv = InMemoryKeyValueStore({FAVORITES_KEY: [7, 1]})
        orchestrator, _, kv, _ = build(tmp_path, pages=[page], kv=kv)

        assert orchestrator.sync() is True

        assert orchestrator.snapshot().favorite_ids == (1,)
        assert kv.get(FAVORITES_KEY) == [7, 1]

    def test_cache_save_failure_does_not_fail_sync(self, tmp_path):
        orchestrator, _, _, cache = build(tmp_path, pages=[catalog_page()])
        with patch.object(cache, "save", return_value=False):
            assert orchestrator.sync() is True
        assert len(orchestrator.snapshot().recipes) == 3

    def test_failure_keeps_catalog_and_records_error(self, tmp_path):
        cached = [make_item(1, "Anvil")]
        orchestrator, database, _, _ = build(
            tmp_path, pages=[RemoteServiceError("ACCESS_DENIED")], cached=cached
        )

        assert orchestrator.sync() is False

        snapshot = orchestrator.snapshot()
        assert list(snapshot.recipes) == cached
        assert snapshot.sync.status == SyncStatus.FAILED
        assert snapshot.sync.last_error.kind == "permissions"
        assert snapshot.message.text == "Permission denied, please enable iCloud access."
        assert database.query.call_count == 1

    def test_retryable_failure_retries_three_times(self, tmp_path):
        orchestrator, database, _, _ = build(tmp_path, pages=[RemoteServiceError("THROTTLED")] * 3)

        assert orchestrator.sync() is False

        assert database.query.call_count == 3
        assert orchestrator.snapshot().sync.last_error.kind == "network"
        assert orchestrator.sync_status_text().startswith("Sync failed: Network issue")

    def test_retry_after_failure(self, tmp_path):
        orchestrator, _, _, _ = build(tmp_path, pages=[RemoteServiceError("ACCESS_DENIED"), catalog_page()])
        assert orchestrator.sync(manual=True) is False
        assert orchestrator.sync(manual=True) is True
        assert orchestrator.snapshot().sync.last_error is None


class TestCoalescing:
    """Test that only one fetch runs at a time."""

    def test_concurrent_requests_are_dropped(self, tmp_path):
        release = threading.Event()
        calls = []

        def slow_query(record_type, cursor=None):
            calls.append(record_type)
            release.wait(5)
            return catalog_page()

        orchestrator, database, _, _ = build(tmp_path)
        database.query.side_effect = slow_query

        future = orchestrator.request_sync(manual=True)
        try:
            assert future is not None
            assert orchestrator.is_syncing
            assert orchestrator.snapshot().sync.status == SyncStatus.SYNCING
            assert orchestrator.request_sync(manual=True) is None
            assert orchestrator.sync(manual=True) is False
        finally:
            release.set()

        assert future.result(timeout=5) is True
        assert calls == ["Recipe"]
        assert not orchestrator.is_syncing
        orchestrator.close()

    def test_automatic_sync_respects_cooldown(self, tmp_path):
        clock = FakeClock()
        orchestrator, database, _, _ = build(tmp_path, pages=[catalog_page(), catalog_page()], clock=clock)

        assert orchestrator.sync() is True
        clock.now += 10
        assert orchestrator.sync() is False
        assert database.query.call_count == 1

        assert orchestrator.sync(manual=True) is True
        assert database.query.call_count == 2

    def test_cooldown_expires(self, tmp_path):
        clock = FakeClock()
        orchestrator, database, _, _ = build(tmp_path, pages=[catalog_page(), catalog_page()], clock=clock)
        orchestrator.sync()
        clock.now += 31
        assert orchestrator.sync() is True

    def test_offline_sync_fails_fast(self, tmp_path):
        orchestrator, database, _, _ = build(tmp_path, pages=[catalog_page()])
        orchestrator.set_connected(False)

        assert orchestrator.sync(manual=True) is False

        database.query.assert_not_called()
        assert orchestrator.sync_status_text() == "No internet connection"
        assert orchestrator.snapshot().sync.last_error.kind == "network"


class TestFavorites:
    """Test favorites through the orchestrator."""

    def test_double_toggle_restores_state_with_two_writes(self, tmp_path):
        kv = InMemoryKeyValueStore({FAVORITES_KEY: [1]})
        orchestrator, _, kv, _ = build(tmp_path, pages=[catalog_page()], kv=kv)
        orchestrator.sync()
        writes_before = kv.write_count

        assert orchestrator.toggle_favorite(3) is True
        assert orchestrator.toggle_favorite(3) is False

        assert orchestrator.snapshot().favorite_ids == (1,)
        assert kv.write_count - writes_before == 2

    def test_toggle_after_partial_fetch_keeps_unverified_ids(self, tmp_path):
        page = catalog_page()
        page.records.append(RemoteRecord(record_name="9", fields={"name": "Broken"}))
        kv = InMemoryKeyValueStore({FAVORITES_KEY: [9, 1]})
        orchestrator, _, kv, _ = build(tmp_path, pages=[page], kv=kv)
        orchestrator.sync()

        assert orchestrator.toggle_favorite(2) is True

        assert kv.get(FAVORITES_KEY) == [9, 1, 2]
        assert orchestrator.snapshot().favorite_ids == (1, 2)

        assert orchestrator.toggle_favorite(1) is False
        assert kv.get(FAVORITES_KEY) == [9, 2]

    def test_toggle_with_cached_catalog_keeps_unverified_ids(self, tmp_path):
        kv = InMemoryKeyValueStore({FAVORITES_KEY: [50, 1]})
        orchestrator, _, kv, _ = build(tmp_path, kv=kv, cached=[make_item(1, "Anvil"), make_item(2, "Torch")])

        orchestrator.toggle_favorite(2)

        assert kv.get(FAVORITES_KEY) == [50, 1, 2]
        assert orchestrator.snapshot().favorite_ids == (1, 2)

    def test_toggle_before_any_catalog_keeps_stored_list(self, tmp_path):
        kv = InMemoryKeyValueStore({FAVORITES_KEY: [5, 7]})
        orchestrator, _, kv, _ = build(tmp_path, kv=kv)

        orchestrator.toggle_favorite(3)

        assert kv.get(FAVORITES_KEY) == [5, 7, 3]

    def test_toggle_synchronizes_without_holding_state_lock(self, tmp_path):
        orchestrator, _, kv, _ = build(tmp_path, pages=[catalog_page()])
        orchestrator.sync()
        acquired = []

        def synchronize():
            def try_lock():
                if orchestrator._lock.acquire(timeout=1):
                    orchestrator._lock.release()
                    acquired.append(True)
                else:
                    acquired.append(False)
            worker = threading.Thread(target=try_lock)
            worker.start()
            worker.join()
            return True

        with patch.object(kv, "synchronize", side_effect=synchronize):
            assert orchestrator.toggle_favorite(1) is True

        assert acquired == [True]
        assert orchestrator.snapshot().favorite_ids == (1,)

    def test_external_change_is_reconciled(self, tmp_path):
        orchestrator, _, kv, _ = build(tmp_path, pages=[catalog_page()])
        orchestrator.sync()

        kv.apply_remote_change(FAVORITES_KEY, [3, 42, 1])

        assert orchestrator.snapshot().favorite_ids == (3, 1)
        assert kv.get(FAVORITES_KEY) == [3, 1]

    def test_redundant_notifications_are_harmless(self, tmp_path):
        orchestrator, _, kv, _ = build(tmp_path, pages=[catalog_page()])
        orchestrator.sync()
        kv.apply_remote_change(FAVORITES_KEY, [2])
        kv.notify_external_change([FAVORITES_KEY])
        kv.notify_external_change([FAVORITES_KEY])
        assert orchestrator.snapshot().favorite_ids == (2,)

    def test_on_app_foreground(self, tmp_path):
        orchestrator, _, kv, _ = build(tmp_path, pages=[catalog_page()])
        orchestrator.sync()
        sync_count = kv.sync_count

        orchestrator.on_app_foreground()

        assert kv.sync_count > sync_count


class TestClearing:
    """Test clear_cache and clear_all_data."""

    def test_clear_cache_keeps_remote_lists(self, tmp_path):
        kv = InMemoryKeyValueStore({FAVORITES_KEY: [1]})
        orchestrator, _, kv, cache = build(tmp_path, pages=[catalog_page()], kv=kv)
        orchestrator.sync()
        orchestrator.record_search("Torch")

        assert orchestrator.clear_cache() is True

        assert orchestrator.snapshot().recipes == ()
        assert not cache.exists()
        assert kv.get(FAVORITES_KEY) == [1]
        assert orchestrator.snapshot().recent_searches == ("Torch",)
        assert orchestrator.snapshot().message.text == "Cache cleared successfully."

    def test_clear_all_data(self, tmp_path):
        kv = InMemoryKeyValueStore({FAVORITES_KEY: [1, 2]})
        orchestrator, _, kv, cache = build(tmp_path, pages=[catalog_page()], kv=kv)
        orchestrator.sync()
        orchestrator.record_search("Torch")

        assert orchestrator.clear_all_data() is True

        snapshot = orchestrator.snapshot()
        assert snapshot.recipes == ()
        assert not cache.exists()
        assert kv.get(FAVORITES_KEY) == []
        assert snapshot.favorite_ids == ()
        assert snapshot.recent_searches == ()
        assert orchestrator.recent_searches.names() == []

    def test_clear_all_data_continues_after_a_failed_step(self, tmp_path):
        kv = InMemoryKeyValueStore({FAVORITES_KEY: [1, 2]})
        orchestrator, _, kv, cache = build(tmp_path, pages=[catalog_page()], kv=kv)
        orchestrator.sync()
        orchestrator.record_search("Torch")

        with patch.object(cache, "clear", side_effect=OSError("read-only filesystem")):
            assert orchestrator.clear_all_data() is False

        assert kv.get(FAVORITES_KEY) == []
        assert orchestrator.recent_searches.names() == []
        assert orchestrator.snapshot().message.text == "Failed to clear all data."

    def test_clear_all_data_reports_failed_favorites_sync(self, tmp_path):
        kv = InMemoryKeyValueStore({FAVORITES_KEY: [1]})
        orchestrator, _, kv, cache = build(tmp_path, pages=[catalog_page()], kv=kv)
        orchestrator.sync()

        with patch.object(kv, "synchronize", return_value=False):
            assert orchestrator.clear_all_data() is False

        assert not cache.exists()
        assert orchestrator.snapshot().recipes == ()


class TestQueries:
    """Test catalog and command queries."""

    def test_categories_and_filters(self, tmp_path):
        orchestrator, _, _, _ = build(tmp_path, pages=[catalog_page()])
        orchestrator.sync()

        assert orchestrator.categories() == ["Lighting", "Tools", "Utility"]
        assert [r.name for r in orchestrator.filtered_recipes("TOR")] == ["Torch"]
        assert [r.name for r in orchestrator.filtered_recipes(category="Tools")] == ["Wooden Pickaxe"]
        assert orchestrator.get_recipe(2).name == "Torch"
        assert orchestrator.get_recipe(99) is None

    def test_search_matches_ingredients(self, tmp_path):
        orchestrator, _, _, _ = build(tmp_path, pages=[catalog_page()])
        orchestrator.sync()

        assert [r.name for r in orchestrator.search_recipes("planks")] == ["Wooden Pickaxe"]
        assert len(orchestrator.search_recipes("stick")) == 3

        orchestrator.toggle_favorite(2)
        assert [r.name for r in orchestrator.search_recipes("stick", favorites_only=True)] == ["Torch"]

    def test_grouped_by_initial(self):
        groups = SyncOrchestrator.grouped_by_initial([make_item(1, "torch"), make_item(2, "Anvil"),
                                                      make_item(3, "Tnt")])
        assert list(groups) == ["A", "T"]
        assert [r.name for r in groups["T"]] == ["Tnt", "torch"]

    def test_recent_search_recipes(self, tmp_path):
        orchestrator, _, _, _ = build(tmp_path, pages=[catalog_page()])
        orchestrator.sync()
        orchestrator.record_search("Gone")
        orchestrator.record_search("Torch")
        assert [r.name for r in orchestrator.recent_search_recipes()] == ["Torch"]

    def test_commands(self, tmp_path):
        commands_page = QueryPage(records=[
            RemoteRecord("1", {"name": "/gamemode", "description": "Sets a game mode",
                               "worksInBedrock": True, "worksInJava": True}),
            RemoteRecord("2", {"name": "/ability", "description": "Grants an ability",
                               "worksInBedrock": True, "worksInJava": False}),
            RemoteRecord("3", {"name": "/spectate", "description": "Spectate a player",
                               "worksInBedrock": False, "worksInJava": True}),
        ])
        orchestrator, database, _, _ = build(tmp_path, pages=[commands_page])

        assert orchestrator.refresh_commands() is True

        database.query.assert_called_once_with("ConsoleCommand", cursor=None)
        assert [c.name for c in orchestrator.filtered_commands()] == ["/ability", "/gamemode", "/spectate"]
        assert [c.name for c in orchestrator.filtered_commands(edition="java")] == ["/gamemode", "/spectate"]
        assert [c.name for c in orchestrator.filtered_commands("ability", "bedrock")] == ["/ability"]
        assert [c.name for c in orchestrator.filtered_commands("GAME MODE")] == ["/gamemode"]
