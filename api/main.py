"""
FastAPI application for the Craftify sync service.

This module exposes the synchronizer to a presentation layer:
- GET /recipes, GET /recipes/{id}, GET /categories: Browse the catalog
- GET /favorites, POST /favorites/{id}/toggle: Manage favorites
- GET/POST/DELETE /recent-searches: Manage the recent search list
- POST /sync, GET /sync/status: Trigger and observe catalog syncs
- POST /cache/clear, POST /data/clear: Explicit clearing actions
- GET /commands, POST /commands/refresh: Console command reference
- POST /kv/changed: External key-value change notification

Run the API with:
    uvicorn api.main:app --reload
"""

# Import config early to load .env before anything reads the environment
import api.config  # noqa: F401

import logging
import threading
import time
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Query, status

from api.config import CloudConfig, StorageConfig, SyncConfig, get_config_summary
from api.schemas import (
    ActionResult,
    CategoriesResponse,
    CommandListResponse,
    FavoritesResponse,
    RecentSearchesResponse,
    RecentSearchInput,
    RecipeListResponse,
    SyncRequestResponse,
    SyncStatusResponse,
    ToggleFavoriteResponse,
)
from craftify.cache import LocalCacheStore
from craftify.connectors.cloud_connector import CloudDatabaseConnector
from craftify.connectors.kv_connector import CloudKeyValueStore, InMemoryKeyValueStore
from craftify.models import CatalogItem
from craftify.preferences import LocalPreferences
from craftify.sync import ALLOWED_EDITIONS, SyncOrchestrator

logger = logging.getLogger(__name__)

# Track app start time for uptime calculation
_APP_START_TIME = time.time()

app = FastAPI(
    title="Craftify Sync API",
    description="Recipe catalog sync, favorites and recent searches for the Craftify recipe browser",
    version="1.0.0",
    tags_metadata=[
        {"name": "recipes", "description": "Browse and search the recipe catalog."},
        {"name": "favorites", "description": "Favorite recipes, synced across devices."},
        {"name": "searches", "description": "Recent searches, stored on this device."},
        {"name": "sync", "description": "Catalog synchronization and clearing."},
        {"name": "commands", "description": "Console command reference."},
        {"name": "health", "description": "Health check and monitoring endpoints."},
    ],
)

_orchestrator: Optional[SyncOrchestrator] = None
_orchestrator_lock = threading.Lock()


def build_orchestrator() -> SyncOrchestrator:
    """Build a SyncOrchestrator from environment configuration."""
    timeout = SyncConfig.get_request_timeout()
    data_dir = StorageConfig.get_data_dir()

    database = CloudDatabaseConnector(
        base_url=CloudConfig.get_base_url(),
        container=CloudConfig.get_container(),
        environment=CloudConfig.get_environment(),
        api_token=CloudConfig.get_api_token(),
        timeout=timeout,
    )
    if CloudConfig.get_kv_backend() == "memory":
        kv_store = InMemoryKeyValueStore()
    else:
        kv_store = CloudKeyValueStore(
            base_url=CloudConfig.get_base_url(),
            container=CloudConfig.get_container(),
            api_token=CloudConfig.get_api_token(),
            timeout=timeout,
        )
        # Pull the current favorites before the first reconciliation
        kv_store.synchronize()

    return SyncOrchestrator(
        database=database,
        kv_store=kv_store,
        cache=LocalCacheStore(data_dir),
        preferences=LocalPreferences(data_dir),
        fetch_cooldown=SyncConfig.get_fetch_cooldown(),
    )


def get_orchestrator() -> SyncOrchestrator:
    """
    Get the process-wide orchestrator, creating it on first use.

    The first call also starts a background catalog sync, like an app launch.
    """
    global _orchestrator
    with _orchestrator_lock:
        if _orchestrator is None:
            _orchestrator = build_orchestrator()
            _orchestrator.request_sync()
        return _orchestrator


def _status_response(orchestrator: SyncOrchestrator) -> SyncStatusResponse:
    snapshot = orchestrator.snapshot()
    sync = snapshot.sync
    return SyncStatusResponse(
        status=sync.status.value,
        text=orchestrator.sync_status_text(),
        last_synced_at=sync.last_synced_at,
        last_error=sync.last_error.message if sync.last_error else None,
        last_error_kind=sync.last_error.kind if sync.last_error else None,
        is_stale=sync.is_stale,
        is_connected=sync.is_connected,
        recipe_count=len(snapshot.recipes),
        message=snapshot.message.text if snapshot.message else None,
    )


@app.get("/health", tags=["health"], summary="Health check")
def health() -> dict:
    return {
        "status": "ok",
        "uptime_seconds": round(time.time() - _APP_START_TIME, 1),
        "config": get_config_summary(),
    }


@app.get("/recipes", response_model=RecipeListResponse, tags=["recipes"], summary="List recipes")
def list_recipes(
    q: str = Query("", description="Case-insensitive search over name, category and ingredients"),
    category: Optional[str] = Query(None, description="Only recipes in this category"),
    favorites_only: bool = Query(False, description="Only favorite recipes"),
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
) -> RecipeListResponse:
    recipes = orchestrator.search_recipes(q, favorites_only=favorites_only)
    if category is not None:
        recipes = [recipe for recipe in recipes if recipe.category == category]
    return RecipeListResponse(count=len(recipes), recipes=recipes)


@app.get("/recipes/{recipe_id}", response_model=CatalogItem, tags=["recipes"], summary="Get one recipe")
def get_recipe(recipe_id: int, orchestrator: SyncOrchestrator = Depends(get_orchestrator)) -> CatalogItem:
    recipe = orchestrator.get_recipe(recipe_id)
    if recipe is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Recipe {recipe_id} not found")
    return recipe


@app.get("/categories", response_model=CategoriesResponse, tags=["recipes"], summary="List categories")
def list_categories(orchestrator: SyncOrchestrator = Depends(get_orchestrator)) -> CategoriesResponse:
    return CategoriesResponse(categories=orchestrator.categories())


@app.get("/favorites", response_model=FavoritesResponse, tags=["favorites"], summary="List favorites")
def list_favorites(orchestrator: SyncOrchestrator = Depends(get_orchestrator)) -> FavoritesResponse:
    snapshot = orchestrator.snapshot()
    return FavoritesResponse(ids=list(snapshot.favorite_ids), recipes=snapshot.favorites)


@app.post(
    "/favorites/{recipe_id}/toggle",
    response_model=ToggleFavoriteResponse,
    tags=["favorites"],
    summary="Add or remove a favorite",
)
def toggle_favorite(recipe_id: int, orchestrator: SyncOrchestrator = Depends(get_orchestrator)) -> ToggleFavoriteResponse:
    if orchestrator.get_recipe(recipe_id) is None and not orchestrator.is_favorite(recipe_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Recipe {recipe_id} not found")
    is_favorite = orchestrator.toggle_favorite(recipe_id)
    return ToggleFavoriteResponse(
        id=recipe_id,
        is_favorite=is_favorite,
        ids=list(orchestrator.snapshot().favorite_ids),
    )


@app.get("/recent-searches", response_model=RecentSearchesResponse, tags=["searches"])
def list_recent_searches(orchestrator: SyncOrchestrator = Depends(get_orchestrator)) -> RecentSearchesResponse:
    return RecentSearchesResponse(names=list(orchestrator.snapshot().recent_searches))


@app.post("/recent-searches", response_model=RecentSearchesResponse, tags=["searches"])
def record_recent_search(
    body: RecentSearchInput,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
) -> RecentSearchesResponse:
    return RecentSearchesResponse(names=orchestrator.record_search(body.name))


@app.delete("/recent-searches/{name}", response_model=RecentSearchesResponse, tags=["searches"])
def remove_recent_search(name: str, orchestrator: SyncOrchestrator = Depends(get_orchestrator)) -> RecentSearchesResponse:
    return RecentSearchesResponse(names=orchestrator.remove_search(name))


@app.delete("/recent-searches", response_model=RecentSearchesResponse, tags=["searches"])
def clear_recent_searches(orchestrator: SyncOrchestrator = Depends(get_orchestrator)) -> RecentSearchesResponse:
    orchestrator.clear_recent_searches()
    return RecentSearchesResponse(names=list(orchestrator.snapshot().recent_searches))


@app.post("/sync", response_model=SyncRequestResponse, tags=["sync"], summary="Start a catalog sync")
def start_sync(
    manual: bool = Query(True, description="Manual syncs bypass the fetch cooldown"),
    wait: bool = Query(False, description="Block until the sync finishes"),
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
) -> SyncRequestResponse:
    future = orchestrator.request_sync(manual=manual)
    succeeded = None
    if future is not None and wait:
        succeeded = future.result()
    return SyncRequestResponse(
        started=future is not None,
        succeeded=succeeded,
        status=_status_response(orchestrator),
    )


@app.get("/sync/status", response_model=SyncStatusResponse, tags=["sync"])
def sync_status(orchestrator: SyncOrchestrator = Depends(get_orchestrator)) -> SyncStatusResponse:
    return _status_response(orchestrator)


@app.post("/cache/clear", response_model=ActionResult, tags=["sync"], summary="Clear the local recipe cache")
def clear_cache(orchestrator: SyncOrchestrator = Depends(get_orchestrator)) -> ActionResult:
    ok = orchestrator.clear_cache()
    return ActionResult(success=ok, message="Cache cleared successfully." if ok else "Failed to clear cache.")


@app.post("/data/clear", response_model=ActionResult, tags=["sync"], summary="Clear cache, favorites and searches")
def clear_all_data(orchestrator: SyncOrchestrator = Depends(get_orchestrator)) -> ActionResult:
    ok = orchestrator.clear_all_data()
    return ActionResult(
        success=ok,
        message="All data cleared successfully." if ok else "Failed to clear all data.",
    )


@app.get("/commands", response_model=CommandListResponse, tags=["commands"], summary="List console commands")
def list_commands(
    q: str = Query("", description="Case-insensitive search over name and description"),
    edition: str = Query("all", description="all, bedrock or java"),
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
) -> CommandListResponse:
    if edition not in ALLOWED_EDITIONS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid edition '{edition}'. Valid values: {', '.join(ALLOWED_EDITIONS)}",
        )
    commands = orchestrator.filtered_commands(q, edition)
    return CommandListResponse(count=len(commands), commands=commands)


@app.post("/commands/refresh", response_model=ActionResult, tags=["commands"])
def refresh_commands(orchestrator: SyncOrchestrator = Depends(get_orchestrator)) -> ActionResult:
    ok = orchestrator.refresh_commands()
    return ActionResult(success=ok, message="Commands updated." if ok else "Failed to update commands.")


@app.post("/kv/changed", response_model=FavoritesResponse, tags=["favorites"],
          summary="Notify that synced values changed on another device")
def key_value_changed(orchestrator: SyncOrchestrator = Depends(get_orchestrator)) -> FavoritesResponse:
    orchestrator.on_app_foreground()
    snapshot = orchestrator.snapshot()
    return FavoritesResponse(ids=list(snapshot.favorite_ids), recipes=snapshot.favorites)
