"""
Pydantic schemas for FastAPI request and response models.

Responses reuse the core models from craftify.models where they already match
the wire shape (CatalogItem, ConsoleCommand); the schemas here wrap them with
list metadata and cover request bodies.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from craftify.models import CatalogItem, ConsoleCommand


class RecipeListResponse(BaseModel):
    """List of recipes with the total count."""
    count: int = Field(..., ge=0, description="Number of recipes returned")
    recipes: List[CatalogItem] = Field(default_factory=list)


class CategoriesResponse(BaseModel):
    categories: List[str] = Field(default_factory=list, description="Sorted unique category labels")


class FavoritesResponse(BaseModel):
    """Favorite ids in user order plus the matching recipes."""
    ids: List[int] = Field(default_factory=list)
    recipes: List[CatalogItem] = Field(default_factory=list)


class ToggleFavoriteResponse(BaseModel):
    id: int
    is_favorite: bool
    ids: List[int] = Field(default_factory=list)


class RecentSearchInput(BaseModel):
    name: str = Field(..., min_length=1, description="Recipe name that was searched for")


class RecentSearchesResponse(BaseModel):
    names: List[str] = Field(default_factory=list, description="Most recent first, at most 5")


class SyncStatusResponse(BaseModel):
    """Current sync state as shown in the status bar."""
    status: str = Field(..., description="idle, syncing, synced or failed")
    text: str = Field(..., description="Human-readable status line")
    last_synced_at: Optional[datetime] = None
    last_error: Optional[str] = None
    last_error_kind: Optional[str] = None
    is_stale: bool = False
    is_connected: bool = True
    recipe_count: int = 0
    message: Optional[str] = Field(None, description="Transient status message, if one is showing")


class SyncRequestResponse(BaseModel):
    started: bool = Field(..., description="False when the request was dropped")
    succeeded: Optional[bool] = Field(None, description="Result when the sync ran in the foreground")
    status: SyncStatusResponse


class ActionResult(BaseModel):
    """Result of an explicit user action (cache clear, clear all data)."""
    success: bool
    message: str


class CommandListResponse(BaseModel):
    count: int = Field(..., ge=0)
    commands: List[ConsoleCommand] = Field(default_factory=list)
