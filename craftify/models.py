"""
Catalog and sync-state models for the Craftify synchronizer.

This module defines the canonical schemas shared by every part of the system:
- CatalogItem: a crafting recipe, decoded from a remote record or the local cache
- ConsoleCommand: a console command reference entry
- SyncState / StatusMessage: process-wide synchronization status
- StoreSnapshot: the immutable view emitted by the state container

# NOTE: CatalogItem uses the remote record field names as JSON aliases
    (alternateIngredients, alternateOutput1, ...). The local cache file is written
    with by_alias=True so the cache and the remote schema share one vocabulary.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

# A crafting grid always has 9 slots; "" marks an empty slot
INGREDIENT_SLOTS = 9

# Maximum number of recent searches kept in local preferences
MAX_RECENT_SEARCHES = 5


def _normalize_slots(value: Optional[Tuple[str, ...]]) -> Optional[Tuple[str, ...]]:
    """Pad a slot list with empty strings (or cut it) to exactly INGREDIENT_SLOTS entries."""
    if value is None:
        return None
    slots = tuple(value[:INGREDIENT_SLOTS])
    return slots + ("",) * (INGREDIENT_SLOTS - len(slots))


class CatalogItem(BaseModel):
    """
    A single crafting recipe.

    Instances are immutable and compared structurally (all fields). They are
    replaced wholesale on every successful sync, never patched in place.
    """
    id: int = Field(..., description="Catalog id, parsed from the remote record name")
    name: str = Field(..., description="Display name of the crafted item")
    image: str = Field(..., description="Image reference for the crafted item")
    ingredients: Tuple[str, ...] = Field(..., description="Crafting grid, 9 slots, '' = empty")

    alternate_ingredients: Optional[Tuple[str, ...]] = Field(None, alias="alternateIngredients")
    alternate_ingredients1: Optional[Tuple[str, ...]] = Field(None, alias="alternateIngredients1")
    alternate_ingredients2: Optional[Tuple[str, ...]] = Field(None, alias="alternateIngredients2")
    alternate_ingredients3: Optional[Tuple[str, ...]] = Field(None, alias="alternateIngredients3")

    output: int = Field(..., description="Number of items produced")
    alternate_output: Optional[int] = Field(None, alias="alternateOutput")
    alternate_output1: Optional[int] = Field(None, alias="alternateOutput1")
    alternate_output2: Optional[int] = Field(None, alias="alternateOutput2")
    alternate_output3: Optional[int] = Field(None, alias="alternateOutput3")

    category: str = Field(..., description="Category label (e.g. 'Tools', 'Redstone')")
    imageremark: Optional[str] = Field(None, description="Remark shown under the recipe image")
    remarks: Optional[str] = Field(None, description="Free-text remarks")

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    @field_validator(
        "ingredients",
        "alternate_ingredients",
        "alternate_ingredients1",
        "alternate_ingredients2",
        "alternate_ingredients3",
    )
    @classmethod
    def _pad_slots(cls, value):
        return _normalize_slots(value)

    def variants(self) -> list[tuple[Tuple[str, ...], int]]:
        """
        Return every (ingredients, output) variant of this recipe, primary first.

        An alternate ingredient list without its own output reuses the primary output.
        """
        pairs = [
            (self.alternate_ingredients, self.alternate_output),
            (self.alternate_ingredients1, self.alternate_output1),
            (self.alternate_ingredients2, self.alternate_output2),
            (self.alternate_ingredients3, self.alternate_output3),
        ]
        result = [(self.ingredients, self.output)]
        for ingredients, output in pairs:
            if ingredients is not None:
                result.append((ingredients, output if output is not None else self.output))
        return result

    def to_cache_dict(self) -> Dict[str, Any]:
        """Serialize using the remote field names (used by the local cache file)."""
        return self.model_dump(mode="json", by_alias=True)


class ConsoleCommand(BaseModel):
    """A console command reference entry, with edition support and OP levels."""
    id: int
    name: str
    description: str
    works_in_bedrock: bool = Field(False, alias="worksInBedrock")
    works_in_java: bool = Field(False, alias="worksInJava")
    op_level_bedrock: Optional[int] = Field(None, ge=0, le=4, alias="opLevelBedrock")
    op_level_java: Optional[int] = Field(None, ge=0, le=4, alias="opLevelJava")

    model_config = ConfigDict(frozen=True, populate_by_name=True)


class SyncStatus(str, Enum):
    """Orchestrator states: idle -> syncing -> {synced, failed}."""
    IDLE = "idle"
    SYNCING = "syncing"
    SYNCED = "synced"
    FAILED = "failed"


class SyncErrorInfo(BaseModel):
    """Last sync error as shown to the presentation layer."""
    kind: str
    message: str

    model_config = ConfigDict(frozen=True)


class SyncState(BaseModel):
    """Process-wide sync flags. Rebuilt on every run, never persisted."""
    status: SyncStatus = SyncStatus.IDLE
    last_synced_at: Optional[datetime] = None
    last_error: Optional[SyncErrorInfo] = None
    is_stale: bool = False
    is_manual: bool = False
    is_connected: bool = True

    model_config = ConfigDict(frozen=True)

    @property
    def in_progress(self) -> bool:
        return self.status == SyncStatus.SYNCING


class StatusMessage(BaseModel):
    """A transient, auto-dismissing status message."""
    text: str
    level: str = "info"
    expires_at: float

    model_config = ConfigDict(frozen=True)


class StoreSnapshot(BaseModel):
    """Immutable view of the whole synchronizer state, emitted to subscribers."""
    recipes: Tuple[CatalogItem, ...] = ()
    favorite_ids: Tuple[int, ...] = ()
    recent_searches: Tuple[str, ...] = ()
    commands: Tuple[ConsoleCommand, ...] = ()
    sync: SyncState = Field(default_factory=SyncState)
    message: Optional[StatusMessage] = None

    model_config = ConfigDict(frozen=True)

    @property
    def favorites(self) -> list[CatalogItem]:
        """Favorite recipes in favorite-list order."""
        by_id = {recipe.id: recipe for recipe in self.recipes}
        return [by_id[i] for i in self.favorite_ids if i in by_id]
