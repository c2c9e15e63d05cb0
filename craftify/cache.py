"""
Local JSON snapshot of the recipe catalog.

This module keeps the last successfully fetched catalog on disk so the app can
show recipes immediately on the next start, before any network activity.

The cache is a single JSON array at a fixed path:
- load() fails soft: missing, unreadable or malformed files count as a cache miss
- save() writes a temp file in the same directory and swaps it into place, so a
  failed write never damages the previous snapshot
- clear() deletes the file; a missing file is not an error
"""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import List, Optional, Sequence, Union

from pydantic import ValidationError

from craftify.models import CatalogItem

logger = logging.getLogger(__name__)

CACHE_FILE_NAME = "recipes.json"


class LocalCacheStore:
    """File-backed snapshot of the catalog."""

    def __init__(self, directory: Union[str, Path], file_name: str = CACHE_FILE_NAME) -> None:
        self.directory = Path(directory)
        self.path = self.directory / file_name

    def load(self) -> Optional[List[CatalogItem]]:
        """
        Read the snapshot.

        Returns:
            List of CatalogItem in file order, or None if there is no usable snapshot
        """
        try:
            with self.path.open("r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            logger.debug("No local cache at %s", self.path)
            return None
        except (OSError, ValueError) as e:
            logger.warning("Ignoring unreadable local cache %s: %s", self.path, e)
            return None

        if not isinstance(data, list):
            logger.warning("Ignoring local cache %s: expected a JSON array", self.path)
            return None

        try:
            items = [CatalogItem.model_validate(entry) for entry in data]
        except ValidationError as e:
            logger.warning("Ignoring malformed local cache %s: %s", self.path, e)
            return None

        logger.info("Loaded %d recipes from local cache", len(items))
        return items

    def save(self, items: Sequence[CatalogItem]) -> bool:
        """
        Overwrite the snapshot with items.

        Returns:
            True on success, False if the snapshot could not be written
        """
        tmp_path = None
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            payload = [item.to_cache_dict() for item in items]
            with tempfile.NamedTemporaryFile(
                "w", encoding="utf-8", dir=self.directory, prefix=".recipes-", suffix=".tmp", delete=False
            ) as tmp:
                tmp_path = tmp.name
                json.dump(payload, tmp, ensure_ascii=False)
                tmp.flush()
                os.fsync(tmp.fileno())
            os.replace(tmp_path, self.path)
            tmp_path = None
        except (OSError, TypeError, ValueError) as e:
            logger.error("Error saving recipes to local cache %s: %s", self.path, e)
            return False
        finally:
            if tmp_path is not None:
                try:
                    os.unlink(tmp_path)
                except OSError:
                    pass

        logger.debug("Saved %d recipes to local cache", len(items))
        return True

    def clear(self) -> bool:
        """Delete the snapshot. Returns False only if an existing file could not be removed."""
        try:
            self.path.unlink()
        except FileNotFoundError:
            return True
        except OSError as e:
            logger.error("Failed to clear local cache %s: %s", self.path, e)
            return False
        logger.info("Local cache cleared")
        return True

    def exists(self) -> bool:
        return self.path.exists()
