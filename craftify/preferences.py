"""
Local preference storage.

Small string values that stay on this device (they are not mirrored to the
cloud key-value store) live in a single JSON object file, one entry per key.

Preferences are used to:
- Keep the recent search list (PREF_KEY_RECENT_SEARCHES)
"""

import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Dict, Optional, Union

logger = logging.getLogger(__name__)

PREFERENCES_FILE_NAME = "preferences.json"

# Preference key for the JSON-encoded recent search list
PREF_KEY_RECENT_SEARCHES = "recentSearches"


class LocalPreferences:
    """
    String preferences backed by a JSON file.

    A missing or corrupt file reads as empty. Writes replace the whole file.
    """

    def __init__(self, directory: Union[str, Path], file_name: str = PREFERENCES_FILE_NAME) -> None:
        self.directory = Path(directory)
        self.path = self.directory / file_name
        self._lock = threading.Lock()

    def _read_all(self) -> Dict[str, str]:
        try:
            with self.path.open("r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return {}
        except (OSError, ValueError) as e:
            logger.warning("Ignoring unreadable preferences file %s: %s", self.path, e)
            return {}
        if not isinstance(data, dict):
            return {}
        return {k: v for k, v in data.items() if isinstance(v, str)}

    def _write_all(self, values: Dict[str, str]) -> bool:
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=self.directory, prefix=".preferences-", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(values, f, ensure_ascii=False)
                os.replace(tmp_path, self.path)
            except OSError:
                if os.path.exists(tmp_path):
                    os.unlink(tmp_path)
                raise
        except OSError as e:
            logger.error("Failed to write preferences file %s: %s", self.path, e)
            return False
        return True

    def get_string(self, key: str) -> Optional[str]:
        with self._lock:
            return self._read_all().get(key)

    def set_string(self, key: str, value: str) -> bool:
        with self._lock:
            values = self._read_all()
            values[key] = value
            return self._write_all(values)

    def remove(self, key: str) -> bool:
        with self._lock:
            values = self._read_all()
            if key not in values:
                return True
            del values[key]
            return self._write_all(values)
