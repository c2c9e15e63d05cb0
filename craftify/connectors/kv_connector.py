"""
Key-value store connectors for values that sync across devices.

Two implementations of BaseKeyValueStore:
- CloudKeyValueStore: local copy plus HTTP push/pull against the cloud KV endpoint
- InMemoryKeyValueStore: process-local store for development and offline use

Only small values live here (the favorite id list). Writes land in the local
copy immediately and reach the cloud on synchronize(). Values that differ on
the remote side after a pull are treated as external changes and reported to
the registered listeners.
"""

import copy
import logging
import os
import threading
from typing import Any, Dict, List, Optional, Set

import requests

from .base import BaseKeyValueStore
from .cloud_connector import DEFAULT_BASE_URL, DEFAULT_CONTAINER

logger = logging.getLogger(__name__)


class CloudKeyValueStore(BaseKeyValueStore):
    """
    Cloud-backed key-value store.

    The endpoint is {base_url}/kv/1/{container}/values and accepts:
    - GET: returns {"values": {key: value, ...}}
    - PUT: body {"values": {key: value, ...}} stores the given keys
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        container: Optional[str] = None,
        api_token: Optional[str] = None,
        timeout: float = 15.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        super().__init__()
        self.base_url = (base_url or os.getenv("CLOUD_BASE_URL", DEFAULT_BASE_URL)).rstrip("/")
        self.container = container or os.getenv("CLOUD_CONTAINER", DEFAULT_CONTAINER)
        self.api_token = api_token or os.getenv("CLOUD_API_TOKEN")
        self.timeout = timeout
        self.session = session or requests.Session()

        self._values: Dict[str, Any] = {}
        self._pending: Set[str] = set()
        self._lock = threading.Lock()

    @property
    def values_url(self) -> str:
        return f"{self.base_url}/kv/1/{self.container}/values"

    def _params(self) -> Optional[Dict[str, str]]:
        return {"ckAPIToken": self.api_token} if self.api_token else None

    def get(self, key: str) -> Any:
        with self._lock:
            return copy.deepcopy(self._values.get(key))

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._values[key] = copy.deepcopy(value)
            self._pending.add(key)

    def synchronize(self) -> bool:
        """
        Push pending writes, then pull remote values.

        Returns:
            True if both directions succeeded, False otherwise (pending writes
            are kept and retried on the next call)
        """
        with self._lock:
            outgoing = {key: copy.deepcopy(self._values.get(key)) for key in self._pending}

        try:
            if outgoing:
                response = self.session.put(
                    self.values_url, json={"values": outgoing}, params=self._params(), timeout=self.timeout
                )
                response.raise_for_status()
                with self._lock:
                    # Keys rewritten since the snapshot stay pending
                    for key, value in outgoing.items():
                        if self._values.get(key) == value:
                            self._pending.discard(key)

            response = self.session.get(self.values_url, params=self._params(), timeout=self.timeout)
            response.raise_for_status()
            remote = (response.json() or {}).get("values") or {}
        except (requests.RequestException, ValueError) as e:
            logger.warning("Key-value synchronize failed: %s", e)
            return False

        changed: List[str] = []
        with self._lock:
            for key, value in remote.items():
                if key in self._pending:
                    continue
                if self._values.get(key) != value:
                    self._values[key] = value
                    changed.append(key)

        if changed:
            logger.info("External key-value change for keys: %s", changed)
            self.notify_external_change(changed)
        return True


class InMemoryKeyValueStore(BaseKeyValueStore):
    """
    Process-local key-value store.

    Used when no cloud endpoint is configured. apply_remote_change() lets a
    caller inject a value as if it came from another device.
    """

    def __init__(self, initial: Optional[Dict[str, Any]] = None) -> None:
        super().__init__()
        self._values: Dict[str, Any] = copy.deepcopy(initial) if initial else {}
        self._lock = threading.Lock()
        self.write_count = 0
        self.sync_count = 0

    def get(self, key: str) -> Any:
        with self._lock:
            return copy.deepcopy(self._values.get(key))

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._values[key] = copy.deepcopy(value)
            self.write_count += 1

    def synchronize(self) -> bool:
        self.sync_count += 1
        return True

    def apply_remote_change(self, key: str, value: Any) -> None:
        """Store value and notify listeners, as an external device change would."""
        with self._lock:
            self._values[key] = copy.deepcopy(value)
        self.notify_external_change([key])
