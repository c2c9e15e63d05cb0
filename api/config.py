"""
Configuration management for the Craftify sync service.

This module centralizes environment variable loading from the .env file at the
project root. It is imported first by api/main.py so .env is loaded before any
other code reads the environment.

In deployments without a .env file, load_dotenv() is a no-op and the platform
environment is used instead.

Environment Variables:
- CLOUD_BASE_URL: Optional, defaults to "https://api.apple-cloudkit.com"
- CLOUD_CONTAINER: Optional, defaults to "iCloud.craftifydb"
- CLOUD_ENVIRONMENT: Optional, defaults to "production"
- CLOUD_API_TOKEN: Optional API token for the cloud services
- CRAFTIFY_KV_BACKEND: "cloud" (default) or "memory"
- CRAFTIFY_DATA_DIR: Optional, defaults to ~/.craftify (cache and preferences)
- CRAFTIFY_FETCH_COOLDOWN_SECONDS: Optional, defaults to 30
- CRAFTIFY_REQUEST_TIMEOUT_SECONDS: Optional, defaults to 15
"""

import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv


def load_env_file() -> None:
    """
    Load environment variables from .env at the project root.

    Safe to call multiple times. Existing environment variables take precedence.
    """
    # api/config.py -> api/ -> project root
    project_root = Path(__file__).resolve().parent.parent
    load_dotenv(project_root / ".env", override=False)


load_env_file()


def _get_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        raise RuntimeError(f"{name} must be a number, got {raw!r}")


class CloudConfig:
    """Configuration for the cloud database and key-value store."""

    @staticmethod
    def get_base_url() -> str:
        return os.getenv("CLOUD_BASE_URL", "https://api.apple-cloudkit.com").rstrip("/")

    @staticmethod
    def get_container() -> str:
        return os.getenv("CLOUD_CONTAINER", "iCloud.craftifydb")

    @staticmethod
    def get_environment() -> str:
        """
        Get the cloud environment.

        Returns:
            "production" or "development" (default: "production")
        """
        environment = os.getenv("CLOUD_ENVIRONMENT", "production")
        if environment not in ("production", "development"):
            raise RuntimeError(
                f"CLOUD_ENVIRONMENT must be 'production' or 'development', got {environment!r}"
            )
        return environment

    @staticmethod
    def get_api_token() -> Optional[str]:
        """Get the API token; None means unauthenticated public access."""
        return os.getenv("CLOUD_API_TOKEN") or None

    @staticmethod
    def get_kv_backend() -> str:
        backend = os.getenv("CRAFTIFY_KV_BACKEND", "cloud").lower()
        if backend not in ("cloud", "memory"):
            raise RuntimeError(f"CRAFTIFY_KV_BACKEND must be 'cloud' or 'memory', got {backend!r}")
        return backend


class StorageConfig:
    """Configuration for local storage."""

    @staticmethod
    def get_data_dir() -> Path:
        """Directory holding recipes.json and preferences.json (default: ~/.craftify)."""
        return Path(os.getenv("CRAFTIFY_DATA_DIR", str(Path.home() / ".craftify"))).expanduser()


class SyncConfig:
    """Configuration for catalog sync timing."""

    @staticmethod
    def get_fetch_cooldown() -> float:
        return _get_float("CRAFTIFY_FETCH_COOLDOWN_SECONDS", 30.0)

    @staticmethod
    def get_request_timeout() -> float:
        return _get_float("CRAFTIFY_REQUEST_TIMEOUT_SECONDS", 15.0)


def get_config_summary() -> dict:
    """
    Get a summary of the active configuration (no secrets).

    Returns:
        Dictionary with container, environment, kv_backend, data_dir and api_token_set
    """
    return {
        "container": CloudConfig.get_container(),
        "environment": CloudConfig.get_environment(),
        "kv_backend": CloudConfig.get_kv_backend(),
        "data_dir": str(StorageConfig.get_data_dir()),
        "api_token_set": CloudConfig.get_api_token() is not None,
    }
