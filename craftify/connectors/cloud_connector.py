"""
Cloud database connector using the web-services REST API.

This connector queries the public database of the recipe container over HTTP
(requests) and returns pages of raw records for the fetcher to decode.

The connector:
- POSTs match-all queries to /database/1/{container}/{environment}/public/records/query
- Passes the continuation marker from the previous page to get the next one
- Flattens each record's {"field": {"value": ...}} map into plain values
- Translates HTTP, service and transport failures into RemoteServiceError

Requires no credentials for public read access; CLOUD_API_TOKEN is sent as the
ckAPIToken query parameter when set.
"""

import logging
import os
from typing import Any, Dict, List, Optional

import requests

from craftify.errors import RemoteServiceError

from .base import BaseDatabaseConnector, QueryPage, RemoteRecord

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.apple-cloudkit.com"
DEFAULT_CONTAINER = "iCloud.craftifydb"
DEFAULT_ENVIRONMENT = "production"

# Largest page the service hands out for a single query
MAX_RESULTS_LIMIT = 200


def _flatten_fields(raw_fields: Dict[str, Any]) -> Dict[str, Any]:
    """Turn {"name": {"value": "Stick", "type": "STRING"}} into {"name": "Stick"}."""
    flattened: Dict[str, Any] = {}
    for key, wrapped in (raw_fields or {}).items():
        if isinstance(wrapped, dict) and "value" in wrapped:
            flattened[key] = wrapped["value"]
        else:
            flattened[key] = wrapped
    return flattened


class CloudDatabaseConnector(BaseDatabaseConnector):
    """
    Connector for the public cloud database over HTTP.

    Each query() call is one page request. Retrying is the fetcher's job, so
    this class never retries on its own.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        container: Optional[str] = None,
        environment: Optional[str] = None,
        api_token: Optional[str] = None,
        timeout: float = 15.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        """
        Initialize the connector.

        Args:
            base_url: Service root (defaults to CLOUD_BASE_URL env var)
            container: Container identifier (defaults to CLOUD_CONTAINER env var)
            environment: "production" or "development" (defaults to CLOUD_ENVIRONMENT env var)
            api_token: Optional API token (defaults to CLOUD_API_TOKEN env var)
            timeout: Per-request timeout in seconds
            session: Optional requests.Session (tests inject a mock here)
        """
        self.base_url = (base_url or os.getenv("CLOUD_BASE_URL", DEFAULT_BASE_URL)).rstrip("/")
        self.container = container or os.getenv("CLOUD_CONTAINER", DEFAULT_CONTAINER)
        self.environment = environment or os.getenv("CLOUD_ENVIRONMENT", DEFAULT_ENVIRONMENT)
        self.api_token = api_token or os.getenv("CLOUD_API_TOKEN")
        self.timeout = timeout
        self.session = session or requests.Session()

    @property
    def query_url(self) -> str:
        return f"{self.base_url}/database/1/{self.container}/{self.environment}/public/records/query"

    def query(self, record_type: str, cursor: Optional[str] = None) -> QueryPage:
        body: Dict[str, Any] = {
            "query": {"recordType": record_type},
            "resultsLimit": MAX_RESULTS_LIMIT,
        }
        if cursor:
            body["continuationMarker"] = cursor

        params = {"ckAPIToken": self.api_token} if self.api_token else None

        try:
            response = self.session.post(self.query_url, json=body, params=params, timeout=self.timeout)
        except requests.Timeout as e:
            raise RemoteServiceError("NETWORK_FAILURE", f"Request timed out: {e}") from e
        except requests.ConnectionError as e:
            raise RemoteServiceError("NETWORK_UNAVAILABLE", f"Connection failed: {e}") from e
        except requests.RequestException as e:
            raise RemoteServiceError(None, f"Request failed: {e}") from e

        payload = self._parse_json(response)

        if response.status_code >= 400 or "serverErrorCode" in payload:
            code = payload.get("serverErrorCode")
            reason = payload.get("reason") or response.reason or ""
            logger.debug("Query for %s failed: status=%s code=%s reason=%s",
                         record_type, response.status_code, code, reason)
            raise RemoteServiceError(code, reason, status_code=response.status_code)

        records: List[RemoteRecord] = []
        for raw in payload.get("records") or []:
            # Records can carry their own per-record error; those count as undecodable
            if "serverErrorCode" in raw:
                logger.warning("Record %s returned error %s", raw.get("recordName"), raw.get("serverErrorCode"))
                records.append(RemoteRecord(record_name=str(raw.get("recordName", "")), fields={}))
                continue
            records.append(
                RemoteRecord(
                    record_name=str(raw.get("recordName", "")),
                    fields=_flatten_fields(raw.get("fields") or {}),
                )
            )

        next_cursor = payload.get("continuationMarker") or None
        logger.debug("Query for %s returned %d records (more=%s)", record_type, len(records), bool(next_cursor))
        return QueryPage(records=records, cursor=next_cursor)

    @staticmethod
    def _parse_json(response: requests.Response) -> Dict[str, Any]:
        try:
            data = response.json()
        except ValueError:
            if response.status_code >= 400:
                return {}
            raise RemoteServiceError("INVALID_ARGUMENTS", "Response body is not valid JSON",
                                     status_code=response.status_code)
        return data if isinstance(data, dict) else {}
