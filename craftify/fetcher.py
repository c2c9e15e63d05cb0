"""
Paginated catalog fetcher with bounded retries.

Fetch flow: CatalogFetcher.fetch_catalog() -> connector.query() page by page
-> decode each record -> sorted items.

- Follows continuation cursors until the service stops returning one
- Keeps the first occurrence of a record name seen on more than one page
- Skips (and logs) records that fail to decode; the count ends up in FetchResult.skipped
- Retries a failed page after a fixed delay when the failure is retryable,
  up to max_attempts per page, then aborts the whole fetch with FetchError
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Generic, List, Optional, Set, TypeVar

from craftify.connectors.base import BaseDatabaseConnector, QueryPage, RemoteRecord
from craftify.errors import ErrorKind, FetchError, RemoteServiceError, classify_error
from craftify.models import CatalogItem, ConsoleCommand

logger = logging.getLogger(__name__)

RECIPE_RECORD_TYPE = "Recipe"
COMMAND_RECORD_TYPE = "ConsoleCommand"

# Retry policy for a single page request
MAX_ATTEMPTS = 3
RETRY_DELAY_SECONDS = 3.0

T = TypeVar("T")


def parse_record_id(record_name: str) -> int:
    """Parse the integer catalog id from a record name; 0 when it is not a number."""
    try:
        return int(str(record_name).strip())
    except (TypeError, ValueError):
        return 0


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _optional_strings(value: Any) -> Optional[List[str]]:
    if isinstance(value, list) and all(isinstance(v, str) for v in value):
        return value
    return None


def _optional_int(value: Any) -> Optional[int]:
    return value if _is_int(value) else None


def _optional_str(value: Any) -> Optional[str]:
    return value if isinstance(value, str) else None


def decode_recipe(record: RemoteRecord) -> Optional[CatalogItem]:
    """
    Decode a Recipe record into a CatalogItem.

    Returns None when any required field (name, image, ingredients, output,
    category) is missing or has the wrong type. Optional fields with the wrong
    type are dropped rather than failing the record.
    """
    f = record.fields
    name = f.get("name")
    image = f.get("image")
    ingredients = f.get("ingredients")
    output = f.get("output")
    category = f.get("category")

    if not isinstance(name, str) or not isinstance(image, str) or not isinstance(category, str):
        return None
    if _optional_strings(ingredients) is None or not _is_int(output):
        return None

    return CatalogItem(
        id=parse_record_id(record.record_name),
        name=name,
        image=image,
        ingredients=ingredients,
        alternate_ingredients=_optional_strings(f.get("alternateIngredients")),
        alternate_ingredients1=_optional_strings(f.get("alternateIngredients1")),
        alternate_ingredients2=_optional_strings(f.get("alternateIngredients2")),
        alternate_ingredients3=_optional_strings(f.get("alternateIngredients3")),
        output=output,
        alternate_output=_optional_int(f.get("alternateOutput")),
        alternate_output1=_optional_int(f.get("alternateOutput1")),
        alternate_output2=_optional_int(f.get("alternateOutput2")),
        alternate_output3=_optional_int(f.get("alternateOutput3")),
        category=category,
        imageremark=_optional_str(f.get("imageremark")),
        remarks=_optional_str(f.get("remarks")),
    )


def decode_command(record: RemoteRecord) -> Optional[ConsoleCommand]:
    """Decode a ConsoleCommand record; None if name or description is missing."""
    f = record.fields
    name = f.get("name")
    description = f.get("description")
    if not isinstance(name, str) or not isinstance(description, str):
        return None

    def op_level(value: Any) -> Optional[int]:
        return value if _is_int(value) and 0 <= value <= 4 else None

    return ConsoleCommand(
        id=parse_record_id(record.record_name),
        name=name,
        description=description,
        works_in_bedrock=bool(f.get("worksInBedrock", False)),
        works_in_java=bool(f.get("worksInJava", False)),
        op_level_bedrock=op_level(f.get("opLevelBedrock")),
        op_level_java=op_level(f.get("opLevelJava")),
    )


@dataclass
class FetchResult(Generic[T]):
    """
    Outcome of a successful fetch.

    Attributes:
        items: Decoded items, sorted by name then id
        skipped: Number of records that failed to decode
        pages: Number of pages read
    """
    items: List[T] = field(default_factory=list)
    skipped: int = 0
    pages: int = 0

    @property
    def complete(self) -> bool:
        """True when every matched record decoded successfully."""
        return self.skipped == 0


class CatalogFetcher(Generic[T]):
    """
    Fetches every record of one record type from the remote database.

    The fetcher has no side effects besides the network calls: it does not
    touch the local cache or any in-memory state.
    """

    def __init__(
        self,
        connector: BaseDatabaseConnector,
        record_type: str = RECIPE_RECORD_TYPE,
        decoder: Callable[[RemoteRecord], Optional[T]] = decode_recipe,
        max_attempts: int = MAX_ATTEMPTS,
        retry_delay: float = RETRY_DELAY_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.connector = connector
        self.record_type = record_type
        self.decoder = decoder
        self.max_attempts = max(1, max_attempts)
        self.retry_delay = retry_delay
        self.sleep = sleep

    def fetch_catalog(self) -> FetchResult[T]:
        """
        Fetch all pages and decode every record.

        Returns:
            FetchResult with the sorted items and the skipped-record count

        Raises:
            FetchError: If a page fails with a non-retryable error, or keeps
                failing after max_attempts attempts
        """
        result: FetchResult[T] = FetchResult()
        cursor: Optional[str] = None
        seen: Set[str] = set()

        logger.info("Fetching %s records", self.record_type)
        while True:
            page = self._fetch_page(cursor)
            result.pages += 1

            for record in page.records:
                # A record repeated on a later page is counted once
                if record.record_name in seen:
                    logger.debug("Ignoring repeated %s record %s", self.record_type, record.record_name)
                    continue
                seen.add(record.record_name)

                try:
                    item = self.decoder(record)
                except ValueError as e:
                    # pydantic ValidationError is a ValueError
                    logger.warning("Failed to decode %s record %s: %s", self.record_type, record.record_name, e)
                    result.skipped += 1
                    continue
                if item is None:
                    logger.warning("Skipping %s record %s: missing or invalid fields",
                                   self.record_type, record.record_name)
                    result.skipped += 1
                    continue
                result.items.append(item)

            if not page.cursor:
                break
            cursor = page.cursor

        result.items.sort(key=lambda item: (item.name, item.id))
        logger.info("Fetched %d %s records in %d page(s), skipped %d",
                    len(result.items), self.record_type, result.pages, result.skipped)
        return result

    def _fetch_page(self, cursor: Optional[str]) -> QueryPage:
        """Request one page, retrying the same request on retryable failures."""
        attempt = 0
        while True:
            attempt += 1
            try:
                return self.connector.query(self.record_type, cursor=cursor)
            except RemoteServiceError as e:
                kind = classify_error(e)
                if kind.retryable and attempt < self.max_attempts:
                    logger.warning("Page request for %s failed (%s, attempt %d/%d), retrying in %.1fs",
                                   self.record_type, e, attempt, self.max_attempts, self.retry_delay)
                    self.sleep(self.retry_delay)
                    continue
                logger.error("Page request for %s failed after %d attempt(s): %s (%s)",
                             self.record_type, attempt, e, kind.value)
                raise FetchError(kind, str(e), attempts=attempt) from e
            except Exception as e:
                logger.error("Unexpected error querying %s: %s", self.record_type, e, exc_info=True)
                raise FetchError(ErrorKind.UNKNOWN, str(e), attempts=attempt) from e
