import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

from pyxis_library.book import BookStatus, CatalogRecord
from pyxis_library.config import settings

logger = logging.getLogger(__name__)

SUCCESS_CODE = "success.retrieved"


class CatalogFetchError(Exception):
    """Network, timeout or protocol failure talking to the remote catalog."""
    pass


@dataclass
class PageFailure:
    """A page abandoned once every retry had failed."""
    keyword: str
    offset: int
    attempts: int
    reason: str


@dataclass
class PageFetch:
    keyword: str
    offset: int
    records: List[CatalogRecord] = field(default_factory=list)
    failure: Optional[PageFailure] = None

    @property
    def ok(self) -> bool:
        return self.failure is None


class CatalogFetcher:
    """Client for the Pyxis collection search endpoint.

    Pages are fetched with a bounded retry loop: one initial attempt plus up to
    ``max_retries`` retries, retry ``n`` waiting ``n * backoff_seconds``. A page
    that still fails is reported back as a :class:`PageFailure` with an empty
    record list instead of raising.
    """

    def __init__(
        self,
        http_client: Any,
        base_url: Optional[str] = None,
        page_size: Optional[int] = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        backoff_seconds: Optional[float] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.http_client = http_client
        self.base_url = base_url or settings.catalog_base_url
        self.page_size = page_size if page_size is not None else settings.ingest_page_size
        self.timeout = timeout if timeout is not None else settings.catalog_timeout
        self.max_retries = max_retries if max_retries is not None else settings.catalog_max_retries
        self.backoff_seconds = backoff_seconds if backoff_seconds is not None else settings.catalog_backoff_seconds
        self.no_call_number = settings.no_call_number
        self.default_location = settings.default_location
        self._sleep = sleep

    @staticmethod
    def search_params(keyword: str, offset: int, max_results: int) -> Dict[str, Any]:
        # Free-text query with the fixed keyword/all-fields qualifiers the catalog expects
        return {
            "all": f"{keyword}|k|a|0",
            "facet": "false",
            "max": max_results,
            "offset": offset,
        }

    async def _request(self, params: Dict[str, Any]) -> Dict[str, Any]:
        """Issue one search request and return the ``data`` object of a successful response."""
        try:
            response = await self.http_client.get(self.base_url, params=params, timeout=self.timeout)
        except httpx.TimeoutException as exc:
            raise CatalogFetchError(f"request timed out after {self.timeout}s") from exc
        except httpx.RequestError as exc:
            raise CatalogFetchError(f"request failed: {exc}") from exc

        if response.status_code != 200:
            raise CatalogFetchError(f"unexpected HTTP status {response.status_code}")

        try:
            payload = response.json()
        except ValueError as exc:
            raise CatalogFetchError("response body is not valid JSON") from exc

        code = payload.get("code") if isinstance(payload, dict) else None
        if code != SUCCESS_CODE:
            raise CatalogFetchError(f"catalog returned code {code!r}")

        data = payload.get("data")
        if not isinstance(data, dict):
            raise CatalogFetchError("response has no data object")
        return data

    def normalize_record(self, raw: Dict[str, Any]) -> Optional[CatalogRecord]:
        """Map one raw search hit onto a :class:`CatalogRecord`; None when it has no id."""
        if not isinstance(raw, dict) or raw.get("id") in (None, ""):
            return None

        volumes = raw.get("branchVolumes") or []
        first_volume = volumes[0] if volumes and isinstance(volumes[0], dict) else {}

        return CatalogRecord(
            id=str(raw["id"]),
            title=raw.get("titleStatement") or "",
            img_url=raw.get("thumbnailUrl") or None,
            author=raw.get("author"),
            publisher=raw.get("publication"),
            call_number=first_volume.get("volume") or self.no_call_number,
            location=first_volume.get("name") or self.default_location,
            status=BookStatus.AVAILABLE,
        )

    def normalize_list(self, raw_list: List[Dict[str, Any]]) -> List[CatalogRecord]:
        records = []
        for raw in raw_list:
            record = self.normalize_record(raw)
            if record is None:
                logger.warning(f"Skipping catalog entry without id: {raw!r}")
                continue
            records.append(record)
        return records

    async def fetch_page_result(self, keyword: str, offset: int, page_size: Optional[int] = None) -> PageFetch:
        """Fetch one page, retrying transient failures; never raises for network errors."""
        params = self.search_params(keyword, offset, page_size if page_size is not None else self.page_size)
        attempts = 0
        last_error: Optional[CatalogFetchError] = None

        for retry in range(self.max_retries + 1):
            if retry:
                delay = self.backoff_seconds * retry
                logger.warning(
                    f"[{keyword}] offset {offset}: attempt {attempts} failed ({last_error}); "
                    f"retry {retry}/{self.max_retries} in {delay:.1f}s"
                )
                await self._sleep(delay)

            attempts += 1
            try:
                data = await self._request(params)
            except CatalogFetchError as exc:
                last_error = exc
                continue

            raw_list = data.get("list") or []
            return PageFetch(keyword=keyword, offset=offset, records=self.normalize_list(raw_list))

        failure = PageFailure(keyword=keyword, offset=offset, attempts=attempts, reason=str(last_error))
        logger.warning(f"[{keyword}] offset {offset}: giving up after {attempts} attempts: {last_error}")
        return PageFetch(keyword=keyword, offset=offset, failure=failure)

    async def fetch_page(self, keyword: str, offset: int, page_size: Optional[int] = None) -> List[CatalogRecord]:
        """
        Fetch and normalize one page of search results.

        Args:
            keyword: Partition keyword sent as the free-text query
            offset: Result offset of the page
            page_size: Results per page (defaults to the fetcher's page size)

        Returns:
            Normalized records, or an empty list when the page was abandoned
        """
        result = await self.fetch_page_result(keyword, offset, page_size)
        return result.records

    async def fetch_count(self, keyword: str) -> int:
        """Total number of hits for ``keyword``; raises :class:`CatalogFetchError` on any failure."""
        data = await self._request(self.search_params(keyword, 0, 1))
        total = data.get("totalCount")
        try:
            return int(total)
        except (TypeError, ValueError) as exc:
            raise CatalogFetchError(f"invalid totalCount {total!r}") from exc
