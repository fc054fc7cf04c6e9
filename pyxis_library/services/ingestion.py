import asyncio
import logging
import math
import sqlite3
from dataclasses import dataclass, field
from typing import Callable, Iterable, List, Optional

from pyxis_library.config import settings
from pyxis_library.database import RecordStore
from pyxis_library.services.catalog_fetcher import CatalogFetchError, CatalogFetcher, PageFailure

logger = logging.getLogger(__name__)

# Called after every batch with (keyword, processed_pages, total_pages)
ProgressCallback = Callable[[str, int, int], None]


@dataclass
class KeywordReport:
    keyword: str
    total_count: int = 0
    total_pages: int = 0
    processed_pages: int = 0
    saved_records: int = 0
    failures: List[PageFailure] = field(default_factory=list)
    skipped: bool = False
    skip_reason: Optional[str] = None

    @property
    def failed_pages(self) -> int:
        return len(self.failures)

    @property
    def progress(self) -> float:
        if not self.total_pages:
            return 0.0
        return self.processed_pages / self.total_pages


@dataclass
class IngestionReport:
    keywords: List[KeywordReport] = field(default_factory=list)

    @property
    def saved_records(self) -> int:
        return sum(k.saved_records for k in self.keywords)

    @property
    def failed_pages(self) -> int:
        return sum(k.failed_pages for k in self.keywords)

    @property
    def skipped_keywords(self) -> List[str]:
        return [k.keyword for k in self.keywords if k.skipped]


@dataclass
class _PageOutcome:
    saved: int = 0
    failure: Optional[PageFailure] = None


class IngestionScheduler:
    """Crawls the remote catalog keyword by keyword in bounded concurrent batches.

    Within a keyword the offset cursor advances in strides of
    ``page_size * concurrency_limit``; each stride is one batch whose pages are
    fetched and stored concurrently and awaited together before the next stride
    starts, so no more than ``concurrency_limit`` requests are ever in flight.
    """

    def __init__(
        self,
        fetcher: CatalogFetcher,
        store: RecordStore,
        keywords: Optional[Iterable[str]] = None,
        page_size: Optional[int] = None,
        concurrency_limit: Optional[int] = None,
        on_progress: Optional[ProgressCallback] = None,
    ):
        self.fetcher = fetcher
        self.store = store
        self.keywords = list(keywords) if keywords is not None else list(settings.ingest_keywords)
        self.page_size = page_size if page_size is not None else settings.ingest_page_size
        self.concurrency_limit = concurrency_limit if concurrency_limit is not None else settings.ingest_concurrency
        if self.page_size < 1 or self.concurrency_limit < 1:
            raise ValueError("page_size and concurrency_limit must be positive")
        self.on_progress = on_progress

    def batch_offsets(self, total_count: int) -> List[List[int]]:
        """Page offsets grouped into batches of at most ``concurrency_limit``."""
        stride = self.page_size * self.concurrency_limit
        batches = []
        for start in range(0, total_count, stride):
            offsets = [
                start + j * self.page_size
                for j in range(self.concurrency_limit)
                if start + j * self.page_size < total_count
            ]
            batches.append(offsets)
        return batches

    async def run(self) -> IngestionReport:
        """Crawl every keyword partition in order."""
        logger.info(
            f"Starting catalog crawl: {len(self.keywords)} keywords, "
            f"page size {self.page_size}, concurrency {self.concurrency_limit}"
        )
        report = IngestionReport()
        for keyword in self.keywords:
            report.keywords.append(await self.crawl_keyword(keyword))
        logger.info(
            f"Catalog crawl finished: {report.saved_records} records saved, "
            f"{report.failed_pages} pages abandoned, skipped keywords: {report.skipped_keywords or 'none'}"
        )
        return report

    async def crawl_keyword(self, keyword: str) -> KeywordReport:
        report = KeywordReport(keyword=keyword)

        try:
            report.total_count = await self.fetcher.fetch_count(keyword)
        except CatalogFetchError as exc:
            logger.error(f"[{keyword}] count request failed, skipping keyword: {exc}")
            report.skipped = True
            report.skip_reason = str(exc)
            return report

        if report.total_count <= 0:
            logger.info(f"[{keyword}] no results, skipping keyword")
            report.skipped = True
            report.skip_reason = "no results"
            return report

        report.total_pages = math.ceil(report.total_count / self.page_size)
        logger.info(f"[{keyword}] {report.total_count} records in {report.total_pages} pages")

        for offsets in self.batch_offsets(report.total_count):
            outcomes = await asyncio.gather(*(self._fetch_and_store(keyword, offset) for offset in offsets))
            for outcome in outcomes:
                report.saved_records += outcome.saved
                if outcome.failure is not None:
                    report.failures.append(outcome.failure)
            report.processed_pages += len(offsets)

            logger.info(
                f"[{keyword}] progress {report.processed_pages}/{report.total_pages} pages "
                f"({report.progress:.0%})"
            )
            if self.on_progress:
                self.on_progress(keyword, report.processed_pages, report.total_pages)

        logger.info(f"[{keyword}] done: {report.saved_records} saved, {report.failed_pages} pages abandoned")
        return report

    async def _fetch_and_store(self, keyword: str, offset: int) -> _PageOutcome:
        result = await self.fetcher.fetch_page_result(keyword, offset, self.page_size)
        if result.failure is not None:
            return _PageOutcome(failure=result.failure)
        if not result.records:
            return _PageOutcome()

        try:
            saved = await asyncio.to_thread(self.store.upsert_records, result.records)
        except sqlite3.Error as exc:
            logger.error(f"[{keyword}] offset {offset}: failed to save page: {exc}")
            failure = PageFailure(keyword=keyword, offset=offset, attempts=1, reason=f"store error: {exc}")
            return _PageOutcome(failure=failure)
        return _PageOutcome(saved=saved)
