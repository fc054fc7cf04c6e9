import os
import pytest

from pyxis_library.book import CatalogRecord
from pyxis_library.database import RecordStore


def pytest_collection_modifyitems(config, items):
    # Live-network tests only run when explicitly requested
    if os.environ.get("RUN_INTEGRATION") == "1":
        return
    skip = pytest.mark.skip(reason="Requires network access. Set RUN_INTEGRATION=1 to enable.")
    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip)


@pytest.fixture
def store(tmp_path, request):
    # A unique database file for each test
    db_file = str(tmp_path / f"test_{request.node.name}.db")
    record_store = RecordStore(db_file=db_file, busy_timeout=30).open()
    yield record_store
    record_store.close()


@pytest.fixture
def make_record():
    def _make(book_id: str, title: str = "Test Book", author: str = "Test Author", **kwargs) -> CatalogRecord:
        return CatalogRecord(
            id=book_id,
            title=title,
            author=author,
            publisher=kwargs.get("publisher", "Test Press"),
            call_number=kwargs.get("call_number", "005.1 T123"),
            location=kwargs.get("location", "Central Library"),
            img_url=kwargs.get("img_url"),
        )
    return _make
