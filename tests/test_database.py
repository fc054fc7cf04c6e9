import sqlite3
from datetime import date

import pytest

from pyxis_library.book import BookStatus
from pyxis_library.database import RecordStore, StoreError, hash_secret, verify_secret
from pyxis_library.reservations import ReservationManager


def test_open_creates_schema(store):
    with store.read() as conn:
        tables = {row["name"] for row in conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'")}
        columns = [row["name"] for row in conn.execute("PRAGMA table_info(books)")]
    assert {"books", "users", "reservations"} <= tables
    assert columns == ["id", "title", "imgUrl", "author", "publisher", "callNum", "location", "status"]


def test_unopened_store_raises(tmp_path):
    unopened = RecordStore(db_file=str(tmp_path / "closed.db"))
    with pytest.raises(StoreError):
        unopened.find_by_id("1")


def test_upsert_inserts_and_finds(store, make_record):
    assert store.upsert_records([make_record("A", title="Ulysses", author="James Joyce")]) == 1

    book = store.find_by_id("A")
    assert book is not None
    assert book.title == "Ulysses"
    assert book.status is BookStatus.AVAILABLE
    assert store.find_by_id("missing") is None


def test_upsert_twice_keeps_one_row_with_latest_values(store, make_record):
    store.upsert_records([make_record("A", title="Old Title")])
    store.upsert_records([make_record("A", title="New Title", location="Science Library")])

    assert store.count_records() == 1
    book = store.find_by_id("A")
    assert book.title == "New Title"
    assert book.location == "Science Library"


def test_reingestion_does_not_revert_loaned_status(store, make_record):
    store.upsert_records([make_record("A")])
    user_id = store.create_user("reader", "pw", "Reader")
    assert ReservationManager(store).reserve(user_id, "A").success

    store.upsert_records([make_record("A", title="Refreshed Title")])

    book = store.find_by_id("A")
    assert book.title == "Refreshed Title"
    assert book.status is BookStatus.LOANED


def test_upsert_batch_is_atomic(store, make_record):
    store.upsert_records([make_record("A", title="Original")])
    broken = make_record("B")
    broken.author = ["not", "bindable"]
    with pytest.raises(sqlite3.Error):
        store.upsert_records([make_record("A", title="Changed"), broken])
    assert store.find_by_id("A").title == "Original"
    assert store.find_by_id("B") is None


def test_search_by_text_matches_title_or_author_case_insensitive(store, make_record):
    store.upsert_records([
        make_record("1", title="Learning Python", author="Mark Lutz"),
        make_record("2", title="Fluent Code", author="Luciano Ramalho"),
        make_record("3", title="Databases", author="Someone Else"),
    ])

    assert {b.id for b in store.search_by_text("python")} == {"1"}
    assert {b.id for b in store.search_by_text("RAMALHO")} == {"2"}
    assert store.search_by_text("nothing-matches") == []


def test_search_folds_non_ascii_case(store, make_record):
    store.upsert_records([
        make_record("1", title="Écoles du monde", author="Émile Zola"),
        make_record("2", title="Straße und Weg"),
    ])

    assert [b.id for b in store.search_by_text("écoles")] == ["1"]
    assert [b.id for b in store.search_by_text("ÉMILE")] == ["1"]
    assert [b.id for b in store.search_by_text("STRASSE")] == []
    assert [b.id for b in store.search_by_text("STRAßE")] == ["2"]


def test_search_treats_wildcards_literally(store, make_record):
    store.upsert_records([
        make_record("1", title="100% Pure"),
        make_record("2", title="Plain Title"),
    ])
    assert [b.id for b in store.search_by_text("%")] == ["1"]


def test_search_is_capped(store, make_record):
    store.upsert_records([make_record(str(i), title=f"Common {i}") for i in range(30)])
    assert len(store.search_by_text("Common")) == 20
    assert len(store.search_by_text("Common", limit=5)) == 5
    assert store.search_by_text("Common", limit=0) == []
    assert store.render_all(limit=0) == []


def test_list_available_excludes_loaned(store, make_record):
    store.upsert_records([make_record("A"), make_record("B")])
    user_id = store.create_user("reader", "pw", "Reader")
    ReservationManager(store).reserve(user_id, "A")

    assert [b.id for b in store.list_available()] == ["B"]


def test_legacy_available_variants_are_listed(store):
    with store.transaction() as conn:
        conn.execute("INSERT INTO books (id, title, status) VALUES ('L1', 'Legacy', '대출가능')")
    book = store.find_by_id("L1")
    assert book.status is BookStatus.AVAILABLE
    assert [b.id for b in store.list_available()] == ["L1"]


def test_create_user_rejects_duplicate_username(store):
    assert store.create_user("alice", "secret", "Alice") is not None
    assert store.create_user("alice", "other", "Alice 2") is None


def test_secrets_are_hashed_and_verified(store):
    user_id = store.create_user("alice", "secret", "Alice")

    with store.read() as conn:
        stored = conn.execute("SELECT password FROM users WHERE id = ?", (user_id,)).fetchone()[0]
    assert stored != "secret"
    assert stored.startswith("pbkdf2_sha256$")

    user = store.find_user("alice", "secret")
    assert user.id == user_id
    assert user.nickname == "Alice"
    assert store.find_user("alice", "wrong") is None
    assert store.find_user("bob", "secret") is None


def test_hash_secret_uses_random_salt():
    first, second = hash_secret("pw"), hash_secret("pw")
    assert first != second
    assert verify_secret("pw", first) and verify_secret("pw", second)
    assert not verify_secret("pw", "plain-text-password")


def test_transaction_rolls_back_on_error(store, make_record):
    store.upsert_records([make_record("A", title="Before")])
    with pytest.raises(RuntimeError):
        with store.transaction() as conn:
            conn.execute("UPDATE books SET title = 'After' WHERE id = 'A'")
            raise RuntimeError("boom")
    assert store.find_by_id("A").title == "Before"


def test_foreign_keys_are_enforced(store, make_record):
    store.upsert_records([make_record("A")])
    with pytest.raises(sqlite3.IntegrityError):
        with store.transaction() as conn:
            conn.execute(
                "INSERT INTO reservations (user_id, book_id, date, due_date) VALUES (999, 'A', '2024-01-01', '2024-01-08')"
            )


def test_legacy_reservations_table_is_migrated(tmp_path):
    db_file = str(tmp_path / "legacy.db")
    conn = sqlite3.connect(db_file)
    conn.execute("CREATE TABLE reservations (id INTEGER PRIMARY KEY AUTOINCREMENT, user_id INTEGER, book_id TEXT, date TEXT)")
    conn.commit()
    conn.close()

    with RecordStore(db_file=db_file) as legacy_store:
        with legacy_store.read() as c:
            columns = [row["name"] for row in c.execute("PRAGMA table_info(reservations)")]
    assert "due_date" in columns
    assert "extension_count" in columns


def _legacy_database(db_file):
    conn = sqlite3.connect(db_file)
    conn.execute("CREATE TABLE books (id TEXT PRIMARY KEY, title TEXT, imgUrl TEXT, author TEXT, "
                 "publisher TEXT, callNum TEXT, location TEXT, status TEXT)")
    conn.execute("CREATE TABLE users (id INTEGER PRIMARY KEY AUTOINCREMENT, username TEXT UNIQUE, "
                 "password TEXT, nickname TEXT)")
    conn.execute("CREATE TABLE reservations (id INTEGER PRIMARY KEY AUTOINCREMENT, user_id INTEGER, "
                 "book_id TEXT, date TEXT)")
    conn.execute("INSERT INTO users (id, username, password, nickname) VALUES (1, 'old', 'x', 'Old')")
    conn.executemany("INSERT INTO books (id, title, status) VALUES (?, ?, '대출중')", [("A", "Old A"), ("B", "Old B")])
    conn.execute("INSERT INTO reservations (id, user_id, book_id, date) VALUES (1, 1, 'A', '2024-01-01')")
    conn.execute("INSERT INTO reservations (id, user_id, book_id, date) VALUES (2, 1, 'B', NULL)")
    conn.commit()
    conn.close()


def test_migrated_reservations_get_due_dates(tmp_path):
    db_file = str(tmp_path / "legacy.db")
    _legacy_database(db_file)

    with RecordStore(db_file=db_file) as legacy_store:
        with legacy_store.read() as conn:
            rows = conn.execute("SELECT id, due_date, extension_count FROM reservations ORDER BY id").fetchall()

    assert [tuple(row) for row in rows] == [(1, "2024-01-08", 0), (2, None, 0)]


def test_migrated_reservations_can_be_listed_extended_and_cancelled(tmp_path):
    db_file = str(tmp_path / "legacy.db")
    _legacy_database(db_file)

    with RecordStore(db_file=db_file) as legacy_store:
        manager = ReservationManager(legacy_store, today=lambda: date(2024, 3, 1))

        details = manager.list_for_user(1)
        assert [d.reservation.due_date for d in details] == [date(2024, 1, 8), None]
        assert details[1].to_dict()["date"] is None

        extended = manager.extend(1, 1)
        assert extended.success
        assert extended.reservation.due_date == date(2024, 1, 15)
        assert manager.extend(2, 1).reservation.due_date == date(2024, 3, 8)

        for reservation_id, book_id in ((1, "A"), (2, "B")):
            assert manager.cancel(reservation_id, 1).success
            assert legacy_store.find_by_id(book_id).status is BookStatus.AVAILABLE
        assert manager.list_for_user(1) == []
