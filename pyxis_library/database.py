import hashlib
import hmac
import logging
import os
import secrets
import sqlite3
from contextlib import contextmanager
from typing import Iterable, Iterator, List, Optional

from pyxis_library.book import BookStatus, CatalogRecord, User
from pyxis_library.config import settings

logger = logging.getLogger(__name__)

_PASSWORD_ALGORITHM = "pbkdf2_sha256"
_PASSWORD_ITERATIONS = 120_000


class StoreError(Exception):
    """Raised when the store is used outside its open/close lifecycle."""
    pass


def hash_secret(secret: str, salt: Optional[str] = None) -> str:
    """Return a salted PBKDF2 digest in the form ``algorithm$iterations$salt$hash``."""
    salt = salt or secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac("sha256", secret.encode("utf-8"), salt.encode("utf-8"), _PASSWORD_ITERATIONS)
    return f"{_PASSWORD_ALGORITHM}${_PASSWORD_ITERATIONS}${salt}${digest.hex()}"


def verify_secret(secret: str, stored: str) -> bool:
    try:
        algorithm, iterations, salt, expected = stored.split("$")
    except (AttributeError, ValueError):
        return False
    if algorithm != _PASSWORD_ALGORITHM:
        return False
    digest = hashlib.pbkdf2_hmac("sha256", secret.encode("utf-8"), salt.encode("utf-8"), int(iterations))
    return hmac.compare_digest(digest.hex(), expected)


def _fold_case(value: Optional[str]) -> Optional[str]:
    return value.lower() if value is not None else None


class RecordStore:
    """SQLite persistence for catalog records, users and reservations.

    One instance is shared by the ingestion scheduler and the reservation
    manager for the lifetime of the process. Each unit of work opens its own
    connection against the same database file; write transactions start with
    ``BEGIN IMMEDIATE`` so SQLite's write lock serializes them.
    """

    def __init__(self, db_file: Optional[str] = None, busy_timeout: Optional[float] = None) -> None:
        self.db_file = db_file or settings.data_file
        self.busy_timeout = busy_timeout if busy_timeout is not None else settings.database_busy_timeout
        self._opened = False

    # ------------------------- Lifecycle ------------------------- #
    def open(self) -> "RecordStore":
        if self._opened:
            return self
        directory = os.path.dirname(os.path.abspath(self.db_file))
        os.makedirs(directory, exist_ok=True)
        conn = sqlite3.connect(self.db_file, timeout=self.busy_timeout)
        try:
            # WAL lets readers proceed while a reservation transaction holds the write lock
            conn.execute("PRAGMA journal_mode=WAL;")
            conn.execute("PRAGMA synchronous=NORMAL;")
        finally:
            conn.close()
        self._opened = True
        self.create_tables()
        logger.info(f"Record store opened: {self.db_file}")
        return self

    def close(self) -> None:
        if self._opened:
            logger.info(f"Record store closed: {self.db_file}")
        self._opened = False

    @property
    def is_open(self) -> bool:
        return self._opened

    def __enter__(self) -> "RecordStore":
        return self.open()

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def _connect(self) -> sqlite3.Connection:
        if not self._opened:
            raise StoreError("Record store is not open.")
        conn = sqlite3.connect(
            self.db_file,
            timeout=self.busy_timeout,
            isolation_level=None,
            check_same_thread=False,
        )
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys=ON;")
        # SQLite lower() and LIKE only fold ASCII letters
        conn.create_function("py_lower", 1, _fold_case, deterministic=True)
        return conn

    @contextmanager
    def read(self) -> Iterator[sqlite3.Connection]:
        """Connection for read-only queries (autocommit, no explicit transaction)."""
        conn = self._connect()
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Serializable unit of work: commits on success, rolls back on any error."""
        conn = self._connect()
        try:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            else:
                conn.execute("COMMIT")
        finally:
            conn.close()

    # ------------------------- Schema ------------------------- #
    def create_tables(self) -> None:
        """Create the tables if missing and add columns older databases lack."""
        with self.transaction() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS books (
                    id TEXT PRIMARY KEY,
                    title TEXT,
                    imgUrl TEXT,
                    author TEXT,
                    publisher TEXT,
                    callNum TEXT,
                    location TEXT,
                    status TEXT
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS users (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    username TEXT UNIQUE,
                    password TEXT,
                    nickname TEXT
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS reservations (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id INTEGER,
                    book_id TEXT,
                    date TEXT,
                    due_date TEXT,
                    extension_count INTEGER DEFAULT 0,
                    FOREIGN KEY(user_id) REFERENCES users(id),
                    FOREIGN KEY(book_id) REFERENCES books(id)
                )
            """)

            columns = [row["name"] for row in conn.execute("PRAGMA table_info(reservations)").fetchall()]
            if "due_date" not in columns:
                conn.execute("ALTER TABLE reservations ADD COLUMN due_date TEXT")
            if "extension_count" not in columns:
                conn.execute("ALTER TABLE reservations ADD COLUMN extension_count INTEGER DEFAULT 0")
            # Rows written before due dates existed get one loan period from their start date
            conn.execute(
                "UPDATE reservations SET due_date = date(date, ?) WHERE due_date IS NULL AND date IS NOT NULL",
                (f"+{settings.loan_days} days",)
            )

            conn.execute("CREATE INDEX IF NOT EXISTS idx_reservations_user_id ON reservations(user_id)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_reservations_book_id ON reservations(book_id)")

    # ------------------------- Catalog records ------------------------- #
    def upsert_records(self, records: Iterable[CatalogRecord]) -> int:
        """Insert or update records by id in one transaction; status is never overwritten."""
        rows = [record.to_row() for record in records]
        if not rows:
            return 0
        with self.transaction() as conn:
            conn.executemany("""
                INSERT INTO books (id, title, imgUrl, author, publisher, callNum, location, status)
                VALUES (:id, :title, :imgUrl, :author, :publisher, :callNum, :location, :status)
                ON CONFLICT(id) DO UPDATE SET
                    title = excluded.title,
                    imgUrl = excluded.imgUrl,
                    author = excluded.author,
                    publisher = excluded.publisher,
                    callNum = excluded.callNum,
                    location = excluded.location
            """, rows)
        logger.debug(f"Upserted {len(rows)} records")
        return len(rows)

    def find_by_id(self, book_id: str) -> Optional[CatalogRecord]:
        with self.read() as conn:
            row = conn.execute("SELECT * FROM books WHERE id = ?", (str(book_id),)).fetchone()
            return CatalogRecord.from_row(dict(row)) if row else None

    def search_by_text(self, query: str, limit: Optional[int] = None) -> List[CatalogRecord]:
        """Case-insensitive substring match on title or author, capped at ``limit`` rows."""
        limit = limit if limit is not None else settings.search_limit
        escaped = query.lower().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        pattern = f"%{escaped}%"
        with self.read() as conn:
            rows = conn.execute("""
                SELECT * FROM books
                WHERE py_lower(title) LIKE ? ESCAPE '\\'
                OR py_lower(author) LIKE ? ESCAPE '\\'
                LIMIT ?
            """, (pattern, pattern, limit)).fetchall()
            return [CatalogRecord.from_row(dict(row)) for row in rows]

    def list_available(self, limit: Optional[int] = None) -> List[CatalogRecord]:
        limit = limit if limit is not None else settings.search_limit
        with self.read() as conn:
            rows = conn.execute(
                "SELECT * FROM books WHERE status LIKE ? LIMIT ?",
                (f"%{BookStatus.AVAILABLE.to_storage()}%", limit)
            ).fetchall()
            return [CatalogRecord.from_row(dict(row)) for row in rows]

    def render_all(self, limit: Optional[int] = None) -> List[CatalogRecord]:
        limit = limit if limit is not None else settings.search_limit
        with self.read() as conn:
            rows = conn.execute("SELECT * FROM books LIMIT ?", (limit,)).fetchall()
            return [CatalogRecord.from_row(dict(row)) for row in rows]

    def count_records(self) -> int:
        with self.read() as conn:
            return conn.execute("SELECT COUNT(*) FROM books").fetchone()[0]

    # ------------------------- Users ------------------------- #
    def create_user(self, username: str, secret: str, display_name: str) -> Optional[int]:
        """Create a user and return its id, or None when the username is taken."""
        try:
            with self.transaction() as conn:
                cursor = conn.execute(
                    "INSERT INTO users (username, password, nickname) VALUES (?, ?, ?)",
                    (username, hash_secret(secret), display_name)
                )
                return cursor.lastrowid
        except sqlite3.IntegrityError:
            logger.info(f"Signup rejected, username already exists: {username}")
            return None

    def find_user(self, username: str, secret: str) -> Optional[User]:
        with self.read() as conn:
            row = conn.execute(
                "SELECT id, username, password, nickname FROM users WHERE username = ?",
                (username,)
            ).fetchone()
        if not row or not verify_secret(secret, row["password"]):
            return None
        return User(id=row["id"], username=row["username"], nickname=row["nickname"])
