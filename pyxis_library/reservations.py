from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from datetime import date, timedelta
from enum import Enum
from typing import Callable, List, Optional

from pyxis_library.book import BookStatus, CatalogRecord, Reservation, ReservationDetail
from pyxis_library.config import settings
from pyxis_library.database import RecordStore

logger = logging.getLogger(__name__)


class ReservationFailure(Enum):
    LIMIT_EXCEEDED = "limit_exceeded"
    NOT_AVAILABLE = "not_available"
    NOT_FOUND = "not_found"
    ALREADY_EXTENDED = "already_extended"
    CONSTRAINT_VIOLATION = "constraint_violation"

    @property
    def message(self) -> str:
        return self.describe()

    def describe(self, limit: Optional[int] = None) -> str:
        return _FAILURE_MESSAGES[self].format(limit=limit if limit is not None else settings.max_reservations)


_FAILURE_MESSAGES = {
    ReservationFailure.LIMIT_EXCEEDED: "You can reserve at most {limit} books.",
    ReservationFailure.NOT_AVAILABLE: "This book is already on loan or cannot be reserved.",
    ReservationFailure.NOT_FOUND: "Reservation not found.",
    ReservationFailure.ALREADY_EXTENDED: "A reservation can only be extended once.",
    ReservationFailure.CONSTRAINT_VIOLATION: "The reservation request violates a storage constraint.",
}


@dataclass
class ReservationOutcome:
    success: bool
    failure: Optional[ReservationFailure] = None
    reservation: Optional[Reservation] = None
    detail: Optional[str] = None

    @property
    def message(self) -> Optional[str]:
        if self.detail is not None:
            return self.detail
        return self.failure.message if self.failure else None

    @classmethod
    def ok(cls, reservation: Optional[Reservation] = None) -> "ReservationOutcome":
        return cls(success=True, reservation=reservation)

    @classmethod
    def fail(cls, failure: ReservationFailure, detail: Optional[str] = None) -> "ReservationOutcome":
        return cls(success=False, failure=failure, detail=detail)


class _Abort(Exception):
    """Rolls back the current transaction and carries the failure kind out of it."""

    def __init__(self, failure: ReservationFailure, detail: Optional[str] = None):
        super().__init__(failure.value)
        self.failure = failure
        self.detail = detail


class ReservationManager:
    """Borrow / extend / cancel state machine over the record store.

    Every transition runs inside one ``RecordStore.transaction()``; all
    precondition reads happen after the transaction has taken the write lock,
    so a status or count read by a concurrent request can never be stale.
    """

    def __init__(self, store: RecordStore, max_reservations: Optional[int] = None,
                 loan_days: Optional[int] = None, today: Callable[[], date] = date.today):
        self.store = store
        self.max_reservations = max_reservations if max_reservations is not None else settings.max_reservations
        self.loan_period = timedelta(days=loan_days if loan_days is not None else settings.loan_days)
        self._today = today

    def _run(self, action: str, work: Callable[[sqlite3.Connection], ReservationOutcome]) -> ReservationOutcome:
        try:
            with self.store.transaction() as conn:
                outcome = work(conn)
        except _Abort as abort:
            logger.info(f"{action} rejected: {abort.failure.value}")
            return ReservationOutcome.fail(abort.failure, abort.detail)
        except sqlite3.IntegrityError as exc:
            logger.warning(f"{action} rejected by storage constraint: {exc}")
            return ReservationOutcome.fail(ReservationFailure.CONSTRAINT_VIOLATION)
        return outcome

    def reserve(self, user_id: int, book_id: str) -> ReservationOutcome:
        """Loan an available book to a user holding fewer than the maximum reservations."""
        book_id = str(book_id)

        def work(conn: sqlite3.Connection) -> ReservationOutcome:
            held = conn.execute(
                "SELECT COUNT(*) FROM reservations WHERE user_id = ?", (user_id,)
            ).fetchone()[0]
            if held >= self.max_reservations:
                raise _Abort(
                    ReservationFailure.LIMIT_EXCEEDED,
                    ReservationFailure.LIMIT_EXCEEDED.describe(self.max_reservations),
                )

            book = conn.execute("SELECT status FROM books WHERE id = ?", (book_id,)).fetchone()
            if book is None or BookStatus.from_storage(book["status"]) is not BookStatus.AVAILABLE:
                raise _Abort(ReservationFailure.NOT_AVAILABLE)

            start = self._today()
            due = start + self.loan_period
            cursor = conn.execute("""
                INSERT INTO reservations (user_id, book_id, date, due_date, extension_count)
                VALUES (?, ?, ?, ?, 0)
            """, (user_id, book_id, start.isoformat(), due.isoformat()))
            conn.execute(
                "UPDATE books SET status = ? WHERE id = ?",
                (BookStatus.LOANED.to_storage(), book_id)
            )
            reservation = Reservation(
                id=cursor.lastrowid, user_id=user_id, book_id=book_id,
                start_date=start, due_date=due, extension_count=0,
            )
            return ReservationOutcome.ok(reservation)

        outcome = self._run("reserve", work)
        if outcome.success:
            logger.info(f"User {user_id} reserved book {book_id} until {outcome.reservation.due_date}")
        return outcome

    def extend(self, reservation_id: int, user_id: int) -> ReservationOutcome:
        """Push the due date back one loan period; allowed once per reservation."""

        def work(conn: sqlite3.Connection) -> ReservationOutcome:
            row = conn.execute(
                "SELECT * FROM reservations WHERE id = ? AND user_id = ?", (reservation_id, user_id)
            ).fetchone()
            if row is None:
                raise _Abort(ReservationFailure.NOT_FOUND)
            reservation = Reservation.from_row(dict(row))
            if not reservation.can_extend:
                raise _Abort(ReservationFailure.ALREADY_EXTENDED)

            reservation.due_date = (reservation.due_date or self._today()) + self.loan_period
            reservation.extension_count += 1
            conn.execute(
                "UPDATE reservations SET due_date = ?, extension_count = ? WHERE id = ?",
                (reservation.due_date.isoformat(), reservation.extension_count, reservation_id)
            )
            return ReservationOutcome.ok(reservation)

        outcome = self._run("extend", work)
        if outcome.success:
            logger.info(f"Reservation {reservation_id} extended to {outcome.reservation.due_date}")
        return outcome

    def cancel(self, reservation_id: int, user_id: int) -> ReservationOutcome:
        """Delete the reservation and make its book available again."""

        def work(conn: sqlite3.Connection) -> ReservationOutcome:
            row = conn.execute(
                "SELECT * FROM reservations WHERE id = ? AND user_id = ?", (reservation_id, user_id)
            ).fetchone()
            if row is None:
                raise _Abort(ReservationFailure.NOT_FOUND)
            reservation = Reservation.from_row(dict(row))

            conn.execute("DELETE FROM reservations WHERE id = ?", (reservation_id,))
            conn.execute(
                "UPDATE books SET status = ? WHERE id = ?",
                (BookStatus.AVAILABLE.to_storage(), reservation.book_id)
            )
            return ReservationOutcome.ok(reservation)

        outcome = self._run("cancel", work)
        if outcome.success:
            logger.info(f"Reservation {reservation_id} cancelled, book {outcome.reservation.book_id} available")
        return outcome

    def list_for_user(self, user_id: int) -> List[ReservationDetail]:
        with self.store.read() as conn:
            rows = conn.execute("""
                SELECT r.id AS reservation_id, r.user_id, r.date, r.due_date, r.extension_count, b.*
                FROM reservations r
                JOIN books b ON r.book_id = b.id
                WHERE r.user_id = ?
                ORDER BY r.id
            """, (user_id,)).fetchall()

        details = []
        for row in rows:
            data = dict(row)
            reservation = Reservation.from_row({
                "id": data["reservation_id"],
                "user_id": data["user_id"],
                "book_id": data["id"],
                "date": data["date"],
                "due_date": data["due_date"],
                "extension_count": data["extension_count"],
            })
            details.append(ReservationDetail(reservation=reservation, book=CatalogRecord.from_row(data)))
        return details
