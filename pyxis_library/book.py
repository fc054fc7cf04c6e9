from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from enum import Enum

from pyxis_library.config import settings

# Legacy status strings persisted in the books table
_AVAILABLE_MARKER = "가능"
_LOANED_LABEL = "대출중"


class BookStatus(Enum):
    AVAILABLE = "Available"
    LOANED = "Loaned"

    def to_storage(self) -> str:
        """Legacy string written to books.status."""
        return _AVAILABLE_MARKER if self is BookStatus.AVAILABLE else _LOANED_LABEL

    @classmethod
    def from_storage(cls, raw: str | None) -> "BookStatus":
        # Older rows carry variants like '대출가능' or '열람가능'
        if raw is None:
            return cls.LOANED
        if _AVAILABLE_MARKER in raw or raw == cls.AVAILABLE.value:
            return cls.AVAILABLE
        return cls.LOANED


class CatalogRecord:
    """A single catalog entry mirrored from the remote collection."""

    def __init__(self, id: str, title: str, author: str | None = None, publisher: str | None = None,
                 call_number: str | None = None, location: str | None = None, img_url: str | None = None,
                 status: BookStatus = BookStatus.AVAILABLE) -> None:
        self.id = str(id).strip()
        self.title = (title or "").strip()
        self.author = author
        self.publisher = publisher
        self.call_number = call_number
        self.location = location
        self.img_url = img_url
        self.status = status

    def __str__(self) -> str:  # pragma: no cover - string formatting trivial
        return f"{self.title} by {self.author} (ID: {self.id})"

    def __repr__(self) -> str:  # pragma: no cover
        return f"CatalogRecord(id={self.id!r}, title={self.title!r}, status={self.status.value})"

    @property
    def is_available(self) -> bool:
        return self.status is BookStatus.AVAILABLE

    def to_row(self) -> dict:
        """Column mapping for the books table."""
        return {
            "id": self.id,
            "title": self.title,
            "imgUrl": self.img_url,
            "author": self.author,
            "publisher": self.publisher,
            "callNum": self.call_number,
            "location": self.location,
            "status": self.status.to_storage(),
        }

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "imgUrl": self.img_url,
            "author": self.author,
            "publisher": self.publisher,
            "callNum": self.call_number,
            "location": self.location,
            "status": self.status.value,
        }

    @staticmethod
    def from_row(row: dict) -> "CatalogRecord":
        return CatalogRecord(
            id=row["id"],
            title=row.get("title") or "",
            author=row.get("author"),
            publisher=row.get("publisher"),
            call_number=row.get("callNum"),
            location=row.get("location"),
            img_url=row.get("imgUrl"),
            status=BookStatus.from_storage(row.get("status")),
        )


@dataclass
class User:
    id: int
    username: str
    nickname: str

    def to_dict(self) -> dict:
        return {"id": self.id, "username": self.username, "nickname": self.nickname}


@dataclass
class Reservation:
    id: int
    user_id: int
    book_id: str
    start_date: date | None
    due_date: date | None
    extension_count: int = 0

    @property
    def can_extend(self) -> bool:
        return self.extension_count < 1

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "userId": self.user_id,
            "bookId": self.book_id,
            "date": self.start_date.isoformat() if self.start_date else None,
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "extension_count": self.extension_count,
        }

    @staticmethod
    def from_row(row: dict) -> "Reservation":
        """Build from a reservations row; rows migrated from older tables may lack dates."""
        start_date = _parse_date(row.get("date"))
        due_date = _parse_date(row.get("due_date"))
        if due_date is None and start_date is not None:
            due_date = start_date + timedelta(days=settings.loan_days)
        return Reservation(
            id=row["id"],
            user_id=row["user_id"],
            book_id=row["book_id"],
            start_date=start_date,
            due_date=due_date,
            extension_count=row.get("extension_count") or 0,
        )


def _parse_date(value: str | None) -> date | None:
    return date.fromisoformat(value) if value else None


@dataclass
class ReservationDetail:
    """A reservation joined with the book it holds."""
    reservation: Reservation
    book: CatalogRecord

    def to_dict(self) -> dict:
        payload = self.book.to_dict()
        payload.update({
            "reservation_id": self.reservation.id,
            "date": self.reservation.start_date.isoformat() if self.reservation.start_date else None,
            "due_date": self.reservation.due_date.isoformat() if self.reservation.due_date else None,
            "extension_count": self.reservation.extension_count,
        })
        return payload
