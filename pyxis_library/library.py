import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from pyxis_library.database import RecordStore
from pyxis_library.reservations import ReservationManager, ReservationOutcome
from pyxis_library.utils.validators import TextValidator

logger = logging.getLogger(__name__)


@dataclass
class ServiceResponse:
    """Success flag plus either a payload or a human-readable failure reason."""
    success: bool
    message: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"success": self.success}
        if self.message is not None:
            payload["message"] = self.message
        payload.update(self.data)
        return payload

    @classmethod
    def ok(cls, message: Optional[str] = None, **data: Any) -> "ServiceResponse":
        return cls(success=True, message=message, data=data)

    @classmethod
    def fail(cls, message: str, **data: Any) -> "ServiceResponse":
        return cls(success=False, message=message, data=data)


class Library:
    """Request-handling surface over the record store and the reservation manager."""

    def __init__(self, store: RecordStore, reservations: Optional[ReservationManager] = None) -> None:
        self.store = store
        self.reservations = reservations or ReservationManager(store)

    # ------------------------- Catalog ------------------------- #
    def render_all(self) -> ServiceResponse:
        books = [b.to_dict() for b in self.store.render_all()]
        return ServiceResponse.ok(count=len(books), books=books)

    def search(self, query: Optional[str]) -> ServiceResponse:
        query = TextValidator.normalize_query(query)
        if not query:
            return ServiceResponse.fail("A search query is required.")
        logger.info(f"Search request: {query}")
        books = [b.to_dict() for b in self.store.search_by_text(query)]
        return ServiceResponse.ok(count=len(books), books=books)

    def get_book(self, book_id: str) -> ServiceResponse:
        book = self.store.find_by_id(book_id)
        if not book:
            return ServiceResponse.fail("Book not found.")
        return ServiceResponse.ok(book=book.to_dict())

    def list_available(self) -> ServiceResponse:
        books = [b.to_dict() for b in self.store.list_available()]
        return ServiceResponse.ok(count=len(books), books=books)

    # ------------------------- Accounts ------------------------- #
    def signup(self, username: Optional[str], password: Optional[str], nickname: Optional[str]) -> ServiceResponse:
        if not TextValidator.all_present(username, password, nickname):
            return ServiceResponse.fail("All fields are required.")
        user_id = self.store.create_user(username.strip(), password, nickname.strip())
        if user_id is None:
            return ServiceResponse.fail("That username is already taken.")
        return ServiceResponse.ok("Signup complete.", id=user_id)

    def login(self, username: Optional[str], password: Optional[str]) -> ServiceResponse:
        if not TextValidator.all_present(username, password):
            return ServiceResponse.fail("Invalid username or password.")
        user = self.store.find_user(username.strip(), password)
        if not user:
            return ServiceResponse.fail("Invalid username or password.")
        return ServiceResponse.ok(user={"id": user.id, "nickname": user.nickname})

    # ------------------------- Reservations ------------------------- #
    @staticmethod
    def _from_outcome(outcome: ReservationOutcome, success_message: str) -> ServiceResponse:
        if not outcome.success:
            return ServiceResponse.fail(outcome.message, reason=outcome.failure.value)
        return ServiceResponse.ok(success_message, reservation=outcome.reservation.to_dict())

    def reserve(self, user_id, book_id) -> ServiceResponse:
        uid = TextValidator.parse_id(user_id)
        if uid is None:
            return ServiceResponse.fail("A valid user id is required.")
        if TextValidator.is_blank(book_id):
            return ServiceResponse.fail("A book id is required.")
        outcome = self.reservations.reserve(uid, str(book_id).strip())
        return self._from_outcome(outcome, "Reservation complete.")

    def extend(self, reservation_id, user_id) -> ServiceResponse:
        rid, uid = TextValidator.parse_id(reservation_id), TextValidator.parse_id(user_id)
        if rid is None or uid is None:
            return ServiceResponse.fail("Reservation not found.", reason="not_found")
        outcome = self.reservations.extend(rid, uid)
        return self._from_outcome(outcome, f"Due date extended by {self.reservations.loan_period.days} days.")

    def cancel(self, reservation_id, user_id) -> ServiceResponse:
        rid, uid = TextValidator.parse_id(reservation_id), TextValidator.parse_id(user_id)
        if rid is None or uid is None:
            return ServiceResponse.fail("Reservation not found.", reason="not_found")
        outcome = self.reservations.cancel(rid, uid)
        return self._from_outcome(outcome, "Reservation cancelled.")

    def list_reservations(self, user_id) -> ServiceResponse:
        uid = TextValidator.parse_id(user_id)
        if uid is None:
            return ServiceResponse.fail("A valid user id is required.")
        details = self.reservations.list_for_user(uid)
        return ServiceResponse.ok(reservations=[d.to_dict() for d in details])
