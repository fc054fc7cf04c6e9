from datetime import date

import pytest

from pyxis_library.library import Library
from pyxis_library.reservations import ReservationManager


@pytest.fixture
def lib(store):
    return Library(store, ReservationManager(store, today=lambda: date(2024, 1, 1)))


def test_render_and_search(lib, store, make_record):
    store.upsert_records([make_record("1", title="Learning Python"), make_record("2", title="Databases")])

    rendered = lib.render_all()
    assert rendered.success and rendered.data["count"] == 2

    found = lib.search("  python ")
    assert found.to_dict()["count"] == 1
    assert found.data["books"][0]["id"] == "1"


def test_search_requires_query(lib):
    result = lib.search("   ")
    assert not result.success
    assert result.message == "A search query is required."


def test_get_book(lib, store, make_record):
    store.upsert_records([make_record("1", title="Ulysses")])

    assert lib.get_book("1").data["book"]["title"] == "Ulysses"
    missing = lib.get_book("2")
    assert not missing.success
    assert missing.message == "Book not found."


def test_signup_and_login(lib):
    assert lib.signup("alice", "pw", "Alice").success

    duplicate = lib.signup("alice", "pw2", "Again")
    assert not duplicate.success
    assert "taken" in duplicate.message

    login = lib.login("alice", "pw")
    assert login.success
    assert login.data["user"]["nickname"] == "Alice"
    assert set(login.data["user"]) == {"id", "nickname"}

    assert not lib.login("alice", "nope").success


def test_signup_requires_all_fields(lib):
    result = lib.signup("bob", "", "Bob")
    assert not result.success
    assert result.to_dict() == {"success": False, "message": "All fields are required."}


def test_reservation_flow_through_facade(lib, store, make_record):
    store.upsert_records([make_record("A", title="Dune")])
    user_id = lib.signup("alice", "pw", "Alice").data["id"]

    reserved = lib.reserve(str(user_id), "A")
    assert reserved.success
    reservation = reserved.data["reservation"]
    assert reservation["due_date"] == "2024-01-08"

    listed = lib.list_reservations(user_id)
    assert listed.data["reservations"][0]["title"] == "Dune"

    assert lib.extend(reservation["id"], user_id).data["reservation"]["due_date"] == "2024-01-15"
    second = lib.extend(reservation["id"], user_id)
    assert second.to_dict()["reason"] == "already_extended"
    assert second.message == "A reservation can only be extended once."

    assert lib.cancel(reservation["id"], user_id).success
    assert lib.list_reservations(user_id).data["reservations"] == []


def test_reserve_validates_ids(lib):
    assert lib.reserve(None, "A").message == "A valid user id is required."
    assert lib.reserve("abc", "A").message == "A valid user id is required."
    assert lib.reserve(1, " ").message == "A book id is required."
    assert lib.extend("x", 1).data["reason"] == "not_found"
    assert lib.cancel(1, None).data["reason"] == "not_found"
