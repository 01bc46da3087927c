from datetime import timedelta

import pytest

from lending.errors import (
    AuthorizationError,
    LimitExceededError,
    NotFoundError,
    StateError,
    UnavailableError,
    ValidationError,
)
from lending.models import BorrowStatus, utcnow


def test_full_lending_flow(desk, make_book, reader, librarian):
    book = make_book(stock=2)

    reservation = desk.reservations.reserve(book.id, reader.id)
    assert desk.books.get_book(book.id).stock == 1

    desk.reservations.request_check_in(reservation.id, reader.id)
    borrow = desk.reservations.accept_check_in(reservation.id, librarian.id)
    assert desk.books.get_book(book.id).stock == 1

    requested = desk.borrows.request_return(borrow.id, reader.id)
    assert requested.status == BorrowStatus.RETURN_REQUESTED
    assert [b.id for b in desk.borrows.list_return_requests()] == [borrow.id]

    returned = desk.borrows.accept_return(borrow.id, librarian.id)
    assert returned.status == BorrowStatus.RETURNED
    assert returned.return_accepted_by == librarian.id
    assert desk.books.get_book(book.id).stock == 2
    assert desk.borrows.list_return_requests() == []


def test_create_borrow_decrements_stock(desk, make_book, reader, librarian):
    book = make_book(stock=1)
    now = utcnow()

    borrow = desk.borrows.create_borrow(book.id, reader.id, librarian.id, now=now)

    assert borrow.due_at == now + timedelta(days=14)
    assert borrow.approved_by == librarian.id
    assert desk.books.get_book(book.id).stock == 0

    with pytest.raises(UnavailableError):
        desk.borrows.create_borrow(book.id, reader.id, librarian.id)


def test_create_borrow_requires_staff(desk, make_book, make_user):
    book = make_book(stock=1)
    a, b = make_user(), make_user()
    with pytest.raises(AuthorizationError):
        desk.borrows.create_borrow(book.id, a.id, b.id)
    assert desk.books.get_book(book.id).stock == 1


def test_create_borrow_missing_entities(desk, make_book, reader, librarian):
    with pytest.raises(NotFoundError):
        desk.borrows.create_borrow(9999, reader.id, librarian.id)
    with pytest.raises(NotFoundError):
        desk.borrows.create_borrow(make_book().id, 9999, librarian.id)


def test_borrow_limit_counts_overdue(desk, make_book, reader, librarian):
    now = utcnow()
    first = desk.borrows.create_borrow(make_book().id, reader.id, librarian.id, now=now - timedelta(days=30))
    desk.borrows.create_borrow(make_book().id, reader.id, librarian.id, now=now)
    desk.borrows.create_borrow(make_book().id, reader.id, librarian.id, now=now)
    assert desk.borrows.sweep_overdue(now) == 1
    assert desk.borrows.get_borrow(first.id).status == BorrowStatus.OVERDUE

    extra = make_book(stock=1)
    with pytest.raises(LimitExceededError):
        desk.borrows.create_borrow(extra.id, reader.id, librarian.id)
    assert desk.books.get_book(extra.id).stock == 1


def test_zero_duration_is_rejected(desk, make_book, reader, librarian):
    with pytest.raises(ValidationError):
        desk.borrows.create_borrow(make_book().id, reader.id, librarian.id, borrow_duration=timedelta(0))


def test_request_return_by_other_user(desk, make_book, make_user, librarian):
    owner, other = make_user(), make_user()
    borrow = desk.borrows.create_borrow(make_book().id, owner.id, librarian.id)
    with pytest.raises(AuthorizationError):
        desk.borrows.request_return(borrow.id, other.id)


def test_accept_return_without_request(desk, make_book, reader, librarian):
    borrow = desk.borrows.create_borrow(make_book().id, reader.id, librarian.id)
    with pytest.raises(StateError):
        desk.borrows.accept_return(borrow.id, librarian.id)


def test_second_accept_return_does_not_restock(desk, make_book, reader, librarian):
    book = make_book(stock=1)
    borrow = desk.borrows.create_borrow(book.id, reader.id, librarian.id)
    desk.borrows.request_return(borrow.id, reader.id)
    desk.borrows.accept_return(borrow.id, librarian.id)

    with pytest.raises(StateError):
        desk.borrows.accept_return(borrow.id, librarian.id)
    with pytest.raises(StateError):
        desk.borrows.request_return(borrow.id, reader.id)
    assert desk.books.get_book(book.id).stock == 1


def test_overdue_borrow_can_be_returned(desk, make_book, reader, librarian):
    now = utcnow()
    book = make_book(stock=1)
    borrow = desk.borrows.create_borrow(book.id, reader.id, librarian.id, now=now - timedelta(days=20))
    desk.borrows.sweep_overdue(now)

    desk.borrows.request_return(borrow.id, reader.id, now=now)
    returned = desk.borrows.accept_return(borrow.id, librarian.id, now=now)

    assert returned.returned_at == now
    assert desk.books.get_book(book.id).stock == 1


def test_sweep_overdue_only_touches_active(desk, make_book, reader, librarian):
    now = utcnow()
    late = desk.borrows.create_borrow(make_book().id, reader.id, librarian.id, now=now - timedelta(days=15))
    requested = desk.borrows.create_borrow(make_book().id, reader.id, librarian.id, now=now - timedelta(days=15))
    desk.borrows.request_return(requested.id, reader.id, now=now - timedelta(days=1))

    assert desk.borrows.sweep_overdue(now) == 1
    assert desk.borrows.sweep_overdue(now) == 0
    assert desk.borrows.get_borrow(late.id).status == BorrowStatus.OVERDUE
    assert desk.borrows.get_borrow(requested.id).status == BorrowStatus.RETURN_REQUESTED


def test_active_listing_includes_overdue(desk, make_book, reader, librarian):
    now = utcnow()
    desk.borrows.create_borrow(make_book().id, reader.id, librarian.id, now=now - timedelta(days=15))
    desk.borrows.create_borrow(make_book().id, reader.id, librarian.id, now=now)
    desk.borrows.sweep_overdue(now)

    statuses = sorted(b.status.value for b in desk.borrows.list_active_for_user(reader.id))
    assert statuses == ["Active", "Overdue"]
    assert len(desk.borrows.list_all_active()) == 2
