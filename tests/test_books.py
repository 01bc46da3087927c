import sqlite3
from datetime import timedelta

import pytest

from lending.errors import ConflictError, NotFoundError, ValidationError
from lending.models import Book, utcnow


def test_add_book_normalizes_isbn(desk):
    book = desk.books.add_book(Book("Ulysses", "James Joyce", "978-0-19-953567-5", stock=2))

    assert book.id is not None
    assert book.isbn == "9780199535675"
    assert desk.books.find_by_isbn("978 0199535675").title == "Ulysses"


def test_add_duplicate_isbn(desk):
    desk.books.add_book(Book("Test Book", "Test Author", "1234567890"))
    with pytest.raises(ConflictError, match="1234567890"):
        desk.books.add_book(Book("Other", "Someone", "123-456-7890"))
    assert len(desk.books.list_books()) == 1


@pytest.mark.parametrize(
    "book",
    [
        Book("Negative", "Author", "111", stock=-1),
        Book("", "Author", "222"),
        Book("Title", "  ", "333"),
        Book("Title", "Author", "--"),
    ],
)
def test_add_book_validation(desk, book):
    with pytest.raises(ValidationError):
        desk.books.add_book(book)


def test_update_book(desk, make_book):
    book = make_book(stock=1)
    updated = desk.books.update_book(book.id, title="New Title", stock=5, category="Novel")

    assert updated.title == "New Title"
    stored = desk.books.get_book(book.id)
    assert (stored.title, stored.stock, stored.category) == ("New Title", 5, "Novel")


def test_update_book_errors(desk, make_book):
    first, second = make_book(), make_book()
    with pytest.raises(NotFoundError):
        desk.books.update_book(9999, title="x")
    with pytest.raises(ConflictError):
        desk.books.update_book(second.id, isbn=first.isbn)
    with pytest.raises(ValidationError):
        desk.books.update_book(first.id, stock=-2)
    with pytest.raises(ValidationError):
        desk.books.update_book(first.id, rating=5)


def test_delete_book(desk, make_book):
    book = make_book()
    assert desk.books.delete_book(book.id) is True
    assert desk.books.delete_book(book.id) is False
    assert desk.books.get_book(book.id) is None


def test_delete_book_with_history_propagates(desk, make_book, reader):
    book = make_book(stock=1)
    desk.reservations.reserve(book.id, reader.id)
    with pytest.raises(sqlite3.IntegrityError):
        desk.books.delete_book(book.id)
    assert desk.books.get_book(book.id) is not None


def test_list_books_sort_orders(desk):
    now = utcnow()
    desk.books.add_book(Book("beta", "A", "1", created_at=now - timedelta(days=2)))
    desk.books.add_book(Book("Alpha", "B", "2", created_at=now - timedelta(days=1)))
    desk.books.add_book(Book("Gamma", "C", "3", created_at=now))

    assert [b.title for b in desk.books.list_books("title")] == ["Alpha", "beta", "Gamma"]
    assert [b.title for b in desk.books.list_books("new")] == ["Gamma", "Alpha", "beta"]
    with pytest.raises(ValidationError):
        desk.books.list_books("price")


def test_search_books(desk):
    desk.books.add_book(Book("Clean Code", "Robert C. Martin", "9780132350884", category="Software"))
    desk.books.add_book(Book("Dune", "Frank Herbert", "9780441013593", category="Fiction"))

    assert [b.title for b in desk.books.search_books("clean")] == ["Clean Code"]
    assert [b.title for b in desk.books.search_books("herbert")] == ["Dune"]
    assert [b.title for b in desk.books.search_books("fiction")] == ["Dune"]
    assert [b.title for b in desk.books.search_books("0132350884")] == ["Clean Code"]
    assert len(desk.books.search_books("  ")) == 2


def test_statistics(desk, make_book, reader):
    make_book(stock=2, author="Same")
    book = make_book(stock=1, author="Same")
    make_book(stock=0, author="Other", is_active=False)
    desk.reservations.reserve(book.id, reader.id)

    stats = desk.statistics()

    assert stats["total_books"] == 3
    assert stats["active_books"] == 2
    assert stats["total_stock"] == 2
    assert stats["unique_authors"] == 2
    assert stats["active_reservations"] == 1
    assert stats["active_borrows"] == 0
    assert stats["overdue_borrows"] == 0


def test_filter_by_category(desk, make_book):
    make_book(title="Dune", category="Fiction")
    make_book(title="Emma", category=" fiction ")
    make_book(title="Clean Code", category="Software")

    assert [b.title for b in desk.books.list_books(category="FICTION")] == ["Dune", "Emma"]
    assert desk.books.list_books(category="Poetry") == []
    assert len(desk.books.list_books(category="  ")) == 3


def test_search_combines_category_and_sort(desk, make_book, make_user):
    low = make_book(title="Alpha Saga", category="Fiction")
    high = make_book(title="Beta Saga", category="Fiction")
    make_book(title="Gamma Saga", category="History")
    desk.ratings.rate(low.id, make_user().id, 2)
    desk.ratings.rate(high.id, make_user().id, 5)

    by_rating = desk.books.search_books("saga", sort="rating", category="fiction")
    assert [b.title for b in by_rating] == ["Beta Saga", "Alpha Saga"]
    assert [b.title for b in desk.books.search_books("saga", sort="title")] == [
        "Alpha Saga",
        "Beta Saga",
        "Gamma Saga",
    ]
    with pytest.raises(ValidationError):
        desk.books.search_books("saga", sort="price")


def test_categories(desk, make_book):
    assert desk.books.categories() == []
    make_book(category="Software")
    make_book(category="Fiction")
    make_book(category="Fiction")
    make_book(category="")

    assert desk.books.categories() == ["Fiction", "Software"]


def test_update_clears_cover_and_category(desk, make_book):
    book = make_book(category="Fiction")
    desk.books.update_book(book.id, cover_url="/covers/1.jpg")

    updated = desk.books.update_book(book.id, cover_url=None, category=None)

    assert updated.cover_url is None
    stored = desk.books.get_book(book.id)
    assert (stored.cover_url, stored.category, stored.title) == (None, "", book.title)


def test_update_rejects_clearing_required_fields(desk, make_book):
    book = make_book(stock=2)
    with pytest.raises(ValidationError, match="stock"):
        desk.books.update_book(book.id, stock=None)
    assert desk.books.get_book(book.id).stock == 2


def test_remove_cover(desk, make_book):
    book = make_book()
    desk.books.update_book(book.id, cover_url="/covers/2.jpg")

    assert desk.books.remove_cover(book.id).cover_url is None
    assert desk.books.get_book(book.id).cover_url is None
    with pytest.raises(NotFoundError):
        desk.books.remove_cover(9999)
