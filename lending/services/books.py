import logging
from typing import Any, Dict, List, Optional

from lending import database
from lending.errors import ConflictError, NotFoundError, ValidationError
from lending.models import Book, BorrowStatus, utcnow
from lending.repositories import BookRepository, BorrowRepository, ReservationRepository

logger = logging.getLogger(__name__)

# Kullanıcıdan gelen sıralama anahtarı -> SQL ORDER BY ifadesi
SORT_ORDERS = {
    "title": "title COLLATE NOCASE",
    "new": "created_at DESC, id DESC",
    "rating": "rating DESC, rating_count DESC, title COLLATE NOCASE",
}

_EDITABLE_FIELDS = ("title", "author", "isbn", "stock", "is_active", "category", "cover_url")

# None ile temizlenebilen alanlar ve temizlenince aldıkları değer
_CLEARED_VALUES = {"cover_url": None, "category": ""}


class BookService:
    """Manages the catalog: adding, editing, removing and listing books."""

    # ------------------------- Core operations ------------------------- #
    def add_book(self, book: Book) -> Book:
        """Add a pre-constructed Book. Prevent duplicates by ISBN."""
        book.isbn = self._normalize_isbn(book.isbn)
        self._validate(book)
        if book.created_at is None:
            book.created_at = utcnow()

        with database.transaction() as conn:
            books = BookRepository(conn)
            if books.get_by_isbn(book.isbn) is not None:
                raise ConflictError(f"A book with ISBN {book.isbn} already exists.")
            books.add(book)

        logger.info("Kitap eklendi: id=%s isbn=%s", book.id, book.isbn)
        return book

    def update_book(self, book_id: int, **fields: Any) -> Book:
        """Update the given fields of a book. Unknown field names are rejected.

        Passing ``None`` clears a clearable field (``cover_url``, ``category``);
        fields that are not passed keep their current value.
        """
        unknown = set(fields) - set(_EDITABLE_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown book fields: {', '.join(sorted(unknown))}")
        required = sorted(name for name, value in fields.items() if value is None and name not in _CLEARED_VALUES)
        if required:
            raise ValidationError(f"Book fields cannot be cleared: {', '.join(required)}")

        with database.transaction() as conn:
            books = BookRepository(conn)
            book = books.get_by_id(book_id)
            if book is None:
                raise NotFoundError(f"Book {book_id} not found.")

            for name, value in fields.items():
                setattr(book, name, _CLEARED_VALUES[name] if value is None else value)
            book.isbn = self._normalize_isbn(book.isbn)
            self._validate(book)

            other = books.get_by_isbn(book.isbn)
            if other is not None and other.id != book.id:
                raise ConflictError(f"A book with ISBN {book.isbn} already exists.")
            books.update(book)

        logger.info("Kitap güncellendi: id=%s alanlar=%s", book_id, ",".join(sorted(fields)))
        return book

    def remove_cover(self, book_id: int) -> Book:
        """Drop the cover image; listings fall back to the placeholder."""
        return self.update_book(book_id, cover_url=None)

    def delete_book(self, book_id: int) -> bool:
        """Hard delete. Returns False if the book does not exist.

        A book with reservation or borrow history is still referenced by those
        rows; the resulting sqlite3.IntegrityError is left to the caller.
        """
        with database.transaction() as conn:
            deleted = BookRepository(conn).delete(book_id)
        if deleted:
            logger.info("Kitap silindi: id=%s", book_id)
        return deleted

    # ------------------------- Queries ------------------------- #
    def get_book(self, book_id: int) -> Optional[Book]:
        conn = database.get_db_connection()
        try:
            return BookRepository(conn).get_by_id(book_id)
        finally:
            conn.close()

    def find_by_isbn(self, isbn: str) -> Optional[Book]:
        conn = database.get_db_connection()
        try:
            return BookRepository(conn).get_by_isbn(self._normalize_isbn(isbn))
        finally:
            conn.close()

    def list_books(self, sort: str = "title", category: Optional[str] = None) -> List[Book]:
        return self.search_books(None, sort=sort, category=category)

    def search_books(
        self, term: Optional[str], sort: str = "title", category: Optional[str] = None
    ) -> List[Book]:
        """Search by title, author, ISBN or category, optionally narrowed to one category.

        A blank term matches everything; results follow ``sort`` either way.
        """
        order_by = SORT_ORDERS.get(sort)
        if order_by is None:
            raise ValidationError(f"Unknown sort order '{sort}'. Use one of: {', '.join(SORT_ORDERS)}")
        term = (term or "").strip()
        category = (category or "").strip()
        conn = database.get_db_connection()
        try:
            return BookRepository(conn).search(term or None, order_by, category or None)
        finally:
            conn.close()

    def categories(self) -> List[str]:
        """Distinct non-blank categories in alphabetical order."""
        conn = database.get_db_connection()
        try:
            return BookRepository(conn).categories()
        finally:
            conn.close()

    def top_rated(self, count: int = 10) -> List[Book]:
        if count <= 0:
            raise ValidationError("Count must be positive.")
        conn = database.get_db_connection()
        try:
            return BookRepository(conn).top_rated(count)
        finally:
            conn.close()

    def statistics(self) -> Dict[str, Any]:
        """Catalog totals plus outstanding reservations and borrows."""
        conn = database.get_db_connection()
        try:
            stats = BookRepository(conn).statistics()
            borrows = BorrowRepository(conn)
            stats["active_reservations"] = ReservationRepository(conn).count_all_active()
            stats["active_borrows"] = borrows.count_by_status(BorrowStatus.ACTIVE)
            stats["overdue_borrows"] = borrows.count_by_status(BorrowStatus.OVERDUE)
            return stats
        finally:
            conn.close()

    # ------------------------- Utilities ------------------------- #
    @staticmethod
    def _normalize_isbn(raw: Optional[str]) -> str:
        if raw is None:
            return ""
        cleaned = "".join(ch for ch in raw if ch.isalnum())
        return cleaned.upper()

    @staticmethod
    def _validate(book: Book) -> None:
        if not book.isbn:
            raise ValidationError("ISBN cannot be empty.")
        if not (book.title or "").strip():
            raise ValidationError("Title cannot be empty.")
        if not (book.author or "").strip():
            raise ValidationError("Author cannot be empty.")
        if book.stock < 0:
            raise ValidationError("Stock cannot be negative.")
        book.title = book.title.strip()
        book.author = book.author.strip()
