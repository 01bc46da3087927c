import logging

from lending.errors import ValidationError
from lending.models import Book
from lending.repositories import BookRepository

logger = logging.getLogger(__name__)


class InventoryLedger:
    """Keeps ``Book.stock`` in step with outstanding holds.

    The ledger has no storage of its own: it mutates the book row through the
    repository it was given, inside whatever transaction that repository's
    connection belongs to.
    """

    def __init__(self, books: BookRepository) -> None:
        self.books = books

    def decrement(self, book: Book) -> Book:
        """Take one copy off the shelf. Raises ValidationError instead of going negative."""
        if book.stock - 1 < 0:
            raise ValidationError(f"Stock of book {book.id} cannot go below zero.")
        book.stock -= 1
        self.books.set_stock(book.id, book.stock)
        logger.debug("Stok azaltıldı: kitap=%s stok=%s", book.id, book.stock)
        return book

    def increment(self, book: Book) -> Book:
        """Put one copy back (cancellation, expiry or return)."""
        book.stock += 1
        self.books.set_stock(book.id, book.stock)
        logger.debug("Stok artırıldı: kitap=%s stok=%s", book.id, book.stock)
        return book
