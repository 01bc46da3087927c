import logging
import math
from datetime import datetime
from typing import List, Optional

from lending import database
from lending.access import can_rate
from lending.errors import AuthorizationError, NotFoundError, ValidationError
from lending.models import Book, Rating, utcnow
from lending.repositories import BookRepository, RatingRepository, UserRepository

logger = logging.getLogger(__name__)

MIN_RATING = 0.0
MAX_RATING = 5.0


class RatingService:
    """Per-user book ratings and the stored mean/count on each book."""

    def rate(self, book_id: int, user_id: int, value: float, now: Optional[datetime] = None) -> Book:
        """Upsert the user's rating and recompute the book aggregate.

        The mean is recomputed from every rating row of the book rather than
        adjusted incrementally, so re-rating never skews it. Returns the
        updated Book.
        """
        try:
            value = float(value)
        except (TypeError, ValueError):
            raise ValidationError("Rating must be a number.")
        if math.isnan(value) or not MIN_RATING <= value <= MAX_RATING:
            raise ValidationError("Rating must be between 0 and 5.")

        now = now or utcnow()
        with database.transaction() as conn:
            books = BookRepository(conn)
            ratings = RatingRepository(conn)

            book = books.get_by_id(book_id)
            if book is None:
                raise NotFoundError(f"Book {book_id} not found.")
            user = UserRepository(conn).get_by_id(user_id)
            if user is None:
                raise NotFoundError(f"User {user_id} not found.")
            if not can_rate(user.role):
                logger.warning("Puanlama yetkisi olmayan kullanıcı %s (%s)", user_id, user.role.value)
                raise AuthorizationError("Only readers can rate books.")

            ratings.upsert(Rating(book_id=book_id, user_id=user_id, value=value, created_at=now, updated_at=now))
            mean, count = ratings.aggregate_for_book(book_id)
            books.set_rating(book_id, mean, count)
            book.rating = mean
            book.rating_count = count

        logger.info("Puan kaydedildi: kitap=%s kullanıcı=%s değer=%s ortalama=%.2f", book_id, user_id, value, mean)
        return book

    def get_user_rating(self, book_id: int, user_id: int) -> Optional[Rating]:
        conn = database.get_db_connection()
        try:
            return RatingRepository(conn).get_by_book_and_user(book_id, user_id)
        finally:
            conn.close()

    def list_for_book(self, book_id: int) -> List[Rating]:
        conn = database.get_db_connection()
        try:
            return RatingRepository(conn).list_for_book(book_id)
        finally:
            conn.close()
