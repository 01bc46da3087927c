import logging
from datetime import datetime
from typing import Any, Dict, Optional

from lending import database
from lending.models import utcnow
from lending.services.books import BookService
from lending.services.borrows import BorrowService
from lending.services.ratings import RatingService
from lending.services.reservations import ReservationService
from lending.services.token_cache import PasswordTokenService
from lending.services.users import UserService

logger = logging.getLogger(__name__)


class LendingDesk:
    """Single entry point wiring the database and every lending service."""

    def __init__(self, db_file: Optional[str] = None, email_service=None,
                 token_service: Optional[PasswordTokenService] = None) -> None:
        # Modül düzeyindeki yardımcılar database.DATABASE_FILE'ı okur
        if db_file:
            database.DATABASE_FILE = db_file
        database.initialize_database()

        self.books = BookService()
        self.users = UserService(email_service=email_service, token_service=token_service)
        self.reservations = ReservationService()
        self.borrows = BorrowService()
        self.ratings = RatingService()

    @property
    def db_file(self) -> str:
        return database.DATABASE_FILE

    def sweep(self, now: Optional[datetime] = None) -> Dict[str, int]:
        """Run both deadline sweeps with the same clock reading."""
        now = now or utcnow()
        result = {
            "expired_reservations": self.reservations.sweep_expired(now),
            "overdue_borrows": self.borrows.sweep_overdue(now),
        }
        logger.info("Süpürme tamamlandı: %s", result)
        return result

    def statistics(self) -> Dict[str, Any]:
        return self.books.statistics()

    def close(self) -> None:
        """Connections are opened per operation, so there is nothing to release."""
        return None
