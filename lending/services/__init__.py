"""Lending services: each operation runs in its own database transaction."""

from lending.services.books import BookService
from lending.services.borrows import BorrowService
from lending.services.notifications import LogEmailService, SmtpEmailService
from lending.services.ratings import RatingService
from lending.services.reservations import ReservationService
from lending.services.token_cache import PasswordTokenService, TokenCache
from lending.services.users import UserService

__all__ = [
    "BookService",
    "BorrowService",
    "LogEmailService",
    "PasswordTokenService",
    "RatingService",
    "ReservationService",
    "SmtpEmailService",
    "TokenCache",
    "UserService",
]
