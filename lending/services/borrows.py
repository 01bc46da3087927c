import logging
from datetime import datetime, timedelta
from typing import List, Optional

from lending import database
from lending.access import ensure_staff
from lending.config import settings
from lending.errors import (
    AuthorizationError,
    LimitExceededError,
    NotFoundError,
    StateError,
    UnavailableError,
    ValidationError,
)
from lending.inventory import InventoryLedger
from lending.models import Borrow, BorrowStatus, User, utcnow
from lending.repositories import BookRepository, BorrowRepository, UserRepository

logger = logging.getLogger(__name__)


def _load_user(users: UserRepository, user_id: int) -> User:
    user = users.get_by_id(user_id)
    if user is None:
        raise NotFoundError(f"User {user_id} not found.")
    return user


def _load_staff(users: UserRepository, librarian_id: int) -> User:
    librarian = _load_user(users, librarian_id)
    try:
        ensure_staff(librarian)
    except AuthorizationError:
        logger.warning("Personel olmayan kullanıcı %s personel işlemi denedi", librarian_id)
        raise
    return librarian


def open_borrow(
    borrows: BorrowRepository,
    book_id: int,
    user_id: int,
    approved_by: Optional[int],
    borrow_duration: timedelta,
    now: datetime,
    max_active: int,
) -> Borrow:
    """Insert an Active borrow after the per-user limit check.

    Runs on the caller's connection so that the limit check and the insert
    share one transaction. Stock is the caller's business.
    """
    if borrow_duration <= timedelta(0):
        raise ValidationError("Borrow duration must be positive.")
    if borrows.count_active_by_user(user_id) >= max_active:
        raise LimitExceededError(f"User has reached the maximum of {max_active} active borrowed books.")
    borrow = Borrow(
        book_id=book_id,
        user_id=user_id,
        borrowed_at=now,
        due_at=now + borrow_duration,
        status=BorrowStatus.ACTIVE,
        approved_by=approved_by,
    )
    borrows.add(borrow)
    logger.info("Ödünç açıldı: id=%s kitap=%s kullanıcı=%s", borrow.id, book_id, user_id)
    return borrow


class BorrowService:
    """Checked-out copies, from issuance to return."""

    def __init__(self, max_active: Optional[int] = None, borrow_days: Optional[int] = None) -> None:
        self.max_active = max_active if max_active is not None else settings.max_active_borrows
        self.borrow_days = borrow_days if borrow_days is not None else settings.borrow_days

    @property
    def default_duration(self) -> timedelta:
        return timedelta(days=self.borrow_days)

    # ------------------------- Yaşam döngüsü ------------------------- #
    def create_borrow(
        self,
        book_id: int,
        user_id: int,
        librarian_id: int,
        borrow_duration: Optional[timedelta] = None,
        now: Optional[datetime] = None,
    ) -> Borrow:
        """Hand a copy straight over the counter, without a prior reservation."""
        now = now or utcnow()
        with database.transaction() as conn:
            users = UserRepository(conn)
            books = BookRepository(conn)
            _load_staff(users, librarian_id)
            _load_user(users, user_id)
            book = books.get_by_id(book_id)
            if book is None:
                raise NotFoundError(f"Book {book_id} not found.")
            if not book.is_available:
                raise UnavailableError("Book is not available for borrowing.")
            borrow = open_borrow(
                BorrowRepository(conn), book_id, user_id, librarian_id,
                self.default_duration if borrow_duration is None else borrow_duration,
                now, self.max_active,
            )
            InventoryLedger(books).decrement(book)
        return borrow

    def request_return(self, borrow_id: int, user_id: int, now: Optional[datetime] = None) -> Borrow:
        now = now or utcnow()
        with database.transaction() as conn:
            _load_user(UserRepository(conn), user_id)
            borrows = BorrowRepository(conn)
            borrow = borrows.get_by_id(borrow_id)
            if borrow is None:
                raise NotFoundError(f"Borrow record {borrow_id} not found.")
            if borrow.user_id != user_id:
                logger.warning("Kullanıcı %s başkasının ödüncünü (%s) iade etmeye çalıştı", user_id, borrow_id)
                raise AuthorizationError("You can only return your own borrowed books.")
            if borrow.status == BorrowStatus.RETURNED:
                raise StateError("This book has already been returned.")
            borrow.return_requested = True
            borrow.return_requested_at = now
            borrow.status = BorrowStatus.RETURN_REQUESTED
            borrows.update(borrow)
        logger.info("İade talebi: ödünç=%s", borrow_id)
        return borrow

    def accept_return(self, borrow_id: int, librarian_id: int, now: Optional[datetime] = None) -> Borrow:
        now = now or utcnow()
        with database.transaction() as conn:
            _load_staff(UserRepository(conn), librarian_id)
            borrows = BorrowRepository(conn)
            borrow = borrows.get_by_id(borrow_id)
            if borrow is None:
                raise NotFoundError(f"Borrow record {borrow_id} not found.")
            if not borrow.return_requested:
                raise StateError("No return request for this borrow.")
            # İkinci kabul stoğu iki kez artırırdı
            if borrow.status == BorrowStatus.RETURNED:
                raise StateError("This book has already been returned.")
            books = BookRepository(conn)
            book = books.get_by_id(borrow.book_id)
            if book is not None:
                InventoryLedger(books).increment(book)
            borrow.status = BorrowStatus.RETURNED
            borrow.returned_at = now
            borrow.return_accepted_by = librarian_id
            borrows.update(borrow)
        logger.info("İade kabul edildi: ödünç=%s görevli=%s", borrow_id, librarian_id)
        return borrow

    def sweep_overdue(self, now: Optional[datetime] = None) -> int:
        """Mark every Active borrow past its due date as Overdue. Returns the number marked."""
        now = now or utcnow()
        marked = 0
        with database.transaction() as conn:
            borrows = BorrowRepository(conn)
            for borrow in borrows.list_past_due(now):
                if not borrow.is_overdue(now):
                    continue
                borrow.status = BorrowStatus.OVERDUE
                borrows.update(borrow)
                marked += 1
        if marked:
            logger.info("%d ödünç gecikmiş olarak işaretlendi", marked)
        return marked

    # ------------------------- Sorgular ------------------------- #
    def get_borrow(self, borrow_id: int) -> Optional[Borrow]:
        conn = database.get_db_connection()
        try:
            return BorrowRepository(conn).get_by_id(borrow_id)
        finally:
            conn.close()

    def list_for_user(self, user_id: int) -> List[Borrow]:
        conn = database.get_db_connection()
        try:
            return BorrowRepository(conn).list_by_user(user_id)
        finally:
            conn.close()

    def list_active_for_user(self, user_id: int) -> List[Borrow]:
        conn = database.get_db_connection()
        try:
            return BorrowRepository(conn).list_active_by_user(user_id)
        finally:
            conn.close()

    def list_all_active(self) -> List[Borrow]:
        conn = database.get_db_connection()
        try:
            return BorrowRepository(conn).list_all_active()
        finally:
            conn.close()

    def list_return_requests(self) -> List[Borrow]:
        conn = database.get_db_connection()
        try:
            return BorrowRepository(conn).list_return_requests()
        finally:
            conn.close()
