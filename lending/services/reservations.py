import logging
from datetime import datetime, timedelta
from typing import List, Optional

from lending import database
from lending.config import settings
from lending.errors import (
    AuthorizationError,
    ConflictError,
    ExpiredError,
    LimitExceededError,
    NotFoundError,
    StateError,
    UnavailableError,
    ValidationError,
)
from lending.inventory import InventoryLedger
from lending.models import Borrow, Reservation, ReservationStatus, utcnow
from lending.repositories import (
    BookRepository,
    BorrowRepository,
    ReservationRepository,
    UserRepository,
)
from lending.services.borrows import _load_staff, _load_user, open_borrow

logger = logging.getLogger(__name__)


class ReservationService:
    """Rezervasyon yaşam döngüsü: Active -> CheckedIn / Expired / Cancelled.

    Her değiştirici işlem tek bir BEGIN IMMEDIATE işlemi içinde çalışır;
    uygunluk kontrolü ile ekleme arasında başka bir yazar araya giremez.
    """

    def __init__(
        self,
        max_active: Optional[int] = None,
        hold_hours: Optional[int] = None,
        max_active_borrows: Optional[int] = None,
        borrow_days: Optional[int] = None,
    ) -> None:
        self.max_active = max_active if max_active is not None else settings.max_active_reservations
        self.hold_hours = hold_hours if hold_hours is not None else settings.reservation_hold_hours
        self.max_active_borrows = (
            max_active_borrows if max_active_borrows is not None else settings.max_active_borrows
        )
        self.borrow_days = borrow_days if borrow_days is not None else settings.borrow_days

    # ------------------------- Yaşam döngüsü ------------------------- #
    def reserve(
        self,
        book_id: int,
        user_id: int,
        hold_duration: Optional[timedelta] = None,
        now: Optional[datetime] = None,
    ) -> Reservation:
        """Bir kullanıcı için kitabın bir kopyasını ayırır ve stoğu bir azaltır."""
        now = now or utcnow()
        hold_duration = timedelta(hours=self.hold_hours) if hold_duration is None else hold_duration
        if hold_duration <= timedelta(0):
            raise ValidationError("Reservation hold duration must be positive.")

        with database.transaction() as conn:
            books = BookRepository(conn)
            reservations = ReservationRepository(conn)

            _load_user(UserRepository(conn), user_id)
            book = books.get_by_id(book_id)
            if book is None:
                raise NotFoundError(f"Book {book_id} not found.")

            # Sistem genelinde kitap başına tek aktif rezervasyon; stoktan önce bakılır
            if reservations.has_active_for_book(book_id):
                raise ConflictError("This book is already reserved by another user.")

            if not book.is_available:
                raise UnavailableError("Book is not available for reservation.")

            if reservations.count_active_by_user(user_id) >= self.max_active:
                raise LimitExceededError(
                    f"You can only have a maximum of {self.max_active} active reservations."
                )

            reservation = reservations.add(
                Reservation(
                    book_id=book_id,
                    user_id=user_id,
                    reserved_at=now,
                    expires_at=now + hold_duration,
                    status=ReservationStatus.ACTIVE,
                )
            )
            InventoryLedger(books).decrement(book)

        logger.info(
            "Rezervasyon oluşturuldu: id=%s kitap=%s kullanıcı=%s bitiş=%s",
            reservation.id, book_id, user_id, reservation.expires_at.isoformat(),
        )
        return reservation

    def request_check_in(
        self, reservation_id: int, user_id: int, now: Optional[datetime] = None
    ) -> Reservation:
        """Kullanıcı kitabı teslim almak istediğini bildirir.

        Süresi geçmiş bir rezervasyon burada Expired durumuna çekilir, stok
        geri verilir ve bu değişiklik kaydedildikten sonra ExpiredError fırlatılır.
        """
        now = now or utcnow()
        expired = False
        with database.transaction() as conn:
            reservations = ReservationRepository(conn)
            reservation = self._load_owned(conn, reservations, reservation_id, user_id, "check-in")

            if reservation.is_expired(now):
                self._expire(conn, reservations, reservation)
                expired = True
            else:
                reservation.check_in_requested = True
                reservation.check_in_requested_at = now
                reservations.update(reservation)

        # İşlem commit edildikten sonra: süre dolumu kalıcı olmalı
        if expired:
            raise ExpiredError("This reservation has expired.")

        logger.info("Teslim alma talebi: rezervasyon=%s", reservation_id)
        return reservation

    def accept_check_in(
        self,
        reservation_id: int,
        librarian_id: int,
        borrow_duration: Optional[timedelta] = None,
        now: Optional[datetime] = None,
    ) -> Borrow:
        """Görevli teslimi onaylar; rezervasyon ödünce dönüşür.

        Kopya "ayrılmış" durumdan "ödünçte" durumuna geçer, stok değişmez.
        Kullanıcı ödünç sınırındaysa işlemin tamamı geri alınır.
        """
        now = now or utcnow()
        borrow_duration = timedelta(days=self.borrow_days) if borrow_duration is None else borrow_duration

        with database.transaction() as conn:
            _load_staff(UserRepository(conn), librarian_id)
            reservations = ReservationRepository(conn)
            reservation = reservations.get_by_id(reservation_id)
            if reservation is None:
                raise NotFoundError(f"Reservation {reservation_id} not found.")
            if not reservation.check_in_requested:
                raise StateError("No check-in request for this reservation.")
            if reservation.status != ReservationStatus.ACTIVE:
                raise StateError("This reservation is not active.")

            borrow = open_borrow(
                BorrowRepository(conn),
                reservation.book_id,
                reservation.user_id,
                librarian_id,
                borrow_duration,
                now,
                self.max_active_borrows,
            )

            reservation.status = ReservationStatus.CHECKED_IN
            reservation.checked_in_at = now
            reservations.update(reservation)

        logger.info(
            "Teslim onaylandı: rezervasyon=%s ödünç=%s görevli=%s",
            reservation_id, borrow.id, librarian_id,
        )
        return borrow

    def cancel(self, reservation_id: int, user_id: int, now: Optional[datetime] = None) -> Reservation:
        with database.transaction() as conn:
            reservations = ReservationRepository(conn)
            reservation = self._load_owned(conn, reservations, reservation_id, user_id, "cancel")

            books = BookRepository(conn)
            book = books.get_by_id(reservation.book_id)
            if book is not None:
                InventoryLedger(books).increment(book)

            reservation.status = ReservationStatus.CANCELLED
            reservations.update(reservation)

        logger.info("Rezervasyon iptal edildi: id=%s", reservation_id)
        return reservation

    def sweep_expired(self, now: Optional[datetime] = None) -> int:
        """Süresi dolan aktif rezervasyonları Expired yapar ve stoğu geri verir.

        Tekrar tekrar çalıştırılabilir; yalnızca hâlâ Active olan kayıtlara dokunur.
        """
        now = now or utcnow()
        expired = 0
        with database.transaction() as conn:
            reservations = ReservationRepository(conn)
            for reservation in reservations.list_expired_active(now):
                self._expire(conn, reservations, reservation)
                expired += 1
        if expired:
            logger.info("%d rezervasyonun süresi doldu", expired)
        return expired

    # ------------------------- Sorgular ------------------------- #
    def get_reservation(self, reservation_id: int) -> Optional[Reservation]:
        conn = database.get_db_connection()
        try:
            return ReservationRepository(conn).get_by_id(reservation_id)
        finally:
            conn.close()

    def list_for_user(self, user_id: int) -> List[Reservation]:
        conn = database.get_db_connection()
        try:
            return ReservationRepository(conn).list_by_user(user_id)
        finally:
            conn.close()

    def list_active_for_user(self, user_id: int) -> List[Reservation]:
        conn = database.get_db_connection()
        try:
            return ReservationRepository(conn).list_active_by_user(user_id)
        finally:
            conn.close()

    def list_all_active(self) -> List[Reservation]:
        conn = database.get_db_connection()
        try:
            return ReservationRepository(conn).list_all_active()
        finally:
            conn.close()

    def list_check_in_requests(self) -> List[Reservation]:
        conn = database.get_db_connection()
        try:
            return ReservationRepository(conn).list_check_in_requests()
        finally:
            conn.close()

    # ------------------------- Yardımcılar ------------------------- #
    @staticmethod
    def _load_owned(conn, reservations: ReservationRepository, reservation_id: int, user_id: int, action: str) -> Reservation:
        _load_user(UserRepository(conn), user_id)
        reservation = reservations.get_by_id(reservation_id)
        if reservation is None:
            raise NotFoundError(f"Reservation {reservation_id} not found.")
        if reservation.user_id != user_id:
            logger.warning(
                "Kullanıcı %s başkasının rezervasyonunu (%s) değiştirmeye çalıştı", user_id, reservation_id
            )
            raise AuthorizationError(f"You can only {action} your own reservations.")
        if reservation.status != ReservationStatus.ACTIVE:
            raise StateError("This reservation is not active.")
        return reservation

    @staticmethod
    def _expire(conn, reservations: ReservationRepository, reservation: Reservation) -> None:
        books = BookRepository(conn)
        book = books.get_by_id(reservation.book_id)
        if book is not None:
            InventoryLedger(books).increment(book)
        reservation.status = ReservationStatus.EXPIRED
        reservations.update(reservation)
