"""SQL repositories, one per entity.

Every repository wraps a connection handed in by the caller; none of them
commits. The service that opened the transaction decides when the unit of
work ends.
"""

from __future__ import annotations

import sqlite3
from datetime import datetime
from typing import List, Optional, Tuple

from lending.models import (
    Book,
    Borrow,
    BorrowStatus,
    Rating,
    Reservation,
    ReservationStatus,
    Role,
    User,
    to_iso,
)

BOOK_COLUMNS = (
    "id, title, author, isbn, stock, is_active, category, cover_url, "
    "rating, rating_count, created_at"
)

_OPEN_BORROW_STATES = (BorrowStatus.ACTIVE.value, BorrowStatus.OVERDUE.value)


class BookRepository:
    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn

    def add(self, book: Book) -> Book:
        cursor = self.conn.execute(
            """
            INSERT INTO books (title, author, isbn, stock, is_active, category,
                               cover_url, rating, rating_count, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                book.title, book.author, book.isbn, book.stock, int(book.is_active),
                book.category, book.cover_url, book.rating, book.rating_count,
                to_iso(book.created_at),
            ),
        )
        book.id = cursor.lastrowid
        return book

    def update(self, book: Book) -> None:
        self.conn.execute(
            """
            UPDATE books
               SET title = ?, author = ?, isbn = ?, stock = ?, is_active = ?,
                   category = ?, cover_url = ?
             WHERE id = ?
            """,
            (
                book.title, book.author, book.isbn, book.stock, int(book.is_active),
                book.category, book.cover_url, book.id,
            ),
        )

    def set_stock(self, book_id: int, stock: int) -> None:
        self.conn.execute("UPDATE books SET stock = ? WHERE id = ?", (stock, book_id))

    def set_rating(self, book_id: int, rating: float, rating_count: int) -> None:
        self.conn.execute(
            "UPDATE books SET rating = ?, rating_count = ? WHERE id = ?",
            (rating, rating_count, book_id),
        )

    def delete(self, book_id: int) -> bool:
        cursor = self.conn.execute("DELETE FROM books WHERE id = ?", (book_id,))
        return cursor.rowcount > 0

    def get_by_id(self, book_id: int) -> Optional[Book]:
        row = self.conn.execute(
            f"SELECT {BOOK_COLUMNS} FROM books WHERE id = ?", (book_id,)
        ).fetchone()
        return Book.from_dict(dict(row)) if row else None

    def get_by_isbn(self, isbn: str) -> Optional[Book]:
        row = self.conn.execute(
            f"SELECT {BOOK_COLUMNS} FROM books WHERE isbn = ?", (isbn,)
        ).fetchone()
        return Book.from_dict(dict(row)) if row else None

    def search(
        self,
        term: Optional[str],
        order_by: str = "title COLLATE NOCASE",
        category: Optional[str] = None,
    ) -> List[Book]:
        clauses, params = [], []
        if term:
            pattern = f"%{term}%"
            clauses.append("(title LIKE ? OR author LIKE ? OR isbn LIKE ? OR category LIKE ?)")
            params.extend([pattern] * 4)
        if category:
            clauses.append("LOWER(TRIM(COALESCE(category, ''))) = LOWER(?)")
            params.append(category.strip())
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        # order_by yalnızca BookService içindeki sabit eşlemeden gelir
        rows = self.conn.execute(
            f"SELECT {BOOK_COLUMNS} FROM books {where} ORDER BY {order_by}", params
        ).fetchall()
        return [Book.from_dict(dict(row)) for row in rows]

    def categories(self) -> List[str]:
        rows = self.conn.execute(
            """
            SELECT DISTINCT TRIM(category) AS category FROM books
             WHERE TRIM(COALESCE(category, '')) != ''
             ORDER BY category
            """
        ).fetchall()
        return [row["category"] for row in rows]

    def top_rated(self, count: int) -> List[Book]:
        rows = self.conn.execute(
            f"""
            SELECT {BOOK_COLUMNS} FROM books
             WHERE is_active = 1
             ORDER BY rating DESC, rating_count DESC, title COLLATE NOCASE
             LIMIT ?
            """,
            (count,),
        ).fetchall()
        return [Book.from_dict(dict(row)) for row in rows]

    def count(self) -> int:
        return self.conn.execute("SELECT COUNT(*) FROM books").fetchone()[0]

    def statistics(self) -> dict:
        row = self.conn.execute(
            """
            SELECT COUNT(*) AS total_books,
                   COALESCE(SUM(is_active), 0) AS active_books,
                   COALESCE(SUM(stock), 0) AS total_stock,
                   COUNT(DISTINCT author) AS unique_authors
              FROM books
            """
        ).fetchone()
        return dict(row)


class UserRepository:
    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn

    def add(self, user: User) -> User:
        cursor = self.conn.execute(
            """
            INSERT INTO users (username, email, password_hash, role, is_active, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                user.username, user.email, user.password_hash, user.role.value,
                int(user.is_active), to_iso(user.created_at),
            ),
        )
        user.id = cursor.lastrowid
        return user

    def update(self, user: User) -> None:
        self.conn.execute(
            """
            UPDATE users
               SET username = ?, email = ?, password_hash = ?, role = ?, is_active = ?
             WHERE id = ?
            """,
            (user.username, user.email, user.password_hash, user.role.value, int(user.is_active), user.id),
        )

    def get_by_id(self, user_id: int) -> Optional[User]:
        row = self.conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        return User.from_dict(dict(row)) if row else None

    def get_by_email(self, email: str) -> Optional[User]:
        row = self.conn.execute(
            "SELECT * FROM users WHERE email = ? COLLATE NOCASE", (email.strip(),)
        ).fetchone()
        return User.from_dict(dict(row)) if row else None

    def get_by_username(self, username: str) -> Optional[User]:
        row = self.conn.execute("SELECT * FROM users WHERE username = ?", (username,)).fetchone()
        return User.from_dict(dict(row)) if row else None

    def list_all(self) -> List[User]:
        rows = self.conn.execute("SELECT * FROM users ORDER BY id").fetchall()
        return [User.from_dict(dict(row)) for row in rows]

    def exists_with_role(self, role: Role) -> bool:
        row = self.conn.execute("SELECT 1 FROM users WHERE role = ? LIMIT 1", (role.value,)).fetchone()
        return row is not None


class ReservationRepository:
    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn

    def add(self, reservation: Reservation) -> Reservation:
        cursor = self.conn.execute(
            """
            INSERT INTO reservations (book_id, user_id, reserved_at, expires_at, status,
                                      check_in_requested, check_in_requested_at, checked_in_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                reservation.book_id, reservation.user_id,
                to_iso(reservation.reserved_at), to_iso(reservation.expires_at),
                reservation.status.value, int(reservation.check_in_requested),
                to_iso(reservation.check_in_requested_at), to_iso(reservation.checked_in_at),
            ),
        )
        reservation.id = cursor.lastrowid
        return reservation

    def update(self, reservation: Reservation) -> None:
        self.conn.execute(
            """
            UPDATE reservations
               SET status = ?, expires_at = ?, check_in_requested = ?,
                   check_in_requested_at = ?, checked_in_at = ?
             WHERE id = ?
            """,
            (
                reservation.status.value, to_iso(reservation.expires_at),
                int(reservation.check_in_requested), to_iso(reservation.check_in_requested_at),
                to_iso(reservation.checked_in_at), reservation.id,
            ),
        )

    def get_by_id(self, reservation_id: int) -> Optional[Reservation]:
        row = self.conn.execute("SELECT * FROM reservations WHERE id = ?", (reservation_id,)).fetchone()
        return Reservation.from_dict(dict(row)) if row else None

    def _select(self, where: str, params: tuple = ()) -> List[Reservation]:
        rows = self.conn.execute(
            f"SELECT * FROM reservations WHERE {where} ORDER BY reserved_at DESC, id DESC", params
        ).fetchall()
        return [Reservation.from_dict(dict(row)) for row in rows]

    def list_by_user(self, user_id: int) -> List[Reservation]:
        return self._select("user_id = ?", (user_id,))

    def list_active_by_user(self, user_id: int) -> List[Reservation]:
        return self._select("user_id = ? AND status = ?", (user_id, ReservationStatus.ACTIVE.value))

    def list_by_book(self, book_id: int) -> List[Reservation]:
        return self._select("book_id = ?", (book_id,))

    def list_all_active(self) -> List[Reservation]:
        return self._select("status = ?", (ReservationStatus.ACTIVE.value,))

    def list_check_in_requests(self) -> List[Reservation]:
        return self._select(
            "status = ? AND check_in_requested = 1", (ReservationStatus.ACTIVE.value,)
        )

    def list_expired_active(self, now: datetime) -> List[Reservation]:
        return self._select(
            "status = ? AND expires_at < ?", (ReservationStatus.ACTIVE.value, to_iso(now))
        )

    def count_active_by_user(self, user_id: int) -> int:
        return self.conn.execute(
            "SELECT COUNT(*) FROM reservations WHERE user_id = ? AND status = ?",
            (user_id, ReservationStatus.ACTIVE.value),
        ).fetchone()[0]

    def count_all_active(self) -> int:
        return self.conn.execute(
            "SELECT COUNT(*) FROM reservations WHERE status = ?", (ReservationStatus.ACTIVE.value,)
        ).fetchone()[0]

    def has_active_for_book(self, book_id: int) -> bool:
        row = self.conn.execute(
            "SELECT 1 FROM reservations WHERE book_id = ? AND status = ? LIMIT 1",
            (book_id, ReservationStatus.ACTIVE.value),
        ).fetchone()
        return row is not None


class BorrowRepository:
    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn

    def add(self, borrow: Borrow) -> Borrow:
        cursor = self.conn.execute(
            """
            INSERT INTO borrows (book_id, user_id, borrowed_at, due_at, status,
                                 return_requested, return_requested_at, returned_at,
                                 approved_by, return_accepted_by)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                borrow.book_id, borrow.user_id, to_iso(borrow.borrowed_at), to_iso(borrow.due_at),
                borrow.status.value, int(borrow.return_requested), to_iso(borrow.return_requested_at),
                to_iso(borrow.returned_at), borrow.approved_by, borrow.return_accepted_by,
            ),
        )
        borrow.id = cursor.lastrowid
        return borrow

    def update(self, borrow: Borrow) -> None:
        self.conn.execute(
            """
            UPDATE borrows
               SET due_at = ?, status = ?, return_requested = ?, return_requested_at = ?,
                   returned_at = ?, approved_by = ?, return_accepted_by = ?
             WHERE id = ?
            """,
            (
                to_iso(borrow.due_at), borrow.status.value, int(borrow.return_requested),
                to_iso(borrow.return_requested_at), to_iso(borrow.returned_at),
                borrow.approved_by, borrow.return_accepted_by, borrow.id,
            ),
        )

    def get_by_id(self, borrow_id: int) -> Optional[Borrow]:
        row = self.conn.execute("SELECT * FROM borrows WHERE id = ?", (borrow_id,)).fetchone()
        return Borrow.from_dict(dict(row)) if row else None

    def _select(self, where: str, params: tuple = ()) -> List[Borrow]:
        rows = self.conn.execute(
            f"SELECT * FROM borrows WHERE {where} ORDER BY borrowed_at DESC, id DESC", params
        ).fetchall()
        return [Borrow.from_dict(dict(row)) for row in rows]

    def list_by_user(self, user_id: int) -> List[Borrow]:
        return self._select("user_id = ?", (user_id,))

    def list_active_by_user(self, user_id: int) -> List[Borrow]:
        return self._select("user_id = ? AND status IN (?, ?)", (user_id, *_OPEN_BORROW_STATES))

    def list_by_book(self, book_id: int) -> List[Borrow]:
        return self._select("book_id = ?", (book_id,))

    def list_all_active(self) -> List[Borrow]:
        return self._select("status IN (?, ?)", _OPEN_BORROW_STATES)

    def list_return_requests(self) -> List[Borrow]:
        return self._select(
            "return_requested = 1 AND status != ?", (BorrowStatus.RETURNED.value,)
        )

    def list_past_due(self, now: datetime) -> List[Borrow]:
        return self._select("status = ? AND due_at < ?", (BorrowStatus.ACTIVE.value, to_iso(now)))

    def count_active_by_user(self, user_id: int) -> int:
        return self.conn.execute(
            "SELECT COUNT(*) FROM borrows WHERE user_id = ? AND status IN (?, ?)",
            (user_id, *_OPEN_BORROW_STATES),
        ).fetchone()[0]

    def count_by_status(self, status: BorrowStatus) -> int:
        return self.conn.execute(
            "SELECT COUNT(*) FROM borrows WHERE status = ?", (status.value,)
        ).fetchone()[0]


class RatingRepository:
    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn

    def upsert(self, rating: Rating) -> Rating:
        """Insert the (book, user) row or update its value in place."""
        self.conn.execute(
            """
            INSERT INTO ratings (book_id, user_id, value, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(book_id, user_id)
            DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
            """,
            (
                rating.book_id, rating.user_id, rating.value,
                to_iso(rating.created_at), to_iso(rating.updated_at),
            ),
        )
        return self.get_by_book_and_user(rating.book_id, rating.user_id)

    def get_by_book_and_user(self, book_id: int, user_id: int) -> Optional[Rating]:
        row = self.conn.execute(
            "SELECT * FROM ratings WHERE book_id = ? AND user_id = ?", (book_id, user_id)
        ).fetchone()
        return Rating.from_dict(dict(row)) if row else None

    def list_for_book(self, book_id: int) -> List[Rating]:
        rows = self.conn.execute(
            "SELECT * FROM ratings WHERE book_id = ? ORDER BY id", (book_id,)
        ).fetchall()
        return [Rating.from_dict(dict(row)) for row in rows]

    def aggregate_for_book(self, book_id: int) -> Tuple[float, int]:
        """Mean and count over every rating row of the book."""
        row = self.conn.execute(
            "SELECT AVG(value) AS mean, COUNT(*) AS total FROM ratings WHERE book_id = ?",
            (book_id,),
        ).fetchone()
        return float(row["mean"] or 0.0), int(row["total"])
