"""Entities of the lending core.

Rows come back from sqlite3 as ``sqlite3.Row``; repositories turn them into
these dataclasses with ``from_dict(dict(row))`` and write them back field by
field. Timestamps are timezone-aware UTC datetimes in memory and ISO-8601
text on disk.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    # Sabit genişlikli UTC metni: SQL içinde metin karşılaştırması zaman sırasını korur
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def parse_ts(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class Role(str, Enum):
    """Account roles, highest first."""

    SYSTEM_ADMIN = "SystemAdmin"
    ADMIN = "Admin"
    LIBRARIAN = "Librarian"
    END_USER = "EndUser"

    @property
    def display_name(self) -> str:
        return _ROLE_DISPLAY_NAMES[self]


_ROLE_DISPLAY_NAMES = {
    Role.SYSTEM_ADMIN: "System Admin",
    Role.ADMIN: "Admin",
    Role.LIBRARIAN: "Librarian",
    Role.END_USER: "Reader",
}


class ReservationStatus(str, Enum):
    ACTIVE = "Active"
    CHECKED_IN = "CheckedIn"
    EXPIRED = "Expired"
    CANCELLED = "Cancelled"


class BorrowStatus(str, Enum):
    ACTIVE = "Active"
    RETURN_REQUESTED = "ReturnRequested"
    RETURNED = "Returned"
    OVERDUE = "Overdue"


@dataclass
class Book:
    title: str
    author: str
    isbn: str
    stock: int = 0
    is_active: bool = True
    category: str = ""
    cover_url: Optional[str] = None
    rating: float = 0.0
    rating_count: int = 0
    created_at: Optional[datetime] = None
    id: Optional[int] = None

    def __str__(self) -> str:  # pragma: no cover - string formatting trivial
        return f"{self.title} by {self.author} (ISBN: {self.isbn})"

    @property
    def is_available(self) -> bool:
        return self.is_active and self.stock > 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "author": self.author,
            "isbn": self.isbn,
            "stock": self.stock,
            "is_active": self.is_active,
            "category": self.category,
            "cover_url": self.cover_url,
            "rating": self.rating,
            "rating_count": self.rating_count,
            "created_at": to_iso(self.created_at),
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "Book":
        return Book(
            id=data.get("id"),
            title=data["title"],
            author=data["author"],
            isbn=data["isbn"],
            stock=int(data.get("stock") or 0),
            is_active=bool(data.get("is_active", True)),
            category=data.get("category") or "",
            cover_url=data.get("cover_url"),
            rating=float(data.get("rating") or 0),
            rating_count=int(data.get("rating_count") or 0),
            created_at=parse_ts(data.get("created_at")),
        )


@dataclass
class User:
    username: str
    email: str
    role: Role = Role.END_USER
    password_hash: str = field(default="", repr=False)
    is_active: bool = True
    created_at: Optional[datetime] = None
    id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        # Şifre özeti asla dışarı verilmez
        return {
            "id": self.id,
            "username": self.username,
            "email": self.email,
            "role": self.role.value,
            "role_display": self.role.display_name,
            "is_active": self.is_active,
            "created_at": to_iso(self.created_at),
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "User":
        return User(
            id=data.get("id"),
            username=data["username"],
            email=data["email"],
            role=Role(data["role"]),
            password_hash=data.get("password_hash") or "",
            is_active=bool(data.get("is_active", True)),
            created_at=parse_ts(data.get("created_at")),
        )


@dataclass
class Reservation:
    book_id: int
    user_id: int
    reserved_at: datetime
    expires_at: datetime
    status: ReservationStatus = ReservationStatus.ACTIVE
    check_in_requested: bool = False
    check_in_requested_at: Optional[datetime] = None
    checked_in_at: Optional[datetime] = None
    id: Optional[int] = None

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        now = now or utcnow()
        return now > self.expires_at

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "book_id": self.book_id,
            "user_id": self.user_id,
            "reserved_at": to_iso(self.reserved_at),
            "expires_at": to_iso(self.expires_at),
            "status": self.status.value,
            "check_in_requested": self.check_in_requested,
            "check_in_requested_at": to_iso(self.check_in_requested_at),
            "checked_in_at": to_iso(self.checked_in_at),
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "Reservation":
        return Reservation(
            id=data.get("id"),
            book_id=data["book_id"],
            user_id=data["user_id"],
            reserved_at=parse_ts(data["reserved_at"]),
            expires_at=parse_ts(data["expires_at"]),
            status=ReservationStatus(data.get("status", "Active")),
            check_in_requested=bool(data.get("check_in_requested", False)),
            check_in_requested_at=parse_ts(data.get("check_in_requested_at")),
            checked_in_at=parse_ts(data.get("checked_in_at")),
        )


@dataclass
class Borrow:
    book_id: int
    user_id: int
    borrowed_at: datetime
    due_at: datetime
    status: BorrowStatus = BorrowStatus.ACTIVE
    return_requested: bool = False
    return_requested_at: Optional[datetime] = None
    returned_at: Optional[datetime] = None
    approved_by: Optional[int] = None
    return_accepted_by: Optional[int] = None
    id: Optional[int] = None

    def is_overdue(self, now: Optional[datetime] = None) -> bool:
        """Return True if still out on loan and past its due date."""
        now = now or utcnow()
        return self.status == BorrowStatus.ACTIVE and now > self.due_at

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "book_id": self.book_id,
            "user_id": self.user_id,
            "borrowed_at": to_iso(self.borrowed_at),
            "due_at": to_iso(self.due_at),
            "status": self.status.value,
            "return_requested": self.return_requested,
            "return_requested_at": to_iso(self.return_requested_at),
            "returned_at": to_iso(self.returned_at),
            "approved_by": self.approved_by,
            "return_accepted_by": self.return_accepted_by,
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "Borrow":
        return Borrow(
            id=data.get("id"),
            book_id=data["book_id"],
            user_id=data["user_id"],
            borrowed_at=parse_ts(data["borrowed_at"]),
            due_at=parse_ts(data["due_at"]),
            status=BorrowStatus(data.get("status", "Active")),
            return_requested=bool(data.get("return_requested", False)),
            return_requested_at=parse_ts(data.get("return_requested_at")),
            returned_at=parse_ts(data.get("returned_at")),
            approved_by=data.get("approved_by"),
            return_accepted_by=data.get("return_accepted_by"),
        )


@dataclass
class Rating:
    book_id: int
    user_id: int
    value: float
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "book_id": self.book_id,
            "user_id": self.user_id,
            "value": self.value,
            "created_at": to_iso(self.created_at),
            "updated_at": to_iso(self.updated_at),
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "Rating":
        return Rating(
            id=data.get("id"),
            book_id=data["book_id"],
            user_id=data["user_id"],
            value=float(data["value"]),
            created_at=parse_ts(data.get("created_at")),
            updated_at=parse_ts(data.get("updated_at")),
        )
