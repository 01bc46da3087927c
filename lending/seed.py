"""Idempotent bootstrap data: the first SystemAdmin account and a demo catalog."""

import logging
from datetime import timedelta
from typing import Dict

from lending import database
from lending.config import settings
from lending.models import Book, Role, User, utcnow
from lending.repositories import BookRepository, UserRepository
from lending.services.users import hash_password

logger = logging.getLogger(__name__)

PLACEHOLDER_COVER = "/images/book-placeholder.jpg"

# (başlık, yazar, isbn, stok, kategori, kaç gün önce eklendi)
DEMO_BOOKS = [
    ("Clean Code", "Robert C. Martin", "9780132350884", 3, "Software Engineering", 100),
    ("Design Patterns", "Gang of Four", "9780201633610", 2, "Software Engineering", 90),
    ("The Pragmatic Programmer", "Andrew Hunt", "9780201616224", 1, "Software Engineering", 80),
    ("Introduction to Algorithms", "Thomas H. Cormen", "9780262033848", 4, "Computer Science", 70),
    ("The Art of Computer Programming", "Donald Knuth", "9780201896831", 0, "Computer Science", 60),
    ("Refactoring", "Martin Fowler", "9780134757599", 2, "Software Engineering", 50),
    ("Code Complete", "Steve McConnell", "9780735619678", 3, "Software Engineering", 40),
    ("Working Effectively with Legacy Code", "Michael Feathers", "9780131177055", 1, "Software Engineering", 30),
]


def seed_demo_data(desk) -> Dict[str, int]:
    """Create the SystemAdmin when none exists and the demo books when the catalog is empty.

    Safe to call on every start; returns how many rows were inserted.
    """
    now = utcnow()
    created = {"users": 0, "books": 0}

    with database.transaction() as conn:
        users = UserRepository(conn)
        if not users.exists_with_role(Role.SYSTEM_ADMIN):
            users.add(
                User(
                    username=settings.seed_admin_username,
                    email=settings.seed_admin_email,
                    role=Role.SYSTEM_ADMIN,
                    password_hash=hash_password(settings.seed_admin_password),
                    is_active=True,
                    created_at=now,
                )
            )
            created["users"] = 1

        books = BookRepository(conn)
        if books.count() == 0:
            for title, author, isbn, stock, category, age_days in DEMO_BOOKS:
                books.add(
                    Book(
                        title=title,
                        author=author,
                        isbn=isbn,
                        stock=stock,
                        category=category,
                        cover_url=PLACEHOLDER_COVER,
                        created_at=now - timedelta(days=age_days),
                    )
                )
            created["books"] = len(DEMO_BOOKS)

    if created["users"] or created["books"]:
        logger.info("Başlangıç verisi eklendi: %s (%s)", created, desk.db_file)
    return created
