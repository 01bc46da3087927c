import itertools
import os

import pytest

from lending import database
from lending.desk import LendingDesk
from lending.models import Book, Role, User, utcnow
from lending.repositories import UserRepository
from lending.services.token_cache import PasswordTokenService
from lending.services.users import hash_password


class RecordingEmailService:
    """Gönderilen bağlantıları bellekte tutan sahte e-posta servisi."""

    def __init__(self):
        self.sent = []
        self.fail_with = None

    def send_password_creation_link(self, email, username, token):
        self._send("creation", email, username, token)

    def send_password_reset_link(self, email, username, token):
        self._send("reset", email, username, token)

    def _send(self, kind, email, username, token):
        if self.fail_with is not None:
            raise self.fail_with
        self.sent.append({"kind": kind, "email": email, "username": username, "token": token})


@pytest.fixture
def email_service():
    return RecordingEmailService()


@pytest.fixture
def desk(tmp_path, request, email_service):
    # Her test için benzersiz bir veritabanı dosyası oluştur
    original = database.DATABASE_FILE
    db_file = str(tmp_path / f"test_{request.node.name}.db")
    desk = LendingDesk(db_file=db_file, email_service=email_service, token_service=PasswordTokenService())
    yield desk
    desk.close()
    database.DATABASE_FILE = original
    if os.path.exists(db_file):
        os.remove(db_file)


@pytest.fixture
def make_user(desk):
    counter = itertools.count(1)

    def _make(role=Role.END_USER, active=True, password="secret-pass"):
        n = next(counter)
        name = f"{Role(role).value.lower()}{n}"
        with database.transaction() as conn:
            return UserRepository(conn).add(
                User(
                    username=name,
                    email=f"{name}@example.com",
                    role=Role(role),
                    password_hash=hash_password(password),
                    is_active=active,
                    created_at=utcnow(),
                )
            )

    return _make


@pytest.fixture
def make_book(desk):
    counter = itertools.count(1)

    def _make(stock=1, title=None, author="Test Author", is_active=True, category=""):
        n = next(counter)
        book = Book(
            title=title or f"Book {n}",
            author=author,
            isbn=f"978000000{n:04d}",
            stock=stock,
            is_active=is_active,
            category=category,
        )
        return desk.books.add_book(book)

    return _make


@pytest.fixture
def admin(make_user):
    return make_user(Role.SYSTEM_ADMIN)


@pytest.fixture
def librarian(make_user):
    return make_user(Role.LIBRARIAN)


@pytest.fixture
def reader(make_user):
    return make_user(Role.END_USER)
