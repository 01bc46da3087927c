import logging
import os
import sqlite3
from contextlib import contextmanager
from typing import Iterator

from lending.config import settings

logger = logging.getLogger(__name__)

# Varsayılan veritabanı dosyası.
# Öncelik:
# 1) LENDING_DB_FILE (açık geçersiz kılma, config üzerinden de okunur)
# 2) settings.data_file varsayılanı
# Testler ve LendingDesk(db_file=...) bu modül değişkenini doğrudan değiştirir.
DATABASE_FILE = os.environ.get("LENDING_DB_FILE") or settings.data_file

ROLE_VALUES = ("SystemAdmin", "Admin", "Librarian", "EndUser")
RESERVATION_STATUS_VALUES = ("Active", "CheckedIn", "Expired", "Cancelled")
BORROW_STATUS_VALUES = ("Active", "ReturnRequested", "Returned", "Overdue")


def _in_list(values) -> str:
    return ", ".join(f"'{v}'" for v in values)


def get_db_connection() -> sqlite3.Connection:
    """SQLite veritabanına yeni bir bağlantı kurar.

    Bağlantı otomatik commit modunda açılır (isolation_level=None); işlem
    sınırları transaction() tarafından açıkça yönetilir.
    """
    conn = sqlite3.connect(DATABASE_FILE, timeout=settings.database_timeout, isolation_level=None)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys=ON;")
    return conn


@contextmanager
def transaction() -> Iterator[sqlite3.Connection]:
    """Yazma kilidini baştan alan bir işlem açar.

    BEGIN IMMEDIATE, uygunluk kontrolünden önce veritabanı yazma kilidini alır;
    böylece aynı anda gelen iki istek "kontrol et, sonra yaz" dizisini
    sırayla çalıştırır. Hata durumunda geri alınır ve istisna yeniden fırlatılır.
    """
    conn = get_db_connection()
    try:
        conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
        except BaseException:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise
        conn.execute("COMMIT")
    finally:
        conn.close()


def create_tables() -> None:
    """Veritabanında mevcut değilse gerekli tabloları oluşturur."""
    conn = get_db_connection()
    try:
        # Eşzamanlı okuyucular yazarı beklemesin
        conn.execute("PRAGMA journal_mode=WAL;")
        cursor = conn.cursor()
        cursor.execute(f"""
            CREATE TABLE IF NOT EXISTS users (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                username TEXT NOT NULL UNIQUE,
                email TEXT NOT NULL UNIQUE COLLATE NOCASE,
                password_hash TEXT NOT NULL DEFAULT '',
                role TEXT NOT NULL CHECK(role IN ({_in_list(ROLE_VALUES)})),
                is_active INTEGER NOT NULL DEFAULT 1,
                created_at TEXT NOT NULL
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS books (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                title TEXT NOT NULL,
                author TEXT NOT NULL,
                isbn TEXT NOT NULL UNIQUE,
                stock INTEGER NOT NULL DEFAULT 0 CHECK(stock >= 0),
                is_active INTEGER NOT NULL DEFAULT 1,
                category TEXT NOT NULL DEFAULT '',
                cover_url TEXT,
                rating REAL NOT NULL DEFAULT 0 CHECK(rating >= 0 AND rating <= 5),
                rating_count INTEGER NOT NULL DEFAULT 0 CHECK(rating_count >= 0),
                created_at TEXT NOT NULL
            )
        """)

        cursor.execute(f"""
            CREATE TABLE IF NOT EXISTS reservations (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                book_id INTEGER NOT NULL REFERENCES books(id),
                user_id INTEGER NOT NULL REFERENCES users(id),
                reserved_at TEXT NOT NULL,
                expires_at TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'Active'
                    CHECK(status IN ({_in_list(RESERVATION_STATUS_VALUES)})),
                check_in_requested INTEGER NOT NULL DEFAULT 0,
                check_in_requested_at TEXT,
                checked_in_at TEXT
            )
        """)

        cursor.execute(f"""
            CREATE TABLE IF NOT EXISTS borrows (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                book_id INTEGER NOT NULL REFERENCES books(id),
                user_id INTEGER NOT NULL REFERENCES users(id),
                borrowed_at TEXT NOT NULL,
                due_at TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'Active'
                    CHECK(status IN ({_in_list(BORROW_STATUS_VALUES)})),
                return_requested INTEGER NOT NULL DEFAULT 0,
                return_requested_at TEXT,
                returned_at TEXT,
                approved_by INTEGER REFERENCES users(id),
                return_accepted_by INTEGER REFERENCES users(id)
            )
        """)

        # Kitap/kullanıcı çifti başına tek puan satırı
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS ratings (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                book_id INTEGER NOT NULL REFERENCES books(id) ON DELETE CASCADE,
                user_id INTEGER NOT NULL REFERENCES users(id),
                value REAL NOT NULL CHECK(value >= 0 AND value <= 5),
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                UNIQUE (book_id, user_id)
            )
        """)

        # Kitap başına en fazla bir aktif rezervasyon
        cursor.execute("""
            CREATE UNIQUE INDEX IF NOT EXISTS uq_reservations_active_book
            ON reservations(book_id) WHERE status = 'Active'
        """)

        cursor.execute("CREATE INDEX IF NOT EXISTS idx_reservations_user_status ON reservations(user_id, status)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_reservations_status ON reservations(status)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_borrows_user_status ON borrows(user_id, status)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_borrows_status ON borrows(status)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_books_title ON books(title)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_books_author ON books(author)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_books_rating ON books(rating DESC, rating_count DESC)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_ratings_book ON ratings(book_id)")
    finally:
        conn.close()


def initialize_database() -> None:
    """Veritabanını başlatır, gerekirse tabloları oluşturur."""
    create_tables()
    logger.debug("Veritabanı hazır: %s", DATABASE_FILE)
