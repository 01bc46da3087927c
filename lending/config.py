import os
from dataclasses import dataclass
from typing import Optional
from dotenv import load_dotenv

load_dotenv()


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


@dataclass
class Settings:
    # API Ayarları
    api_host: str = os.getenv("API_HOST", "127.0.0.1")
    api_port: int = int(os.getenv("API_PORT", "8000"))
    api_key: str = os.getenv("API_KEY", "super-secret-key")

    # Veritabanı Ayarları
    data_file: str = os.getenv("LENDING_DB_FILE", "lending.db")
    database_timeout: float = float(os.getenv("DATABASE_TIMEOUT", "30"))

    # Ödünç verme kuralları
    reservation_hold_hours: int = int(os.getenv("RESERVATION_HOLD_HOURS", "24"))
    borrow_days: int = int(os.getenv("BORROW_DAYS", "14"))
    max_active_reservations: int = int(os.getenv("MAX_ACTIVE_RESERVATIONS", "3"))
    max_active_borrows: int = int(os.getenv("MAX_ACTIVE_BORROWS", "3"))

    # Şifre bağlantıları
    password_reset_ttl_minutes: int = int(os.getenv("PASSWORD_RESET_TTL_MINUTES", "15"))
    account_setup_ttl_hours: int = int(os.getenv("ACCOUNT_SETUP_TTL_HOURS", "24"))
    app_base_url: str = os.getenv("APP_BASE_URL", "http://127.0.0.1:8000")

    # E-posta Ayarları
    smtp_host: str = os.getenv("SMTP_HOST", "smtp.gmail.com")
    smtp_port: int = int(os.getenv("SMTP_PORT", "587"))
    smtp_username: Optional[str] = os.getenv("SMTP_USERNAME")
    smtp_password: Optional[str] = os.getenv("SMTP_PASSWORD")
    smtp_from_email: str = os.getenv("SMTP_FROM_EMAIL", "noreply@library.com")
    smtp_from_name: str = os.getenv("SMTP_FROM_NAME", "Library System")
    smtp_use_tls: bool = _flag("SMTP_USE_TLS", "True")
    enable_email_notifications: bool = _flag("ENABLE_EMAIL_NOTIFICATIONS", "False")

    # İlk kurulum hesabı
    seed_admin_username: str = os.getenv("SEED_ADMIN_USERNAME", "SystemAdmin")
    seed_admin_email: str = os.getenv("SEED_ADMIN_EMAIL", "admin@library.local")
    seed_admin_password: str = os.getenv("SEED_ADMIN_PASSWORD", "Admin123!")

    # Uygulama Ayarları
    app_name: str = os.getenv("APP_NAME", "Library Lending")
    app_version: str = os.getenv("APP_VERSION", "2.0.0")
    debug: bool = _flag("DEBUG", "False")
    log_level: str = os.getenv("LOG_LEVEL", "INFO").upper()


settings = Settings()
