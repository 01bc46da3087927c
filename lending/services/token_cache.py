"""
Şifre bağlantıları için bellek içi, süreli (TTL) anahtar deposu.
Tek süreç içinde yaşar; yeniden başlatmada tüm jetonlar geçersiz olur.
"""

import logging
import secrets
import threading
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

from lending.config import settings
from lending.models import utcnow

logger = logging.getLogger(__name__)

SETUP = "setup"
RESET = "reset"


class TokenCache:
    """Thread-safe in-memory cache with per-entry expiry."""

    def __init__(self, prefix: str = "lending", clock: Callable[[], datetime] = utcnow, max_entries: int = 1000):
        self.prefix = prefix
        self.clock = clock
        self.max_entries = max_entries
        self._entries: Dict[str, tuple] = {}
        self._lock = threading.RLock()
        self.stats = {"hits": 0, "misses": 0, "expired": 0}

    def _make_key(self, key: str) -> str:
        """Önek ile tutarlı bir anahtar oluştur."""
        return f"{self.prefix}:{key}"

    def get(self, key: str) -> Optional[Any]:
        cache_key = self._make_key(key)
        with self._lock:
            entry = self._entries.get(cache_key)
            if entry is not None:
                value, expires_at = entry
                if self.clock() < expires_at:
                    self.stats["hits"] += 1
                    return value
                # Süresi dolmuş, kaldır
                del self._entries[cache_key]
                self.stats["expired"] += 1
            self.stats["misses"] += 1
            return None

    def set(self, key: str, value: Any, ttl: timedelta) -> None:
        cache_key = self._make_key(key)
        with self._lock:
            self._entries[cache_key] = (value, self.clock() + ttl)
            if len(self._entries) > self.max_entries:
                self.cleanup_expired()
            if len(self._entries) > self.max_entries:
                # Hâlâ doluysa en erken bitecek %10'u at
                oldest = sorted(self._entries.items(), key=lambda item: item[1][1])
                for k, _ in oldest[: max(1, self.max_entries // 10)]:
                    self._entries.pop(k, None)

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(self._make_key(key), None) is not None

    def cleanup_expired(self) -> int:
        now = self.clock()
        with self._lock:
            stale = [k for k, (_, expires_at) in self._entries.items() if expires_at <= now]
            for k in stale:
                del self._entries[k]
        return len(stale)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class PasswordTokenService:
    """One-time tokens for the account-setup and password-reset links.

    A token is bound to an email address and a purpose; validating it for a
    different address or purpose fails.
    """

    def __init__(self, cache: Optional[TokenCache] = None, setup_ttl: Optional[timedelta] = None,
                 reset_ttl: Optional[timedelta] = None):
        self.cache = cache or TokenCache(prefix="pwd")
        self.ttls = {
            SETUP: setup_ttl or timedelta(hours=settings.account_setup_ttl_hours),
            RESET: reset_ttl or timedelta(minutes=settings.password_reset_ttl_minutes),
        }

    @staticmethod
    def _key(purpose: str, email: str, token: str) -> str:
        return f"{purpose}:{email.strip().lower()}:{token}"

    def create_token(self, email: str, purpose: str = RESET) -> str:
        if not email or not email.strip():
            raise ValueError("email cannot be empty")
        if purpose not in self.ttls:
            raise ValueError(f"unknown token purpose: {purpose}")
        token = secrets.token_urlsafe(32)
        self.cache.set(self._key(purpose, email, token), True, self.ttls[purpose])
        logger.debug("Jeton oluşturuldu: amaç=%s", purpose)
        return token

    def validate_token(self, email: str, token: str, purpose: str = RESET) -> bool:
        if not email or not token or not email.strip() or not token.strip():
            return False
        return self.cache.get(self._key(purpose, email, token)) is not None

    def consume_token(self, email: str, token: str, purpose: str = RESET) -> None:
        if not email or not token:
            return
        self.cache.delete(self._key(purpose, email, token))
