import logging
from typing import List, Optional

from werkzeug.security import check_password_hash, generate_password_hash

from lending import database
from lending.access import creatable_roles, ensure_can_create
from lending.errors import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    StateError,
    ValidationError,
)
from lending.models import Role, User, utcnow
from lending.repositories import UserRepository
from lending.services.notifications import default_email_service
from lending.services.token_cache import RESET, SETUP, PasswordTokenService

logger = logging.getLogger(__name__)


def hash_password(password: str) -> str:
    return generate_password_hash(password)


class UserService:
    """Account creation, password links and credential checks.

    New accounts are created inactive without a password. The owner
    activates the account by following the emailed setup link.
    """

    def __init__(self, email_service=None, token_service: Optional[PasswordTokenService] = None) -> None:
        self.email_service = email_service or default_email_service()
        self.tokens = token_service or PasswordTokenService()

    def create_user(self, creator_id: int, username: str, email: str, role: Role) -> User:
        role = Role(role)
        username = (username or "").strip()
        email = (email or "").strip()

        with database.transaction() as conn:
            users = UserRepository(conn)
            creator = users.get_by_id(creator_id)
            if creator is None:
                raise NotFoundError(f"User {creator_id} not found.")
            try:
                ensure_can_create(creator.role, role)
            except AuthorizationError:
                logger.warning(
                    "%s rolündeki kullanıcı %s, %s rolünde hesap açmaya çalıştı",
                    creator.role.value, creator_id, role.value,
                )
                raise

            if not username:
                raise ValidationError("Username cannot be empty.")
            if not email or "@" not in email:
                raise ValidationError("A valid email address is required.")
            if users.get_by_username(username) is not None:
                raise ConflictError(f"Username '{username}' is already taken.")
            if users.get_by_email(email) is not None:
                raise ConflictError(f"A user with email '{email}' already exists.")

            user = users.add(
                User(username=username, email=email, role=role, is_active=False, created_at=utcnow())
            )

        logger.info("Kullanıcı oluşturuldu: id=%s rol=%s oluşturan=%s", user.id, role.value, creator_id)

        # Satır commit edildi; teslim hatası hesabı geri almaz
        token = self.tokens.create_token(user.email, SETUP)
        self.email_service.send_password_creation_link(user.email, user.username, token)
        return user

    def create_password(self, email: str, token: str, password: str) -> User:
        """Set the first password from an account-setup link and activate the account."""
        return self._set_password(email, token, password, SETUP)

    def reset_password(self, email: str, token: str, password: str) -> User:
        return self._set_password(email, token, password, RESET)

    def request_password_reset(self, email: str) -> None:
        user = self.find_by_email(email)
        if user is None:
            raise NotFoundError("No user found with this email address.")
        token = self.tokens.create_token(user.email, RESET)
        self.email_service.send_password_reset_link(user.email, user.username, token)
        logger.info("Şifre sıfırlama bağlantısı istendi: kullanıcı=%s", user.id)

    def authenticate(self, email: str, password: str) -> Optional[User]:
        """Return the user for valid credentials, None otherwise.

        Raises StateError when the credentials are right but the account has
        not been activated yet.
        """
        user = self.find_by_email(email)
        if user is None or not user.password_hash or not password:
            return None
        if not check_password_hash(user.password_hash, password):
            return None
        if not user.is_active:
            raise StateError("Your account is not active yet.")
        return user

    # ------------------------- Sorgular ------------------------- #
    @staticmethod
    def creatable_roles(role: Role) -> List[Role]:
        return creatable_roles(role)

    def get_user(self, user_id: int) -> Optional[User]:
        conn = database.get_db_connection()
        try:
            return UserRepository(conn).get_by_id(user_id)
        finally:
            conn.close()

    def find_by_email(self, email: str) -> Optional[User]:
        if not email or not email.strip():
            return None
        conn = database.get_db_connection()
        try:
            return UserRepository(conn).get_by_email(email)
        finally:
            conn.close()

    def list_users(self) -> List[User]:
        conn = database.get_db_connection()
        try:
            return UserRepository(conn).list_all()
        finally:
            conn.close()

    # ------------------------- Yardımcılar ------------------------- #
    def _set_password(self, email: str, token: str, password: str, purpose: str) -> User:
        if not self.tokens.validate_token(email, token, purpose):
            raise AuthorizationError("Invalid or expired link.")
        if not password or not password.strip():
            raise ValidationError("Password cannot be empty.")

        with database.transaction() as conn:
            users = UserRepository(conn)
            user = users.get_by_email(email)
            if user is None:
                raise NotFoundError("No user found with this email address.")
            user.password_hash = hash_password(password)
            user.is_active = True
            users.update(user)

        self.tokens.consume_token(email, token, purpose)
        logger.info("Şifre ayarlandı (%s): kullanıcı=%s", purpose, user.id)
        return user
