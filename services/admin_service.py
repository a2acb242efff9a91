"""Admin credential check."""
import logging
from typing import Optional

from sqlalchemy import select

from errors import AuthError, ValidationError
from models import AdminCredential
from monitoring import auth_attempts_counter, auth_failures_counter
from security import verify_password
from storage import StorageGateway

logger = logging.getLogger(__name__)


class AdminService:
    """Static credential check against the active backend. Issues no token."""

    def __init__(self, gateway: StorageGateway):
        self.gateway = gateway

    def _password_hash(self, username: str) -> Optional[str]:
        if self.gateway.is_backend_available():
            with self.gateway.session() as db:
                admin = db.execute(
                    select(AdminCredential).where(AdminCredential.username == username)
                ).scalar_one_or_none()
                return admin.password_hash if admin else None

        record = self.gateway.admins.find(username)
        return record.password_hash if record else None

    def login(self, username: Optional[str], password: Optional[str]) -> None:
        """
        Verify admin credentials.

        Args:
            username: Admin username
            password: Plaintext password

        Raises:
            ValidationError: If username or password is missing
            AuthError: If the credentials do not match
        """
        username = (username or "").strip()
        missing = [field for field, value in (("username", username), ("password", password)) if not value]
        if missing:
            raise ValidationError("Missing required fields", required=["username", "password"], missing=missing)

        auth_attempts_counter.add(1, {"type": "admin_login"})

        password_hash = self._password_hash(username)
        if password_hash is None or not verify_password(password, password_hash):
            auth_failures_counter.add(1, {"reason": "invalid_credentials"})
            logger.warning("Admin login failed", extra={"username": username})
            raise AuthError("Invalid username or password")

        logger.info("Admin logged in", extra={"username": username})
