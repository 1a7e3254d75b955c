"""Password and JWT authentication for staff and guests.

Flow:
1. Staff log in with username + password, guests with email + password
   (guests may self-register)
2. A signed JWT (HS256 by default) is issued with ``sub``, ``role``,
   ``iat`` and ``exp`` claims
3. REST requests carry it as a bearer header; the chat socket carries it as
   the ``token`` query parameter, validated once at connect time
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

import bcrypt
from jose import ExpiredSignatureError, JWTError, jwt
from pydantic import BaseModel

from app.errors import Unauthorized, ValidationError
from app.users.schemas import STAFF_ROLES, User, UserRole
from app.users.service import UserDirectory

logger = logging.getLogger(__name__)


class TokenClaims(BaseModel):
    """Validated identity carried by an access token."""
    user_id: str
    role: UserRole
    issued_at: datetime
    expires_at: datetime


class AuthService:
    """Issues and validates access tokens; checks passwords."""

    def __init__(
        self,
        users: UserDirectory,
        secret_key: str,
        algorithm: str = "HS256",
        token_expire_hours: int = 8,
        min_password_length: int = 8,
    ) -> None:
        self.users = users
        self._secret_key = secret_key
        self._algorithm = algorithm
        self._token_expire = timedelta(hours=token_expire_hours)
        self._min_password_length = min_password_length

    # -----------------------------------------------------------------------
    # Passwords
    # -----------------------------------------------------------------------

    @staticmethod
    def hash_password(password: str) -> str:
        return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")

    @staticmethod
    def verify_password(password: str, password_hash: str) -> bool:
        try:
            return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
        except ValueError:
            # Malformed stored hash
            return False

    def _check_password_strength(self, password: str) -> None:
        if len(password) < self._min_password_length:
            raise ValidationError(
                f"Password must be at least {self._min_password_length} characters"
            )

    @staticmethod
    def _check_guest_password(password: str) -> None:
        """Guests pick their own passwords: require a letter and a digit."""
        if not any(c.isalpha() for c in password):
            raise ValidationError("Password must contain at least one letter")
        if not any(c.isdigit() for c in password):
            raise ValidationError("Password must contain at least one number")

    @staticmethod
    def validate_email(email: str) -> str:
        """Return the trimmed address, or raise if it is not local@domain.tld."""
        email = email.strip()
        if not email:
            raise ValidationError("Email is required")
        local, sep, domain = email.partition("@")
        if not sep or not local or not domain or "@" in domain:
            raise ValidationError("Invalid email format")
        if "." not in domain or domain.startswith(".") or domain.endswith("."):
            raise ValidationError("Invalid email format")
        return email

    # -----------------------------------------------------------------------
    # Tokens
    # -----------------------------------------------------------------------

    def issue_token(self, user: User, now: Optional[datetime] = None) -> str:
        now = now or datetime.now(timezone.utc)
        claims = {
            "sub": user.id,
            "role": user.role.value,
            "iat": int(now.timestamp()),
            "exp": int((now + self._token_expire).timestamp()),
        }
        return jwt.encode(claims, self._secret_key, algorithm=self._algorithm)

    def validate_token(self, token: str) -> TokenClaims:
        """Decode and verify *token*.

        Raises:
            Unauthorized: If the token is malformed, badly signed, expired,
                or carries an unknown role.
        """
        if not token:
            raise Unauthorized("Missing token")
        try:
            payload = jwt.decode(token, self._secret_key, algorithms=[self._algorithm])
        except ExpiredSignatureError:
            raise Unauthorized("Token has expired")
        except JWTError as e:
            raise Unauthorized(f"Invalid token: {e}")

        try:
            return TokenClaims(
                user_id=str(payload["sub"]),
                role=UserRole(payload["role"]),
                issued_at=datetime.fromtimestamp(payload["iat"], tz=timezone.utc),
                expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
            )
        except (KeyError, TypeError, ValueError):
            raise Unauthorized("Invalid token claims")

    # -----------------------------------------------------------------------
    # Accounts
    # -----------------------------------------------------------------------

    def login(self, username: str, password: str) -> Tuple[str, User]:
        """Staff login. Returns ``(token, user)``."""
        user = self.users.get_by_username(username)
        return self._authenticate(user, password)

    def login_guest(self, email: str, password: str) -> Tuple[str, User]:
        user = self.users.get_by_email(email)
        if user is not None and user.role != UserRole.GUEST:
            user = None
        return self._authenticate(user, password)

    def _authenticate(self, user: Optional[User], password: str) -> Tuple[str, User]:
        if user is None or not self.verify_password(password, user.password_hash):
            raise Unauthorized("Invalid credentials")
        if not user.is_active:
            raise Unauthorized("Account is deactivated")
        logger.info("[Auth] %s %s logged in", user.role.value, user.id)
        return self.issue_token(user), user

    def register_guest(self, email: str, password: str, full_name: str) -> Tuple[str, User]:
        """Create a guest account and log it in."""
        email = self.validate_email(email)
        if not full_name.strip():
            raise ValidationError("Full name is required")
        self._check_password_strength(password)
        self._check_guest_password(password)
        user = self.users.create(
            role=UserRole.GUEST,
            password_hash=self.hash_password(password),
            email=email,
            full_name=full_name.strip(),
        )
        return self.issue_token(user), user

    def create_staff(
        self,
        username: str,
        password: str,
        role: UserRole,
        full_name: Optional[str] = None,
    ) -> User:
        """Create a staff account (admin only at the API level)."""
        if UserRole(role) not in STAFF_ROLES:
            raise ValidationError("Staff accounts cannot have the guest role")
        if not 3 <= len(username) <= 50:
            raise ValidationError("Username must be between 3 and 50 characters")
        self._check_password_strength(password)
        return self.users.create(
            role=role,
            password_hash=self.hash_password(password),
            username=username,
            full_name=full_name,
        )

    def ensure_admin(self, username: str, password: str) -> Optional[User]:
        """Create the bootstrap admin unless the username already exists."""
        if self.users.get_by_username(username) is not None:
            return None
        user = self.create_staff(username, password, UserRole.ADMIN)
        logger.info("[Auth] Bootstrap admin '%s' created", username)
        return user
