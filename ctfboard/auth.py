"""
Accounts and sessions: registration, login, bearer sessions, email
verification and username changes.

Passwords are hashed with argon2id. Session tokens are random; only their
SHA-256 digest is stored, so a leaked database does not leak live sessions.
"""

import hashlib
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional, Tuple

import argon2
import structlog

from .database import DatabaseManager, utcnow_iso
from .errors import (
    AuthenticationError,
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from .mailer import Mailer
from .models import User
from .schemas import (
    AdminUserCreate,
    AdminUserUpdate,
    LoginRequest,
    RegisterRequest,
    UsernameChangeRequest,
    parse,
)
from .users import UserStore

logger = structlog.get_logger(__name__)

_hasher = argon2.PasswordHasher(
    time_cost=2,
    memory_cost=65536,  # 64 MB
    parallelism=1,
    hash_len=32,
    salt_len=16,
    type=argon2.Type.ID,  # argon2id
)


def hash_password(password: str) -> str:
    """Hash a password using argon2id. Returns the full hash string."""
    return _hasher.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    """
    Verify a password against its argon2id hash.

    Returns True if the password matches. Never raises on mismatch.
    """
    try:
        return _hasher.verify(password_hash, password)
    except argon2.exceptions.VerifyMismatchError:
        return False
    except argon2.exceptions.InvalidHashError:
        return False


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def generate_verification_token() -> str:
    return secrets.token_hex(32)


class AuthService:
    """Registration, login and session handling."""

    def __init__(
        self,
        db: DatabaseManager,
        users: UserStore,
        mailer: Mailer,
        config: Any,
    ) -> None:
        self.db = db
        self.users = users
        self.mailer = mailer
        self.config = config

    def check_password_policy(self, password: str) -> str:
        """
        Enforce the configured minimum password length.

        Shape checks (type, blank, maximum length) happen in the request schemas.
        """
        min_length = self.config.get("auth", "min_password_length")
        if len(password) < min_length:
            raise ValidationError(f"Password must be at least {min_length} characters")
        return password

    # Sessions

    async def create_session(self, user_id: int) -> str:
        """
        Issue a bearer token for a user.

        @param user_id: Id of the authenticated user
        @return: The raw session token; only its digest is persisted
        """
        token = secrets.token_urlsafe(32)
        now = datetime.now(timezone.utc)
        expires_at = now + timedelta(hours=self.config.get("auth", "session_ttl_hours"))

        async with self.db.connect() as db:
            await db.execute(
                "INSERT INTO sessions (token_hash, user_id, created_at, expires_at) "
                "VALUES (?, ?, ?, ?)",
                (
                    hash_token(token),
                    user_id,
                    now.isoformat(timespec="microseconds"),
                    expires_at.isoformat(timespec="microseconds"),
                ),
            )
        return token

    async def authenticate(self, token: Optional[str]) -> Optional[User]:
        """
        Resolve a bearer token to its user.

        @param token: Raw session token from the Authorization header
        @return: The session's user, or None if the token is unknown or expired
        """
        if not token:
            return None

        async with self.db.connect() as db:
            cursor = await db.execute(
                "SELECT user_id FROM sessions WHERE token_hash = ? AND expires_at > ?",
                (hash_token(token), utcnow_iso()),
            )
            row = await cursor.fetchone()

        if row is None:
            return None
        return await self.users.get(row["user_id"])

    async def logout(self, token: str) -> None:
        async with self.db.connect() as db:
            await db.execute(
                "DELETE FROM sessions WHERE token_hash = ?", (hash_token(token),)
            )

    async def purge_expired_sessions(self) -> int:
        async with self.db.connect() as db:
            cursor = await db.execute(
                "DELETE FROM sessions WHERE expires_at <= ?", (utcnow_iso(),)
            )
            return cursor.rowcount

    # Accounts

    async def register(
        self,
        username: Any,
        email: Any,
        password: Any,
    ) -> Tuple[User, str]:
        """
        Create a player account, log it in and send the verification email.

        @param username: Requested display name
        @param email: Email address to verify
        @param password: Plain-text password
        @return: Tuple of (created user, session token)
        """
        request = parse(
            RegisterRequest, {"username": username, "email": email, "password": password}
        )
        self.check_password_policy(request.password)

        if await self.users.get_by_username(request.username):
            raise ConflictError("Username already exists")
        if await self.users.get_by_email(request.email):
            raise ConflictError("Email already registered")

        verification_token = generate_verification_token()
        user = await self.users.create(
            username=request.username,
            email=request.email,
            password_hash=hash_password(request.password),
            email_verification_token=verification_token,
        )
        token = await self.create_session(user.id)
        logger.info("user_registered", user_id=user.id, username=user.username)

        # A failed delivery keeps the account and its session
        try:
            await self.mailer.send_verification_email(
                user.email, user.username, verification_token
            )
        except Exception as e:
            logger.warning(
                "verification_email_failed", user_id=user.id, error=str(e), exc_info=e
            )

        return user, token

    async def login(self, username: Any, password: Any) -> Tuple[User, str]:
        """
        Check credentials and open a session.

        @param username: Display name
        @param password: Plain-text password
        @return: Tuple of (user, session token)
        """
        request = parse(LoginRequest, {"username": username, "password": password})
        username = request.username.strip()

        user = await self.users.get_by_username(username)
        if user is None or not verify_password(request.password, user.password_hash):
            logger.info("login_failed", username=username)
            raise AuthenticationError("Invalid credentials")

        if (
            self.config.get("auth", "require_email_verification")
            and not user.is_email_verified
            and not user.is_admin
        ):
            raise PermissionDeniedError("Please verify your email address first")

        if _hasher.check_needs_rehash(user.password_hash):
            user = await self.users.update(
                user.id, {"password_hash": hash_password(request.password)}
            )

        logger.info("user_logged_in", user_id=user.id)
        return user, await self.create_session(user.id)

    async def verify_email(self, token: str) -> User:
        user = await self.users.get_by_verification_token(token)
        if user is None:
            raise NotFoundError("Invalid or expired verification token")

        user = await self.users.update(
            user.id, {"is_email_verified": True, "email_verification_token": None}
        )
        logger.info("email_verified", user_id=user.id)
        return user

    async def change_username(self, user_id: int, username: Any) -> User:
        request = parse(UsernameChangeRequest, {"username": username})
        existing = await self.users.get_by_username(request.username)
        if existing is not None and existing.id != user_id:
            raise ConflictError("Username already exists")
        return await self.users.update(user_id, {"username": request.username})

    # Administration

    async def admin_create_user(self, data: Dict[str, Any]) -> User:
        """
        Create an account on behalf of an administrator.

        Accounts created this way start with a verified email.

        @param data: JSON body with username, email, password and optional isAdmin
        @return: The created user
        """
        request = parse(AdminUserCreate, data)
        self.check_password_policy(request.password)

        return await self.users.create(
            username=request.username,
            email=request.email,
            password_hash=hash_password(request.password),
            is_admin=request.is_admin,
            is_email_verified=True,
        )

    async def admin_update_user(self, user_id: int, data: Dict[str, Any]) -> User:
        """
        Apply an administrator's edits to an account.

        Score counters cannot be edited here; they belong to the scoring engine.

        @param user_id: Id of the user to edit
        @param data: JSON body with any of username, email, password, isAdmin, isEmailVerified
        @return: The updated user
        """
        fields = parse(AdminUserUpdate, data).model_dump(exclude_unset=True)

        if "password" in fields:
            fields["password_hash"] = hash_password(
                self.check_password_policy(fields.pop("password"))
            )
        if fields.get("is_email_verified"):
            fields["email_verification_token"] = None

        user = await self.users.update(user_id, fields)
        logger.info("user_updated", user_id=user_id, fields=sorted(data))
        return user
