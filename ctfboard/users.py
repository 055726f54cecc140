"""
Identity store: user records and the denormalized score counters.
"""

from typing import Any, Dict, List, Optional

import aiosqlite
import structlog

from .database import DatabaseManager, utcnow_iso
from .errors import ConflictError, NotFoundError
from .models import User

logger = structlog.get_logger(__name__)

# Columns an update may touch. Score counters are not among them:
# only increment_score and set_score_totals change them.
UPDATABLE_FIELDS = (
    "username",
    "email",
    "password_hash",
    "is_admin",
    "is_email_verified",
    "email_verification_token",
)


def _conflict_from(error: aiosqlite.IntegrityError) -> ConflictError:
    text = str(error)
    if "users.username" in text:
        return ConflictError("Username already exists")
    if "users.email" in text:
        return ConflictError("Email already registered")
    return ConflictError("User already exists")


class UserStore:
    """Keyed access to user records."""

    def __init__(self, db: DatabaseManager) -> None:
        self.db = db

    async def get(
        self,
        user_id: int,
        conn: Optional[aiosqlite.Connection] = None,
    ) -> Optional[User]:
        """
        Get a user by id.

        @param user_id: Id of the user
        @param conn: Connection of an enclosing transaction, if any
        @return: The user, or None if no such user exists
        """
        return await self._get_one("id", user_id, conn)

    async def get_by_username(self, username: str) -> Optional[User]:
        return await self._get_one("username", username)

    async def get_by_email(self, email: str) -> Optional[User]:
        return await self._get_one("email", email)

    async def get_by_verification_token(self, token: str) -> Optional[User]:
        return await self._get_one("email_verification_token", token)

    async def _get_one(
        self,
        column: str,
        value: Any,
        conn: Optional[aiosqlite.Connection] = None,
    ) -> Optional[User]:
        async with self.db.use(conn) as db:
            cursor = await db.execute(
                f"SELECT * FROM users WHERE {column} = ?", (value,)
            )
            row = await cursor.fetchone()
        return User.from_row(row) if row else None

    async def list(self) -> List[User]:
        """
        Get all users in registration order.

        @return: List of users
        """
        async with self.db.connect() as db:
            cursor = await db.execute("SELECT * FROM users ORDER BY created_at ASC, id ASC")
            rows = await cursor.fetchall()
        return [User.from_row(row) for row in rows]

    async def create(
        self,
        username: str,
        email: str,
        password_hash: str,
        is_admin: bool = False,
        is_email_verified: bool = False,
        email_verification_token: Optional[str] = None,
    ) -> User:
        """
        Create a user with zero score.

        @param username: Unique display name
        @param email: Unique email address
        @param password_hash: Hash produced by the auth layer
        @param is_admin: Whether the user administers the platform
        @param is_email_verified: Whether the email is already confirmed
        @param email_verification_token: Pending verification token, if any
        @return: The created user
        """
        async with self.db.connect() as db:
            try:
                cursor = await db.execute(
                    "INSERT INTO users (username, email, password_hash, is_admin, "
                    "is_email_verified, email_verification_token, created_at) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?)",
                    (
                        username,
                        email,
                        password_hash,
                        int(is_admin),
                        int(is_email_verified),
                        email_verification_token,
                        utcnow_iso(),
                    ),
                )
            except aiosqlite.IntegrityError as e:
                raise _conflict_from(e) from e
            user_id = cursor.lastrowid

        user = await self.get(user_id)
        logger.info("user_created", user_id=user_id, username=username, is_admin=is_admin)
        return user

    async def update(
        self,
        user_id: int,
        fields: Dict[str, Any],
    ) -> User:
        """
        Update profile fields of a user.

        @param user_id: Id of the user to update
        @param fields: Mapping of column name to new value, limited to UPDATABLE_FIELDS
        @return: The updated user
        """
        unknown = set(fields) - set(UPDATABLE_FIELDS)
        if unknown:
            raise ValueError(f"Cannot update user fields: {sorted(unknown)}")

        if fields:
            assignments = ", ".join(f"{column} = ?" for column in fields)
            values = [
                int(v) if isinstance(v, bool) else v for v in fields.values()
            ]
            async with self.db.connect() as db:
                try:
                    cursor = await db.execute(
                        f"UPDATE users SET {assignments} WHERE id = ?",
                        (*values, user_id),
                    )
                except aiosqlite.IntegrityError as e:
                    raise _conflict_from(e) from e
                if cursor.rowcount == 0:
                    raise NotFoundError("User not found")

        user = await self.get(user_id)
        if user is None:
            raise NotFoundError("User not found")
        return user

    async def delete(self, user_id: int) -> None:
        """
        Delete a user and their sessions. Ledger rows are kept.

        @param user_id: Id of the user to delete
        """
        async with self.db.transaction() as db:
            cursor = await db.execute("DELETE FROM users WHERE id = ?", (user_id,))
            if cursor.rowcount == 0:
                raise NotFoundError("User not found")
            await db.execute("DELETE FROM sessions WHERE user_id = ?", (user_id,))
        logger.info("user_deleted", user_id=user_id)

    async def increment_score(
        self,
        user_id: int,
        points: int,
        conn: Optional[aiosqlite.Connection] = None,
    ) -> None:
        """
        Add one solve worth points to the user's counters.

        Score and solve count change in a single statement, so neither is
        ever visible without the other.

        @param user_id: Id of the user to credit
        @param points: Points of the solved challenge
        @param conn: Connection of an enclosing transaction, if any
        """
        async with self.db.use(conn) as db:
            cursor = await db.execute(
                "UPDATE users SET score = score + ?, "
                "challenges_solved = challenges_solved + 1 WHERE id = ?",
                (points, user_id),
            )
            if cursor.rowcount == 0:
                raise NotFoundError("User not found")

    async def set_score_totals(
        self,
        user_id: int,
        score: int,
        challenges_solved: int,
        conn: Optional[aiosqlite.Connection] = None,
    ) -> None:
        async with self.db.use(conn) as db:
            cursor = await db.execute(
                "UPDATE users SET score = ?, challenges_solved = ? WHERE id = ?",
                (score, challenges_solved, user_id),
            )
            if cursor.rowcount == 0:
                raise NotFoundError("User not found")
