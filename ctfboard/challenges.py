"""
Challenge store: challenge definitions and their secret flags.
"""

from typing import Any, Dict, List, Optional

import aiosqlite
import structlog

from .database import DatabaseManager, utcnow_iso
from .errors import NotFoundError
from .models import Challenge
from .schemas import ChallengeCreate, ChallengeUpdate, parse

logger = structlog.get_logger(__name__)

class ChallengeStore:
    """Keyed access to challenge definitions."""

    def __init__(self, db: DatabaseManager) -> None:
        self.db = db

    async def get(
        self,
        challenge_id: int,
        conn: Optional[aiosqlite.Connection] = None,
    ) -> Optional[Challenge]:
        """
        Get a challenge, including its flag.

        @param challenge_id: Id of the challenge
        @param conn: Connection of an enclosing transaction, if any
        @return: The challenge, or None if it does not exist
        """
        async with self.db.use(conn) as db:
            cursor = await db.execute(
                "SELECT * FROM challenges WHERE id = ?", (challenge_id,)
            )
            row = await cursor.fetchone()
        return Challenge.from_row(row) if row else None

    async def list(
        self,
        active_only: bool = False,
    ) -> List[Challenge]:
        """
        Get challenges ordered by category, points and id.

        @param active_only: Skip challenges hidden from players
        @return: List of challenges
        """
        query = "SELECT * FROM challenges"
        if active_only:
            query += " WHERE is_active = 1"
        query += " ORDER BY category ASC, points ASC, id ASC"

        async with self.db.connect() as db:
            cursor = await db.execute(query)
            rows = await cursor.fetchall()
        return [Challenge.from_row(row) for row in rows]

    async def count(self) -> int:
        async with self.db.connect() as db:
            cursor = await db.execute("SELECT COUNT(*) FROM challenges")
            row = await cursor.fetchone()
        return row[0]

    async def create(self, data: Dict[str, Any]) -> Challenge:
        """
        Create a challenge.

        @param data: Challenge body, camelCase or column-named keys
        @return: The created challenge
        """
        fields = parse(ChallengeCreate, data).model_dump(mode="json")
        now = utcnow_iso()
        fields["created_at"] = now
        fields["updated_at"] = now

        columns = ", ".join(fields)
        placeholders = ", ".join("?" for _ in fields)
        async with self.db.connect() as db:
            cursor = await db.execute(
                f"INSERT INTO challenges ({columns}) VALUES ({placeholders})",
                tuple(fields.values()),
            )
            challenge_id = cursor.lastrowid

        logger.info(
            "challenge_created",
            challenge_id=challenge_id,
            title=fields["title"],
            points=fields["points"],
        )
        return await self.get(challenge_id)

    async def update(
        self,
        challenge_id: int,
        data: Dict[str, Any],
    ) -> Challenge:
        """
        Update a challenge. Points already awarded are not changed.

        @param challenge_id: Id of the challenge to update
        @param data: Fields to change, camelCase or column-named keys
        @return: The updated challenge
        """
        fields = parse(ChallengeUpdate, data).model_dump(mode="json", exclude_unset=True)
        fields["updated_at"] = utcnow_iso()

        assignments = ", ".join(f"{column} = ?" for column in fields)
        async with self.db.connect() as db:
            cursor = await db.execute(
                f"UPDATE challenges SET {assignments} WHERE id = ?",
                (*fields.values(), challenge_id),
            )
            if cursor.rowcount == 0:
                raise NotFoundError("Challenge not found")

        logger.info("challenge_updated", challenge_id=challenge_id, fields=sorted(data))
        return await self.get(challenge_id)

    async def delete(self, challenge_id: int) -> None:
        """
        Delete a challenge. Its ledger rows stay as historical facts.

        @param challenge_id: Id of the challenge to delete
        """
        async with self.db.connect() as db:
            cursor = await db.execute(
                "DELETE FROM challenges WHERE id = ?", (challenge_id,)
            )
            if cursor.rowcount == 0:
                raise NotFoundError("Challenge not found")
        logger.info("challenge_deleted", challenge_id=challenge_id)
