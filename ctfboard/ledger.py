"""
Submission ledger: the append-only record of every flag attempt.

Rows are never updated or deleted. The ledger id is the insertion sequence
and breaks ties between submissions sharing a timestamp.
"""

from typing import List, Optional, Set, Tuple

import aiosqlite

from .database import DatabaseManager, utcnow_iso
from .models import Submission


class SubmissionLedger:
    """Append-only access to the submissions table."""

    def __init__(self, db: DatabaseManager) -> None:
        self.db = db

    async def append(
        self,
        user_id: int,
        challenge_id: int,
        flag_text: str,
        is_correct: bool,
        points_awarded: int = 0,
        conn: Optional[aiosqlite.Connection] = None,
    ) -> Submission:
        """
        Record one flag attempt.

        Raises aiosqlite.IntegrityError when a second correct row for the same
        user and challenge is appended on the caller's connection.

        @param user_id: Id of the submitting user
        @param challenge_id: Id of the target challenge
        @param flag_text: Flag exactly as submitted
        @param is_correct: Outcome of the comparison
        @param points_awarded: Points credited by this attempt, 0 when incorrect
        @param conn: Connection of an enclosing transaction, if any
        @return: The stored submission
        """
        submitted_at = utcnow_iso()
        async with self.db.use(conn) as db:
            cursor = await db.execute(
                "INSERT INTO submissions (user_id, challenge_id, flag_text, "
                "is_correct, points_awarded, submitted_at) VALUES (?, ?, ?, ?, ?, ?)",
                (
                    user_id,
                    challenge_id,
                    flag_text,
                    int(is_correct),
                    points_awarded,
                    submitted_at,
                ),
            )
            submission_id = cursor.lastrowid

        return Submission(
            id=submission_id,
            user_id=user_id,
            challenge_id=challenge_id,
            flag_text=flag_text,
            is_correct=is_correct,
            points_awarded=points_awarded,
            submitted_at=submitted_at,
        )

    async def has_solved(
        self,
        user_id: int,
        challenge_id: int,
        conn: Optional[aiosqlite.Connection] = None,
    ) -> bool:
        """
        Check for a committed (or same-transaction) correct submission.

        @param user_id: Id of the user
        @param challenge_id: Id of the challenge
        @param conn: Connection of an enclosing transaction, if any
        @return: True if the user already solved the challenge
        """
        async with self.db.use(conn) as db:
            cursor = await db.execute(
                "SELECT 1 FROM submissions "
                "WHERE user_id = ? AND challenge_id = ? AND is_correct = 1 LIMIT 1",
                (user_id, challenge_id),
            )
            row = await cursor.fetchone()
        return row is not None

    async def list_by_user(self, user_id: int) -> List[Submission]:
        """
        Get a user's submissions in insertion order.

        @param user_id: Id of the user
        @return: List of submissions
        """
        return await self._list("user_id", user_id)

    async def list_by_challenge(self, challenge_id: int) -> List[Submission]:
        """
        Get a challenge's submissions in insertion order.

        @param challenge_id: Id of the challenge
        @return: List of submissions
        """
        return await self._list("challenge_id", challenge_id)

    async def _list(self, column: str, value: int) -> List[Submission]:
        async with self.db.connect() as db:
            cursor = await db.execute(
                f"SELECT * FROM submissions WHERE {column} = ? ORDER BY id ASC",
                (value,),
            )
            rows = await cursor.fetchall()
        return [Submission.from_row(row) for row in rows]

    async def solved_challenge_ids(self, user_id: int) -> Set[int]:
        async with self.db.connect() as db:
            cursor = await db.execute(
                "SELECT DISTINCT challenge_id FROM submissions "
                "WHERE user_id = ? AND is_correct = 1",
                (user_id,),
            )
            rows = await cursor.fetchall()
        return {row[0] for row in rows}

    async def solve_totals(
        self,
        user_id: int,
        conn: Optional[aiosqlite.Connection] = None,
    ) -> Tuple[int, int]:
        """
        Sum the points and count the distinct challenges a user solved.

        @param user_id: Id of the user
        @param conn: Connection of an enclosing transaction, if any
        @return: Tuple of (score, challenges_solved) derived from the ledger
        """
        async with self.db.use(conn) as db:
            cursor = await db.execute(
                "SELECT COALESCE(SUM(points_awarded), 0), COUNT(DISTINCT challenge_id) "
                "FROM submissions WHERE user_id = ? AND is_correct = 1",
                (user_id,),
            )
            row = await cursor.fetchone()
        return row[0], row[1]
