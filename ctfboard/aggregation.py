"""
Read models derived from the users, challenges and submissions tables.

Nothing here is stored: every view is recomputed from current state on read.
"""

from typing import Any, Dict, List, Optional

from .config import CTFConfig
from .database import DatabaseManager
from .errors import NotFoundError, ValidationError

# Deterministic order for equal scores: earlier registration first
LEADERBOARD_ORDER = "score DESC, created_at ASC, id ASC"

CHALLENGE_STATS_QUERY = """
    WITH Solves AS (
        SELECT
            challenge_id,
            user_id,
            submitted_at,
            ROW_NUMBER() OVER (
                PARTITION BY challenge_id ORDER BY submitted_at ASC, id ASC
            ) AS solve_order
        FROM submissions
        WHERE is_correct = 1
    ),
    SolveCounts AS (
        SELECT challenge_id, COUNT(DISTINCT user_id) AS solve_count
        FROM Solves
        GROUP BY challenge_id
    ),
    Attempts AS (
        SELECT challenge_id, COUNT(*) AS total_submissions
        FROM submissions
        GROUP BY challenge_id
    )
    SELECT
        c.id,
        c.title,
        c.category,
        c.is_active,
        COALESCE(sc.solve_count, 0) AS solve_count,
        COALESCE(a.total_submissions, 0) AS total_submissions,
        fb.user_id AS first_blood_user_id,
        u.username AS first_blood_username,
        fb.submitted_at AS first_blood_at
    FROM challenges c
    LEFT JOIN SolveCounts sc ON sc.challenge_id = c.id
    LEFT JOIN Attempts a ON a.challenge_id = c.id
    LEFT JOIN Solves fb ON fb.challenge_id = c.id AND fb.solve_order = 1
    LEFT JOIN users u ON u.id = fb.user_id
"""


def percentage(part: int, whole: int) -> float:
    """Share of part in whole as a percentage, 0.0 when whole is zero."""
    if whole <= 0:
        return 0.0
    return round(part * 100.0 / whole, 1)


class Aggregator:
    """Leaderboard, progress and challenge statistics views."""

    def __init__(
        self,
        db: DatabaseManager,
        config: CTFConfig,
    ) -> None:
        self.db = db
        self.config = config

    def resolve_limit(self, raw_limit: Optional[Any]) -> int:
        """
        Turn a requested leaderboard size into a usable limit.

        @param raw_limit: Value from the query string, or None for the default
        @return: Positive limit clamped to the configured maximum
        """
        if raw_limit is None or raw_limit == "":
            return self.config.get("leaderboard", "default_limit")

        try:
            limit = int(raw_limit)
        except (TypeError, ValueError):
            raise ValidationError("limit must be an integer")

        if limit <= 0:
            raise ValidationError("limit must be positive")
        return min(limit, self.config.get("leaderboard", "max_limit"))

    async def leaderboard(
        self,
        limit: Optional[Any] = None,
    ) -> List[Dict[str, Any]]:
        """
        Rank players by score, highest first. Administrators are not ranked.

        Equal scores share a competition rank (1, 1, 3). Rank and tie markers
        are computed over all players before the limit is applied.

        @param limit: Maximum number of entries, defaults to the configured size
        @return: List of ranked player dictionaries
        """
        actual_limit = self.resolve_limit(limit)

        async with self.db.connect() as db:
            cursor = await db.execute(
                f"""
                SELECT
                    id,
                    username,
                    score,
                    challenges_solved,
                    RANK() OVER (ORDER BY score DESC) AS player_rank,
                    COUNT(*) OVER (PARTITION BY score) AS players_with_score
                FROM users
                WHERE is_admin = 0
                ORDER BY {LEADERBOARD_ORDER}
                LIMIT ?
            """,
                (actual_limit,),
            )
            rows = await cursor.fetchall()

        return [
            {
                "id": row["id"],
                "username": row["username"],
                "score": row["score"],
                "challengesSolved": row["challenges_solved"],
                "rank": row["player_rank"],
                "isTied": row["players_with_score"] > 1,
            }
            for row in rows
        ]

    async def user_rank(self, user_id: int) -> Optional[int]:
        """
        Get a player's competition rank (ties share a rank).

        @param user_id: Id of the player
        @return: 1-based rank, or None for administrators and unknown users
        """
        async with self.db.connect() as db:
            cursor = await db.execute(
                """
                SELECT 1 + (
                    SELECT COUNT(*) FROM users other
                    WHERE other.is_admin = 0 AND other.score > me.score
                )
                FROM users me
                WHERE me.id = ? AND me.is_admin = 0
            """,
                (user_id,),
            )
            row = await cursor.fetchone()
        return row[0] if row else None

    async def category_progress(self, user_id: int) -> List[Dict[str, Any]]:
        """
        Count solved and total active challenges per category for a user.

        @param user_id: Id of the user
        @return: List of {category, solved, total, percentage} sorted by category
        """
        async with self.db.connect() as db:
            cursor = await db.execute(
                """
                SELECT
                    c.category,
                    COUNT(*) AS total,
                    COUNT(s.challenge_id) AS solved
                FROM challenges c
                LEFT JOIN (
                    SELECT DISTINCT challenge_id
                    FROM submissions
                    WHERE user_id = ? AND is_correct = 1
                ) s ON s.challenge_id = c.id
                WHERE c.is_active = 1
                GROUP BY c.category
                ORDER BY c.category
            """,
                (user_id,),
            )
            rows = await cursor.fetchall()

        return [
            {
                "category": row["category"],
                "solved": row["solved"],
                "total": row["total"],
                "percentage": percentage(row["solved"], row["total"]),
            }
            for row in rows
        ]

    async def user_progress(self, user_id: int) -> Dict[str, Any]:
        """
        Summarize a user's progress across all active challenges.

        @param user_id: Id of the user
        @return: Dictionary of totals, success rate, rank and category progress
        """
        categories = await self.category_progress(user_id)

        async with self.db.connect() as db:
            cursor = await db.execute(
                """
                SELECT COUNT(*) AS total, COALESCE(SUM(is_correct), 0) AS correct
                FROM submissions
                WHERE user_id = ?
            """,
                (user_id,),
            )
            counts = await cursor.fetchone()

        total_challenges = sum(category["total"] for category in categories)
        solved_challenges = sum(category["solved"] for category in categories)

        return {
            "totalChallenges": total_challenges,
            "solvedChallenges": solved_challenges,
            "totalSubmissions": counts["total"],
            "correctSubmissions": counts["correct"],
            "successRate": percentage(counts["correct"], counts["total"]),
            "completion": percentage(solved_challenges, total_challenges),
            "rank": await self.user_rank(user_id),
            "categoryProgress": categories,
        }

    async def all_challenge_stats(
        self,
        active_only: bool = True,
    ) -> List[Dict[str, Any]]:
        """
        Get solve statistics for every challenge in a single query.

        @param active_only: Skip challenges hidden from players
        @return: List of challenge statistics dictionaries ordered by id
        """
        query = CHALLENGE_STATS_QUERY
        if active_only:
            query += " WHERE c.is_active = 1"
        query += " ORDER BY c.id"

        async with self.db.connect() as db:
            cursor = await db.execute(query)
            rows = await cursor.fetchall()
        return [self._stats_from_row(row) for row in rows]

    async def challenge_stats(self, challenge_id: int) -> Dict[str, Any]:
        """
        Get solve count, first blood and attempt count of one challenge.

        @param challenge_id: Id of the challenge
        @return: Challenge statistics dictionary
        """
        async with self.db.connect() as db:
            cursor = await db.execute(
                CHALLENGE_STATS_QUERY + " WHERE c.id = ?", (challenge_id,)
            )
            row = await cursor.fetchone()

        if row is None:
            raise NotFoundError("Challenge not found")
        return self._stats_from_row(row)

    @staticmethod
    def _stats_from_row(row: Any) -> Dict[str, Any]:
        first_blood = None
        if row["first_blood_user_id"] is not None:
            first_blood = {
                "userId": row["first_blood_user_id"],
                # None once the solver's account has been deleted
                "username": row["first_blood_username"],
                "solvedAt": row["first_blood_at"],
            }

        return {
            "challengeId": row["id"],
            "title": row["title"],
            "category": row["category"],
            "isActive": bool(row["is_active"]),
            "solveCount": row["solve_count"],
            "totalSubmissions": row["total_submissions"],
            "firstBlood": first_blood,
        }

    async def user_profile(self, user_id: int) -> Dict[str, Any]:
        """
        Build the public profile of a user.

        @param user_id: Id of the user
        @return: Dictionary with score, rank, solved challenges and category progress
        """
        async with self.db.connect() as db:
            cursor = await db.execute(
                "SELECT id, username, is_admin, score, challenges_solved, created_at "
                "FROM users WHERE id = ?",
                (user_id,),
            )
            user = await cursor.fetchone()
            if user is None:
                raise NotFoundError("User not found")

            cursor = await db.execute(
                """
                SELECT c.id, c.title, c.category, c.difficulty, s.points_awarded, s.submitted_at
                FROM submissions s
                JOIN challenges c ON c.id = s.challenge_id
                WHERE s.user_id = ? AND s.is_correct = 1
                ORDER BY s.submitted_at ASC, s.id ASC
            """,
                (user_id,),
            )
            solves = await cursor.fetchall()

        return {
            "id": user["id"],
            "username": user["username"],
            "isAdmin": bool(user["is_admin"]),
            "score": user["score"],
            "challengesSolved": user["challenges_solved"],
            "memberSince": user["created_at"],
            "rank": await self.user_rank(user_id),
            "solvedChallenges": [
                {
                    "id": row["id"],
                    "title": row["title"],
                    "category": row["category"],
                    "difficulty": row["difficulty"],
                    "points": row["points_awarded"],
                    "solvedAt": row["submitted_at"],
                }
                for row in solves
            ],
            "categoryProgress": await self.category_progress(user_id),
        }
