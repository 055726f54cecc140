"""
Scoring engine: validates flag submissions and awards points exactly once.

A submission's solved-check, ledger append and score increment run as one
unit per (user, challenge) pair:

- an asyncio.Lock per pair serializes coroutines in this process,
- a BEGIN IMMEDIATE transaction serializes writers sharing the database file
  and hides partial updates from readers,
- the partial unique index on correct submissions rejects any second solve
  that slips past both.
"""

import asyncio
import hmac
import weakref
from typing import Any, Optional, Tuple

import aiosqlite
import structlog

from .challenges import ChallengeStore
from .database import DatabaseManager
from .errors import AlreadySolvedError, NotFoundError, ValidationError
from .ledger import SubmissionLedger
from .models import SubmissionResult, User
from .users import UserStore

logger = structlog.get_logger(__name__)

CORRECT_MESSAGE = "Correct flag! Points awarded."
INCORRECT_MESSAGE = "Incorrect flag. Try again!"
ALREADY_SOLVED_MESSAGE = "Challenge already solved"


def flags_match(submitted: str, expected: str) -> bool:
    """
    Compare a submitted flag with the stored one.

    Only surrounding whitespace of the submission is ignored; the comparison
    is otherwise exact and case-sensitive.

    @param submitted: Flag text as sent by the player
    @param expected: Stored challenge flag
    @return: True if the flags are equal
    """
    return hmac.compare_digest(
        submitted.strip().encode("utf-8"), expected.encode("utf-8")
    )


class ScoringEngine:
    """Validates submissions against the ledger and challenge store."""

    def __init__(
        self,
        db: DatabaseManager,
        users: UserStore,
        challenges: ChallengeStore,
        ledger: SubmissionLedger,
        config: Any,
    ) -> None:
        self.db = db
        self.users = users
        self.challenges = challenges
        self.ledger = ledger
        self.config = config
        self._locks: "weakref.WeakValueDictionary[Tuple[int, int], asyncio.Lock]" = (
            weakref.WeakValueDictionary()
        )

    def _lock_for(self, user_id: int, challenge_id: int) -> asyncio.Lock:
        key = (user_id, challenge_id)
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    def _validate_flag(self, flag_text: Optional[str]) -> str:
        if not isinstance(flag_text, str) or not flag_text.strip():
            raise ValidationError("Flag is required")

        max_length = self.config.get("scoring", "max_flag_length")
        if len(flag_text) > max_length:
            raise ValidationError(f"Flag too long (max {max_length} characters)")
        return flag_text

    async def submit_flag(
        self,
        user_id: int,
        challenge_id: int,
        flag_text: Optional[str],
    ) -> SubmissionResult:
        """
        Validate a flag and record the attempt.

        Every call that gets past validation appends exactly one ledger row.
        Rejected calls (ValidationError, NotFoundError, AlreadySolvedError)
        write nothing.

        @param user_id: Id of the submitting user
        @param challenge_id: Id of the target challenge
        @param flag_text: Flag as submitted
        @return: Outcome with the points awarded and a display message
        """
        flag_text = self._validate_flag(flag_text)

        async with self._lock_for(user_id, challenge_id):
            async with self.db.transaction() as conn:
                challenge = await self.challenges.get(challenge_id, conn=conn)
                if challenge is None or not challenge.is_active:
                    raise NotFoundError("Challenge not found")

                if await self.users.get(user_id, conn=conn) is None:
                    raise NotFoundError("User not found")

                if await self.ledger.has_solved(user_id, challenge_id, conn=conn):
                    logger.info(
                        "duplicate_solve_rejected",
                        user_id=user_id,
                        challenge_id=challenge_id,
                    )
                    raise AlreadySolvedError(ALREADY_SOLVED_MESSAGE)

                is_correct = flags_match(flag_text, challenge.flag)
                points = challenge.points if is_correct else 0

                try:
                    submission = await self.ledger.append(
                        user_id,
                        challenge_id,
                        flag_text,
                        is_correct,
                        points,
                        conn=conn,
                    )
                except aiosqlite.IntegrityError:
                    logger.warning(
                        "duplicate_solve_blocked_by_index",
                        user_id=user_id,
                        challenge_id=challenge_id,
                    )
                    raise AlreadySolvedError(ALREADY_SOLVED_MESSAGE)

                if is_correct:
                    await self.users.increment_score(user_id, points, conn=conn)

        logger.info(
            "flag_submitted",
            user_id=user_id,
            challenge_id=challenge_id,
            submission_id=submission.id,
            correct=is_correct,
            points=points,
        )

        return SubmissionResult(
            is_correct=is_correct,
            points_awarded=points,
            message=CORRECT_MESSAGE if is_correct else INCORRECT_MESSAGE,
            submission=submission,
        )

    async def rescore_user(self, user_id: int) -> User:
        """
        Rebuild a user's cached score and solve count from the ledger.

        @param user_id: Id of the user to rescore
        @return: The user with recomputed counters
        """
        async with self.db.transaction() as conn:
            user = await self.users.get(user_id, conn=conn)
            if user is None:
                raise NotFoundError("User not found")

            score, solved = await self.ledger.solve_totals(user_id, conn=conn)
            await self.users.set_score_totals(user_id, score, solved, conn=conn)

        if (score, solved) != (user.score, user.challenges_solved):
            logger.warning(
                "user_rescored",
                user_id=user_id,
                old_score=user.score,
                new_score=score,
                old_solved=user.challenges_solved,
                new_solved=solved,
            )
        return await self.users.get(user_id)
