"""Tests for flag submission and exactly-once scoring."""

import asyncio
import random

import pytest

from ctfboard.database import DatabaseManager
from ctfboard.errors import AlreadySolvedError, NotFoundError, ValidationError
from ctfboard.scoring import ScoringEngine, flags_match


class TestFlagComparison:
    def test_exact_match(self):
        assert flags_match("FLAG{x}", "FLAG{x}")

    def test_case_sensitive(self):
        assert not flags_match("flag{x}", "FLAG{x}")

    def test_surrounding_whitespace_is_trimmed(self):
        assert flags_match("  FLAG{x}\n", "FLAG{x}")

    def test_inner_whitespace_is_significant(self):
        assert not flags_match("FLAG{ x}", "FLAG{x}")


class TestSubmitFlag:
    async def test_example_scenario(self, system, make_user, make_challenge):
        """Wrong case is rejected, padded flag is accepted, replay is refused."""
        user = await make_user()
        challenge = await make_challenge(points=100, flag="FLAG{x}")

        result = await system.scoring.submit_flag(user.id, challenge.id, "flag{x}")
        assert result.is_correct is False
        assert result.points_awarded == 0

        result = await system.scoring.submit_flag(user.id, challenge.id, " FLAG{x} ")
        assert result.is_correct is True
        assert result.points_awarded == 100

        user = await system.users.get(user.id)
        assert user.score == 100
        assert user.challenges_solved == 1

        with pytest.raises(AlreadySolvedError):
            await system.scoring.submit_flag(user.id, challenge.id, "FLAG{x}")

        user = await system.users.get(user.id)
        assert user.score == 100
        assert user.challenges_solved == 1

    async def test_every_accepted_attempt_is_recorded(self, system, make_user, make_challenge):
        user = await make_user()
        challenge = await make_challenge(flag="FLAG{ok}")

        await system.scoring.submit_flag(user.id, challenge.id, "nope")
        await system.scoring.submit_flag(user.id, challenge.id, "still nope")
        await system.scoring.submit_flag(user.id, challenge.id, " FLAG{ok}")

        rows = await system.ledger.list_by_challenge(challenge.id)
        assert [row.flag_text for row in rows] == ["nope", "still nope", " FLAG{ok}"]
        assert [row.is_correct for row in rows] == [False, False, True]
        assert [row.points_awarded for row in rows] == [0, 0, challenge.points]

    async def test_rejected_attempt_after_solve_writes_nothing(
        self, system, make_user, make_challenge
    ):
        user = await make_user()
        challenge = await make_challenge(flag="FLAG{ok}")
        await system.scoring.submit_flag(user.id, challenge.id, "FLAG{ok}")

        with pytest.raises(AlreadySolvedError):
            await system.scoring.submit_flag(user.id, challenge.id, "wrong anyway")

        assert len(await system.ledger.list_by_user(user.id)) == 1

    async def test_incorrect_flag_changes_no_score(self, system, make_user, make_challenge):
        user = await make_user()
        challenge = await make_challenge()

        await system.scoring.submit_flag(user.id, challenge.id, "FLAG{wrong}")

        user = await system.users.get(user.id)
        assert user.score == 0
        assert user.challenges_solved == 0

    @pytest.mark.parametrize("flag", [None, "", "   ", 42])
    async def test_missing_flag_is_validation_error(
        self, system, make_user, make_challenge, flag
    ):
        user = await make_user()
        challenge = await make_challenge()

        with pytest.raises(ValidationError):
            await system.scoring.submit_flag(user.id, challenge.id, flag)

        assert await system.ledger.list_by_user(user.id) == []

    async def test_overlong_flag_is_validation_error(self, system, make_user, make_challenge):
        user = await make_user()
        challenge = await make_challenge()
        too_long = "A" * (system.config.get("scoring", "max_flag_length") + 1)

        with pytest.raises(ValidationError):
            await system.scoring.submit_flag(user.id, challenge.id, too_long)

        assert await system.ledger.list_by_user(user.id) == []

    async def test_unknown_challenge_is_not_found(self, system, make_user):
        user = await make_user()

        with pytest.raises(NotFoundError):
            await system.scoring.submit_flag(user.id, 999, "FLAG{x}")

        assert await system.ledger.list_by_user(user.id) == []

    async def test_inactive_challenge_is_not_found(self, system, make_user, make_challenge):
        user = await make_user()
        challenge = await make_challenge(flag="FLAG{hidden}", is_active=False)

        with pytest.raises(NotFoundError):
            await system.scoring.submit_flag(user.id, challenge.id, "FLAG{hidden}")

        assert await system.ledger.list_by_user(user.id) == []

    async def test_deleted_challenge_is_not_found(self, system, make_user, make_challenge):
        user = await make_user()
        challenge = await make_challenge(flag="FLAG{gone}")
        await system.challenges.delete(challenge.id)

        with pytest.raises(NotFoundError):
            await system.scoring.submit_flag(user.id, challenge.id, "FLAG{gone}")

    async def test_unknown_user_is_not_found(self, system, make_challenge):
        challenge = await make_challenge(flag="FLAG{x}")

        with pytest.raises(NotFoundError):
            await system.scoring.submit_flag(12345, challenge.id, "FLAG{x}")

    async def test_points_edit_does_not_change_awarded_points(
        self, system, make_user, make_challenge
    ):
        user = await make_user()
        challenge = await make_challenge(points=100, flag="FLAG{x}")
        await system.scoring.submit_flag(user.id, challenge.id, "FLAG{x}")

        await system.challenges.update(challenge.id, {"points": 500})

        user = await system.users.get(user.id)
        assert user.score == 100
        assert await system.ledger.solve_totals(user.id) == (100, 1)


class TestConcurrentSubmissions:
    async def test_concurrent_correct_submissions_award_once(
        self, system, make_user, make_challenge
    ):
        user = await make_user()
        challenge = await make_challenge(points=250, flag="FLAG{race}")

        results = await asyncio.gather(
            *[
                system.scoring.submit_flag(user.id, challenge.id, "FLAG{race}")
                for _ in range(20)
            ],
            return_exceptions=True,
        )

        successes = [r for r in results if not isinstance(r, Exception)]
        rejections = [r for r in results if isinstance(r, AlreadySolvedError)]
        assert len(successes) == 1
        assert successes[0].is_correct
        assert len(rejections) == 19

        user = await system.users.get(user.id)
        assert user.score == 250
        assert user.challenges_solved == 1
        assert len(await system.ledger.list_by_challenge(challenge.id)) == 1

    async def test_engines_sharing_a_database_award_once(
        self, system, config, make_user, make_challenge
    ):
        """Two engines with separate locks still serialize through the database."""
        user = await make_user()
        challenge = await make_challenge(points=300, flag="FLAG{twin}")

        other_db = DatabaseManager(system.db_path, config)
        other_engine = ScoringEngine(
            other_db, system.users, system.challenges, system.ledger, config
        )

        engines = [system.scoring, other_engine] * 5
        results = await asyncio.gather(
            *[engine.submit_flag(user.id, challenge.id, "FLAG{twin}") for engine in engines],
            return_exceptions=True,
        )

        successes = [r for r in results if not isinstance(r, Exception)]
        assert len(successes) == 1
        assert all(isinstance(r, AlreadySolvedError) for r in results if r not in successes)

        user = await system.users.get(user.id)
        assert user.score == 300
        assert user.challenges_solved == 1

    async def test_concurrent_solves_of_different_challenges_all_count(
        self, system, make_user, make_challenge
    ):
        user = await make_user()
        challenges = [await make_challenge(points=10 * (i + 1)) for i in range(5)]

        await asyncio.gather(
            *[system.scoring.submit_flag(user.id, c.id, c.flag) for c in challenges]
        )

        user = await system.users.get(user.id)
        assert user.score == sum(c.points for c in challenges)
        assert user.challenges_solved == 5


class TestScoreInvariant:
    async def test_cached_score_matches_ledger_after_random_play(
        self, system, make_user, make_challenge
    ):
        rng = random.Random(1337)
        users = [await make_user() for _ in range(3)]
        challenges = [
            await make_challenge(points=rng.choice([50, 100, 250, 500])) for _ in range(4)
        ]
        expected = {user.id: set() for user in users}

        for _ in range(60):
            user = rng.choice(users)
            challenge = rng.choice(challenges)
            flag = challenge.flag if rng.random() < 0.4 else "FLAG{guess}"
            try:
                result = await system.scoring.submit_flag(user.id, challenge.id, flag)
            except AlreadySolvedError:
                assert challenge.id in expected[user.id]
                continue
            if result.is_correct:
                expected[user.id].add(challenge.id)

        points = {challenge.id: challenge.points for challenge in challenges}
        for user in users:
            stored = await system.users.get(user.id)
            assert stored.score == sum(points[c] for c in expected[user.id])
            assert stored.challenges_solved == len(expected[user.id])
            assert await system.ledger.solve_totals(user.id) == (
                stored.score,
                stored.challenges_solved,
            )

    async def test_rescore_repairs_drifted_counters(self, system, make_user, make_challenge):
        user = await make_user()
        challenge = await make_challenge(points=100)
        await system.scoring.submit_flag(user.id, challenge.id, challenge.flag)

        await system.users.set_score_totals(user.id, 9999, 42)
        repaired = await system.scoring.rescore_user(user.id)

        assert repaired.score == 100
        assert repaired.challenges_solved == 1

    async def test_rescore_unknown_user(self, system):
        with pytest.raises(NotFoundError):
            await system.scoring.rescore_user(404)
