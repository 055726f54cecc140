"""Tests for leaderboard, progress and challenge statistics read models."""

import pytest

from ctfboard.aggregation import percentage
from ctfboard.errors import NotFoundError, ValidationError


class TestPercentage:
    def test_percentage_of_zero_total(self):
        assert percentage(0, 0) == 0.0

    def test_percentage_rounds_to_one_decimal(self):
        assert percentage(1, 3) == 33.3
        assert percentage(2, 2) == 100.0


class TestLeaderboard:
    async def test_sorted_by_score_descending(self, system, make_user):
        low = await make_user("low")
        high = await make_user("high")
        mid = await make_user("mid")
        await system.users.set_score_totals(low.id, 100, 1)
        await system.users.set_score_totals(high.id, 900, 3)
        await system.users.set_score_totals(mid.id, 400, 2)

        board = await system.aggregator.leaderboard()

        assert [e["username"] for e in board] == ["high", "mid", "low"]
        assert [e["rank"] for e in board] == [1, 2, 3]
        assert board[0] == {
            "id": high.id,
            "username": "high",
            "score": 900,
            "challengesSolved": 3,
            "rank": 1,
            "isTied": False,
        }

    async def test_equal_scores_keep_registration_order(self, system, make_user):
        first = await make_user("first")
        second = await make_user("second")
        await system.users.set_score_totals(second.id, 500, 2)
        await system.users.set_score_totals(first.id, 500, 2)

        for _ in range(3):
            board = await system.aggregator.leaderboard()
            assert [e["id"] for e in board] == [first.id, second.id]
            assert [e["rank"] for e in board] == [1, 1]

    async def test_competition_rank_and_tie_markers(self, system, make_user):
        scores = [500, 500, 300, 100]
        for score in scores:
            user = await make_user()
            await system.users.set_score_totals(user.id, score, 1)

        board = await system.aggregator.leaderboard()
        assert [e["rank"] for e in board] == [1, 1, 3, 4]
        assert [e["isTied"] for e in board] == [True, True, False, False]

    async def test_tie_is_reported_beyond_the_limit(self, system, make_user):
        for _ in range(2):
            user = await make_user()
            await system.users.set_score_totals(user.id, 500, 2)

        board = await system.aggregator.leaderboard(1)
        assert len(board) == 1
        assert board[0]["rank"] == 1
        assert board[0]["isTied"] is True

    async def test_admins_are_excluded(self, system, make_user):
        admin = await make_user("root", is_admin=True)
        await system.users.set_score_totals(admin.id, 10_000, 10)
        await make_user("player")

        board = await system.aggregator.leaderboard()
        assert [e["username"] for e in board] == ["player"]

    async def test_limit(self, system, make_user):
        for _ in range(5):
            await make_user()

        assert len(await system.aggregator.leaderboard(2)) == 2
        assert len(await system.aggregator.leaderboard("3")) == 3

    async def test_limit_is_clamped(self, system, make_user):
        await make_user()
        assert system.aggregator.resolve_limit(10_000) == system.config.get(
            "leaderboard", "max_limit"
        )
        assert system.aggregator.resolve_limit(None) == system.config.get(
            "leaderboard", "default_limit"
        )

    @pytest.mark.parametrize("limit", [0, -1, "ten"])
    async def test_invalid_limit(self, system, limit):
        with pytest.raises(ValidationError):
            await system.aggregator.leaderboard(limit)

    async def test_user_rank(self, system, make_user):
        a = await make_user()
        b = await make_user()
        c = await make_user()
        admin = await make_user(is_admin=True)
        await system.users.set_score_totals(a.id, 300, 1)
        await system.users.set_score_totals(b.id, 300, 1)
        await system.users.set_score_totals(c.id, 100, 1)

        assert await system.aggregator.user_rank(a.id) == 1
        assert await system.aggregator.user_rank(b.id) == 1
        assert await system.aggregator.user_rank(c.id) == 3
        assert await system.aggregator.user_rank(admin.id) is None


class TestCategoryProgress:
    async def test_true_per_category_counts(self, system, make_user, make_challenge):
        user = await make_user()
        web1 = await make_challenge(category="Web")
        await make_challenge(category="Web")
        crypto = await make_challenge(category="Crypto")
        await make_challenge(category="Pwn")

        await system.scoring.submit_flag(user.id, web1.id, web1.flag)
        await system.scoring.submit_flag(user.id, crypto.id, crypto.flag)

        progress = await system.aggregator.category_progress(user.id)

        assert progress == [
            {"category": "Crypto", "solved": 1, "total": 1, "percentage": 100.0},
            {"category": "Pwn", "solved": 0, "total": 1, "percentage": 0.0},
            {"category": "Web", "solved": 1, "total": 2, "percentage": 50.0},
        ]

    async def test_no_challenges(self, system, make_user):
        user = await make_user()
        assert await system.aggregator.category_progress(user.id) == []

    async def test_inactive_challenges_are_ignored(self, system, make_user, make_challenge):
        user = await make_user()
        await make_challenge(category="Web")
        await make_challenge(category="Hidden", is_active=False)

        progress = await system.aggregator.category_progress(user.id)
        assert [p["category"] for p in progress] == ["Web"]

    async def test_user_progress_summary(self, system, make_user, make_challenge):
        user = await make_user()
        solved = await make_challenge(category="Web")
        await make_challenge(category="Web")

        await system.scoring.submit_flag(user.id, solved.id, "FLAG{wrong}")
        await system.scoring.submit_flag(user.id, solved.id, solved.flag)

        progress = await system.aggregator.user_progress(user.id)

        assert progress["totalChallenges"] == 2
        assert progress["solvedChallenges"] == 1
        assert progress["totalSubmissions"] == 2
        assert progress["correctSubmissions"] == 1
        assert progress["successRate"] == 50.0
        assert progress["completion"] == 50.0
        assert progress["rank"] == 1
        assert progress["categoryProgress"][0]["solved"] == 1

    async def test_user_progress_without_submissions(self, system, make_user):
        user = await make_user()
        progress = await system.aggregator.user_progress(user.id)
        assert progress["successRate"] == 0.0
        assert progress["completion"] == 0.0


class TestChallengeStats:
    async def test_first_blood_and_counts(self, system, make_user, make_challenge):
        alice = await make_user("alice")
        bob = await make_user("bob")
        carol = await make_user("carol")
        challenge = await make_challenge(flag="FLAG{stats}")

        await system.scoring.submit_flag(carol.id, challenge.id, "FLAG{nope}")
        await system.scoring.submit_flag(bob.id, challenge.id, "FLAG{stats}")
        await system.scoring.submit_flag(alice.id, challenge.id, "FLAG{stats}")

        stats = await system.aggregator.challenge_stats(challenge.id)

        assert stats["solveCount"] == 2
        assert stats["totalSubmissions"] == 3
        assert stats["firstBlood"]["username"] == "bob"
        assert stats["firstBlood"]["userId"] == bob.id

    async def test_unsolved_challenge(self, system, make_challenge):
        challenge = await make_challenge()
        stats = await system.aggregator.challenge_stats(challenge.id)
        assert stats["solveCount"] == 0
        assert stats["totalSubmissions"] == 0
        assert stats["firstBlood"] is None

    async def test_unknown_challenge(self, system):
        with pytest.raises(NotFoundError):
            await system.aggregator.challenge_stats(999)

    async def test_all_challenge_stats(self, system, make_user, make_challenge):
        user = await make_user()
        first = await make_challenge()
        second = await make_challenge()
        await make_challenge(is_active=False)
        await system.scoring.submit_flag(user.id, second.id, second.flag)

        stats = await system.aggregator.all_challenge_stats()

        assert [s["challengeId"] for s in stats] == [first.id, second.id]
        assert stats[1]["solveCount"] == 1
        assert len(await system.aggregator.all_challenge_stats(active_only=False)) == 3

    async def test_first_blood_of_deleted_user(self, system, make_user, make_challenge):
        user = await make_user()
        challenge = await make_challenge()
        await system.scoring.submit_flag(user.id, challenge.id, challenge.flag)
        await system.users.delete(user.id)

        stats = await system.aggregator.challenge_stats(challenge.id)
        assert stats["solveCount"] == 1
        assert stats["firstBlood"]["userId"] == user.id
        assert stats["firstBlood"]["username"] is None


class TestUserProfile:
    async def test_profile(self, system, make_user, make_challenge):
        user = await make_user("dave")
        challenge = await make_challenge(points=250, category="Crypto")
        await system.scoring.submit_flag(user.id, challenge.id, challenge.flag)

        profile = await system.aggregator.user_profile(user.id)

        assert profile["username"] == "dave"
        assert profile["score"] == 250
        assert profile["rank"] == 1
        assert profile["solvedChallenges"][0]["id"] == challenge.id
        assert profile["solvedChallenges"][0]["points"] == 250
        assert "email" not in profile

    async def test_unknown_profile(self, system):
        with pytest.raises(NotFoundError):
            await system.aggregator.user_profile(999)
