"""
Web route handlers and middlewares for the CTF platform JSON API.
"""

import json
from typing import Any, Awaitable, Callable, Dict

import structlog
from aiohttp import web

from .aggregation import Aggregator
from .auth import AuthService
from .challenges import ChallengeStore
from .database import SQLITE_MAX_INTEGER
from .errors import (
    AuthenticationError,
    CTFError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from .ledger import SubmissionLedger
from .models import User
from .schemas import SubmitFlagRequest, parse
from .scoring import ScoringEngine
from .users import UserStore

logger = structlog.get_logger(__name__)

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]


@web.middleware
async def error_middleware(
    request: web.Request,
    handler: Handler,
) -> web.StreamResponse:
    """
    Render platform errors as JSON with their HTTP status.

    @param request: Incoming request
    @param handler: Next handler in the chain
    @return: Handler response or JSON error response
    """
    try:
        return await handler(request)
    except CTFError as e:
        return web.json_response({"message": e.message}, status=e.status)
    except web.HTTPException as e:
        if e.status >= 400:
            return web.json_response({"message": e.reason}, status=e.status)
        raise
    except Exception as e:
        logger.error(
            "unhandled_exception",
            path=request.path,
            method=request.method,
            error=str(e),
            exc_info=e,
        )
        return web.json_response({"message": "Internal server error"}, status=500)


def bearer_token(request: web.Request) -> str:
    header = request.headers.get("Authorization", "")
    if header.startswith("Bearer "):
        return header[len("Bearer "):].strip()
    return ""


def make_auth_middleware(auth: AuthService) -> Any:
    """
    Build a middleware that attaches the session's user to the request.

    Requests without a valid session continue anonymously; handlers decide
    whether authentication is required.

    @param auth: Auth service resolving bearer tokens
    @return: aiohttp middleware
    """

    @web.middleware
    async def auth_middleware(
        request: web.Request,
        handler: Handler,
    ) -> web.StreamResponse:
        request["token"] = bearer_token(request)
        request["user"] = await auth.authenticate(request["token"])
        return await handler(request)

    return auth_middleware


class WebHandlers:
    """Handles web routes and responses."""

    def __init__(
        self,
        config: Any,
        auth: AuthService,
        users: UserStore,
        challenges: ChallengeStore,
        ledger: SubmissionLedger,
        scoring: ScoringEngine,
        aggregator: Aggregator,
    ) -> None:
        self.config = config
        self.auth = auth
        self.users = users
        self.challenges = challenges
        self.ledger = ledger
        self.scoring = scoring
        self.aggregator = aggregator

    # Helpers

    @staticmethod
    def require_user(request: web.Request) -> User:
        user = request.get("user")
        if user is None:
            raise AuthenticationError("Authentication required")
        return user

    def require_admin(self, request: web.Request) -> User:
        user = self.require_user(request)
        if not user.is_admin:
            raise PermissionDeniedError("Admin access required")
        return user

    @staticmethod
    async def json_body(request: web.Request) -> Dict[str, Any]:
        """
        Parse the request body as a JSON object.

        @param request: HTTP request
        @return: Decoded JSON object
        """
        try:
            body = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            raise ValidationError("Request body must be valid JSON")
        if not isinstance(body, dict):
            raise ValidationError("Request body must be a JSON object")
        return body

    @staticmethod
    def path_id(request: web.Request) -> int:
        """
        Read the numeric id of the route.

        The route pattern only admits digits; ids beyond SQLite's INTEGER range
        cannot name a stored row.

        @param request: HTTP request matched on an {id} route
        @return: The id as an int
        """
        value = int(request.match_info["id"])
        if value > SQLITE_MAX_INTEGER:
            raise NotFoundError("Not found")
        return value

    @staticmethod
    def session_response(user: User, token: str) -> web.Response:
        return web.json_response({"user": user.to_dict(), "sessionId": token})

    # Auth

    async def auth_register(self, request: web.Request) -> web.Response:
        """
        Register a player account.

        @param request: HTTP request with username, email and password
        @return: JSON response with the new user and a session id
        """
        body = await self.json_body(request)
        user, token = await self.auth.register(
            body.get("username"), body.get("email"), body.get("password")
        )
        return self.session_response(user, token)

    async def auth_login(self, request: web.Request) -> web.Response:
        body = await self.json_body(request)
        user, token = await self.auth.login(body.get("username"), body.get("password"))
        return self.session_response(user, token)

    async def auth_logout(self, request: web.Request) -> web.Response:
        self.require_user(request)
        await self.auth.logout(request["token"])
        return web.json_response({"message": "Logged out successfully"})

    async def auth_me(self, request: web.Request) -> web.Response:
        return web.json_response(self.require_user(request).to_dict())

    async def verify_email(self, request: web.Request) -> web.Response:
        """
        Confirm an email address from the emailed link.

        @param request: HTTP request containing the verification token
        @return: JSON confirmation message
        """
        user = await self.auth.verify_email(request.match_info["token"])
        return web.json_response(
            {"message": "Email verified successfully", "username": user.username}
        )

    # Challenges

    async def challenges_list(self, request: web.Request) -> web.Response:
        """
        List challenges.

        Players see active challenges without flags, plus whether they solved
        each one. Administrators see everything, flags included.

        @param request: HTTP request, optionally authenticated
        @return: JSON list of challenges
        """
        user = request.get("user")
        is_admin = user is not None and user.is_admin

        challenges = await self.challenges.list(active_only=not is_admin)
        solved = await self.ledger.solved_challenge_ids(user.id) if user else set()

        payload = []
        for challenge in challenges:
            data = challenge.to_dict(include_flag=is_admin)
            if user is not None:
                data["solved"] = challenge.id in solved
            payload.append(data)
        return web.json_response(payload)

    async def challenge_detail(self, request: web.Request) -> web.Response:
        challenge = await self.challenges.get(self.path_id(request))
        if challenge is None or not challenge.is_active:
            raise NotFoundError("Challenge not found")

        data = challenge.to_dict()
        data["stats"] = await self.aggregator.challenge_stats(challenge.id)
        user = request.get("user")
        if user is not None:
            data["solved"] = await self.ledger.has_solved(user.id, challenge.id)
        return web.json_response(data)

    async def challenge_stats(self, request: web.Request) -> web.Response:
        challenge = await self.challenges.get(self.path_id(request))
        if challenge is None or not challenge.is_active:
            raise NotFoundError("Challenge not found")
        return web.json_response(await self.aggregator.challenge_stats(challenge.id))

    async def challenges_stats(self, _: web.Request) -> web.Response:
        return web.json_response(await self.aggregator.all_challenge_stats())

    async def challenge_submit(self, request: web.Request) -> web.Response:
        """
        Submit a flag for a challenge.

        @param request: Authenticated HTTP request with a {flag} body
        @return: JSON {correct, message, points?}
        """
        user = self.require_user(request)
        flag = parse(SubmitFlagRequest, await self.json_body(request)).flag
        result = await self.scoring.submit_flag(
            user.id, self.path_id(request), flag
        )
        return web.json_response(result.to_dict())

    # Leaderboard and player views

    async def leaderboard(self, request: web.Request) -> web.Response:
        """
        API endpoint for the overall leaderboard.

        @param request: HTTP request with optional limit query parameter
        @return: JSON list of ranked players
        """
        entries = await self.aggregator.leaderboard(request.query.get("limit"))
        return web.json_response(entries)

    async def user_submissions(self, request: web.Request) -> web.Response:
        user = self.require_user(request)
        submissions = await self.ledger.list_by_user(user.id)
        return web.json_response([submission.to_dict() for submission in submissions])

    async def user_progress(self, request: web.Request) -> web.Response:
        user = self.require_user(request)
        return web.json_response(await self.aggregator.user_progress(user.id))

    async def user_username(self, request: web.Request) -> web.Response:
        user = self.require_user(request)
        body = await self.json_body(request)
        updated = await self.auth.change_username(user.id, body.get("username"))
        return web.json_response(updated.to_dict())

    async def user_profile(self, request: web.Request) -> web.Response:
        return web.json_response(await self.aggregator.user_profile(self.path_id(request)))

    # Admin: challenges

    async def admin_challenges_list(self, request: web.Request) -> web.Response:
        self.require_admin(request)
        challenges = await self.challenges.list()
        return web.json_response([c.to_dict(include_flag=True) for c in challenges])

    async def admin_challenge_get(self, request: web.Request) -> web.Response:
        self.require_admin(request)
        challenge = await self.challenges.get(self.path_id(request))
        if challenge is None:
            raise NotFoundError("Challenge not found")
        return web.json_response(challenge.to_dict(include_flag=True))

    async def admin_challenge_create(self, request: web.Request) -> web.Response:
        self.require_admin(request)
        body = await self.json_body(request)
        challenge = await self.challenges.create(body)
        return web.json_response(challenge.to_dict(include_flag=True), status=201)

    async def admin_challenge_update(self, request: web.Request) -> web.Response:
        self.require_admin(request)
        body = await self.json_body(request)
        challenge = await self.challenges.update(
            self.path_id(request), body
        )
        return web.json_response(challenge.to_dict(include_flag=True))

    async def admin_challenge_delete(self, request: web.Request) -> web.Response:
        self.require_admin(request)
        await self.challenges.delete(self.path_id(request))
        return web.json_response({"message": "Challenge deleted"})

    # Admin: users

    async def admin_users_list(self, request: web.Request) -> web.Response:
        self.require_admin(request)
        users = await self.users.list()
        return web.json_response([user.to_dict() for user in users])

    async def admin_user_get(self, request: web.Request) -> web.Response:
        self.require_admin(request)
        user = await self.users.get(self.path_id(request))
        if user is None:
            raise NotFoundError("User not found")
        return web.json_response(user.to_dict())

    async def admin_user_create(self, request: web.Request) -> web.Response:
        self.require_admin(request)
        body = await self.json_body(request)
        user = await self.auth.admin_create_user(body)
        return web.json_response(user.to_dict(), status=201)

    async def admin_user_update(self, request: web.Request) -> web.Response:
        self.require_admin(request)
        body = await self.json_body(request)
        user = await self.auth.admin_update_user(self.path_id(request), body)
        return web.json_response(user.to_dict())

    async def admin_user_delete(self, request: web.Request) -> web.Response:
        admin = self.require_admin(request)
        user_id = self.path_id(request)
        if user_id == admin.id:
            raise ValidationError("You cannot delete your own account")
        await self.users.delete(user_id)
        return web.json_response({"message": "User deleted"})

    async def admin_user_rescore(self, request: web.Request) -> web.Response:
        """
        Recompute a user's cached score from the submission ledger.

        @param request: Admin HTTP request containing the user id
        @return: JSON of the rescored user
        """
        self.require_admin(request)
        user = await self.scoring.rescore_user(self.path_id(request))
        return web.json_response(user.to_dict())
