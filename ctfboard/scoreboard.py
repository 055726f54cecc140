"""
Main ScoreboardSystem class that wires all components together.
"""

from typing import Optional

import aiohttp_cors
import structlog
from aiohttp import web, web_runner

from .aggregation import Aggregator
from .auth import AuthService
from .challenges import ChallengeStore
from .config import CTFConfig
from .database import DatabaseManager
from .ledger import SubmissionLedger
from .mailer import Mailer, Transport
from .scoring import ScoringEngine
from .seed import seed_admin, seed_demo_challenges
from .users import UserStore
from .web_handlers import WebHandlers, error_middleware, make_auth_middleware

logger = structlog.get_logger(__name__)


class ScoreboardSystem:
    """CTF platform: stores, scoring engine and the JSON web API."""

    def __init__(
        self,
        config: Optional[CTFConfig] = None,
        db_path: Optional[str] = None,
        mail_transport: Optional[Transport] = None,
    ) -> None:
        self.config = config or CTFConfig()
        self.db_path = db_path or self.config.get("database", "path")

        # Initialize components; every store shares the one database handle
        self.db = DatabaseManager(self.db_path, self.config)
        self.users = UserStore(self.db)
        self.challenges = ChallengeStore(self.db)
        self.ledger = SubmissionLedger(self.db)
        self.scoring = ScoringEngine(
            self.db, self.users, self.challenges, self.ledger, self.config
        )
        self.aggregator = Aggregator(self.db, self.config)
        self.mailer = Mailer(self.config, transport=mail_transport)
        self.auth = AuthService(self.db, self.users, self.mailer, self.config)
        self.web_handlers = WebHandlers(
            self.config,
            self.auth,
            self.users,
            self.challenges,
            self.ledger,
            self.scoring,
            self.aggregator,
        )

    async def init_db(self) -> None:
        """
        Initialize the database and seed bootstrap data.

        Creates database tables, the configured admin account and, when
        enabled, the demo challenges.
        """
        await self.db.init_db()
        await seed_admin(self.users, self.config)
        if self.config.get("seed", "demo_challenges"):
            await seed_demo_challenges(self.challenges)
        await self.auth.purge_expired_sessions()

    def create_app(self) -> web.Application:
        """
        Build the aiohttp application with every route and CORS enabled.

        @return: Configured aiohttp application
        """
        app = web.Application(
            middlewares=[error_middleware, make_auth_middleware(self.auth)]
        )
        h = self.web_handlers

        # Setup CORS
        cors = aiohttp_cors.setup(
            app,
            defaults={
                "*": aiohttp_cors.ResourceOptions(
                    allow_credentials=True,
                    expose_headers="*",
                    allow_headers="*",
                    allow_methods="*",
                )
            },
        )

        # Auth routes
        app.router.add_post("/api/auth/register", h.auth_register)
        app.router.add_post("/api/auth/login", h.auth_login)
        app.router.add_post("/api/auth/logout", h.auth_logout)
        app.router.add_get("/api/auth/me", h.auth_me)
        app.router.add_get("/api/auth/verify-email/{token}", h.verify_email)
        app.router.add_get("/verify-email/{token}", h.verify_email)

        # Challenge routes
        app.router.add_get("/api/challenges", h.challenges_list)
        app.router.add_get("/api/challenges/stats", h.challenges_stats)
        app.router.add_get("/api/challenges/{id:\\d+}", h.challenge_detail)
        app.router.add_get("/api/challenges/{id:\\d+}/stats", h.challenge_stats)
        app.router.add_post("/api/challenges/{id:\\d+}/submit", h.challenge_submit)

        # Leaderboard and player routes
        app.router.add_get("/api/leaderboard", h.leaderboard)
        app.router.add_get("/api/user/submissions", h.user_submissions)
        app.router.add_get("/api/user/progress", h.user_progress)
        app.router.add_put("/api/user/username", h.user_username)
        app.router.add_get("/api/user/profile/{id:\\d+}", h.user_profile)

        # Admin routes
        app.router.add_get("/api/admin/challenges", h.admin_challenges_list)
        app.router.add_post("/api/admin/challenges", h.admin_challenge_create)
        app.router.add_get("/api/admin/challenges/{id:\\d+}", h.admin_challenge_get)
        app.router.add_put("/api/admin/challenges/{id:\\d+}", h.admin_challenge_update)
        app.router.add_delete("/api/admin/challenges/{id:\\d+}", h.admin_challenge_delete)
        app.router.add_get("/api/admin/users", h.admin_users_list)
        app.router.add_post("/api/admin/users", h.admin_user_create)
        app.router.add_get("/api/admin/users/{id:\\d+}", h.admin_user_get)
        app.router.add_put("/api/admin/users/{id:\\d+}", h.admin_user_update)
        app.router.add_delete("/api/admin/users/{id:\\d+}", h.admin_user_delete)
        app.router.add_post("/api/admin/users/{id:\\d+}/rescore", h.admin_user_rescore)

        # Add CORS to all routes
        for route in list(app.router.routes()):
            cors.add(route)

        return app

    async def start_web_server(
        self,
        host: Optional[str] = None,
        port: Optional[int] = None,
    ) -> web_runner.AppRunner:
        """
        Start the web server.

        @param host: Host address to bind the server to (default uses configured host)
        @param port: Port number to use (default uses configured port)
        @return: AppRunner instance for the web server
        """
        if host is None:
            host = self.config.get("server", "host")
        if port is None:
            port = self.config.get("server", "port")

        app_runner = web_runner.AppRunner(self.create_app())
        await app_runner.setup()

        site = web_runner.TCPSite(app_runner, host, port)
        await site.start()

        logger.info("web_server_started", url=f"http://{host}:{port}")
        return app_runner
