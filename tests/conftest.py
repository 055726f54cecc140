"""Shared test fixtures."""

from typing import Any, Dict, List, Optional

import pytest
import pytest_asyncio
from aiohttp.test_utils import TestClient, TestServer

from ctfboard.config import CTFConfig
from ctfboard.mailer import EmailMessage
from ctfboard.scoreboard import ScoreboardSystem


class RecordingTransport:
    """Mail transport that keeps messages in memory."""

    def __init__(self) -> None:
        self.messages: List[EmailMessage] = []

    async def __call__(self, message: EmailMessage) -> None:
        self.messages.append(message)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for env_var in CTFConfig.ENV_MAPPINGS:
        monkeypatch.delenv(env_var, raising=False)


@pytest.fixture
def config(tmp_path) -> CTFConfig:
    return CTFConfig(
        None,
        overrides={
            "database": {"path": str(tmp_path / "ctf.db")},
            "server": {"base_url": "http://ctf.test"},
            "auth": {"require_email_verification": False},
        },
    )


@pytest.fixture
def outbox() -> RecordingTransport:
    return RecordingTransport()


@pytest_asyncio.fixture
async def system(config, outbox) -> ScoreboardSystem:
    system = ScoreboardSystem(config=config, mail_transport=outbox)
    await system.init_db()
    return system


@pytest_asyncio.fixture
async def make_user(system):
    """Create users straight through the store, skipping password hashing."""
    counter = {"n": 0}

    async def factory(username: Optional[str] = None, is_admin: bool = False):
        counter["n"] += 1
        username = username or f"player{counter['n']}"
        return await system.users.create(
            username=username,
            email=f"{username}@example.com",
            password_hash="unused-hash",
            is_admin=is_admin,
            is_email_verified=True,
        )

    return factory


@pytest_asyncio.fixture
async def make_challenge(system):
    counter = {"n": 0}

    async def factory(**overrides: Any):
        counter["n"] += 1
        data: Dict[str, Any] = {
            "title": f"Challenge {counter['n']}",
            "description": "Find the flag.",
            "difficulty": "EASY",
            "points": 100,
            "flag": f"FLAG{{challenge_{counter['n']}}}",
            "category": "Web",
        }
        data.update(overrides)
        return await system.challenges.create(data)

    return factory


@pytest_asyncio.fixture
async def client(system):
    """Create an async HTTP test client with full app lifecycle."""
    async with TestClient(TestServer(system.create_app())) as client:
        yield client


@pytest_asyncio.fixture
async def auth_headers(system):
    async def factory(user) -> Dict[str, str]:
        token = await system.auth.create_session(user.id)
        return {"Authorization": f"Bearer {token}"}

    return factory
