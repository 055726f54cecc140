"""
Startup seeding: the bootstrap admin account and optional demo challenges.
"""

from typing import Any, List, Optional

import structlog

from .auth import hash_password
from .challenges import ChallengeStore
from .models import Challenge, User
from .users import UserStore

logger = structlog.get_logger(__name__)

DEMO_CHALLENGES = [
    {
        "title": "SQL Injection 101",
        "description": "Learn the basics of SQL injection attacks and how to exploit vulnerable databases.",
        "difficulty": "EASY",
        "points": 100,
        "flag": "FLAG{sql_injection_basic}",
        "category": "Web",
    },
    {
        "title": "Cryptography Challenge",
        "description": "Decrypt the secret message using various cryptographic techniques and algorithms.",
        "difficulty": "MEDIUM",
        "points": 250,
        "flag": "FLAG{crypto_master}",
        "category": "Crypto",
    },
    {
        "title": "Network Analysis",
        "description": "Analyze network traffic to identify malicious activities and security breaches.",
        "difficulty": "HARD",
        "points": 500,
        "flag": "FLAG{network_detective}",
        "category": "Network",
    },
    {
        "title": "Binary Exploitation",
        "description": "Exploit buffer overflow vulnerabilities in compiled binary executables.",
        "difficulty": "HARD",
        "points": 750,
        "flag": "FLAG{buffer_overflow_pwn}",
        "category": "Binary",
    },
    {
        "title": "Web Application Security",
        "description": "Identify and exploit common web application vulnerabilities like XSS and CSRF.",
        "difficulty": "MEDIUM",
        "points": 300,
        "flag": "FLAG{web_app_hacker}",
        "category": "Web",
    },
    {
        "title": "Digital Forensics",
        "description": "Investigate digital evidence to uncover hidden information and solve cyber crimes.",
        "difficulty": "EASY",
        "points": 150,
        "flag": "FLAG{forensic_investigator}",
        "category": "Forensics",
    },
]


async def seed_admin(users: UserStore, config: Any) -> Optional[User]:
    """
    Create the configured admin account if it does not exist yet.

    @param users: Identity store
    @param config: Platform configuration
    @return: The created admin, or None when nothing was created
    """
    password = config.get("admin", "password")
    username = config.get("admin", "username")

    if not password:
        return None
    if await users.get_by_username(username):
        return None

    admin = await users.create(
        username=username,
        email=config.get("admin", "email"),
        password_hash=hash_password(password),
        is_admin=True,
        is_email_verified=True,
    )
    logger.info("admin_seeded", user_id=admin.id, username=username)
    return admin


async def seed_demo_challenges(challenges: ChallengeStore) -> List[Challenge]:
    """
    Create the demo challenge set on an empty challenge table.

    @param challenges: Challenge store
    @return: The created challenges, empty when challenges already exist
    """
    if await challenges.count() > 0:
        return []

    created = [await challenges.create(dict(data)) for data in DEMO_CHALLENGES]
    logger.info("demo_challenges_seeded", count=len(created))
    return created
