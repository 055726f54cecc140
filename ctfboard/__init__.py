"""
CTF Platform - challenges, flag submissions and a leaderboard for Capture The Flag competitions.

This package provides:
- Scoring engine that awards each challenge at most once per player
- Append-only submission ledger
- Leaderboard, category progress and first-blood statistics
- JSON web API with accounts, sessions and admin management
"""

from .config import CTFConfig
from .database import DatabaseManager
from .scoring import ScoringEngine
from .aggregation import Aggregator
from .web_handlers import WebHandlers
from .scoreboard import ScoreboardSystem

__version__ = "3.0.0"
__author__ = "CTF Platform Contributors"

__all__ = [
    "CTFConfig",
    "DatabaseManager",
    "ScoringEngine",
    "Aggregator",
    "WebHandlers",
    "ScoreboardSystem",
]
