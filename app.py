#!/usr/bin/env python3
"""
CTF platform server: JSON API for challenges, flag submissions and the leaderboard.
"""

import argparse
import asyncio
import os
from pathlib import Path

import structlog

from ctfboard.config import CTFConfig
from ctfboard.logging_setup import setup_logging
from ctfboard.scoreboard import ScoreboardSystem

logger = structlog.get_logger(__name__)


async def main():
    """Main function with command line interface."""

    parser = argparse.ArgumentParser(
        description="CTF platform server with a JSON web API",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    parser.add_argument(
        "--web-port",
        type=int,
        default=None,
        help="Web server port (env: WEB_PORT, default from config)",
    )
    parser.add_argument(
        "--db",
        default=None,
        help="SQLite database file path (env: DB_PATH, default from config)",
    )
    parser.add_argument(
        "--config",
        default=os.getenv("CONFIG_PATH", "ctf_config.json"),
        help="Configuration file path (env: CONFIG_PATH)",
    )
    parser.add_argument(
        "--host",
        default=None,
        help="Host to bind the server to (env: HOST, default from config)",
    )

    args = parser.parse_args()

    config_path = Path(args.config)

    if config_path.exists() and not config_path.is_file():
        parser.error(f"{args.config} exists but is not a file")

    config = CTFConfig(args.config)
    setup_logging(config)

    system = ScoreboardSystem(config=config, db_path=args.db)
    await system.init_db()

    runner = await system.start_web_server(args.host, args.web_port)
    try:
        await asyncio.Event().wait()
    finally:
        await runner.cleanup()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("server_interrupted")
