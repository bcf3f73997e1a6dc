#!/usr/bin/env python3
"""
Create the tournament tables directly from the models.

For local development and throwaway databases; deployed databases are
migrated with Alembic (alembic upgrade head).

Usage:
    python scripts/init_db.py
    python scripts/init_db.py --database-url sqlite+aiosqlite:///./tourney.db
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

# Add src to path so this script can be run directly
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from tourney.config import settings
from tourney.db.session import create_engine, init_models

logger = logging.getLogger("init_db")


async def _init(database_url: str | None) -> None:
    engine = create_engine(database_url)
    try:
        await init_models(engine)
    finally:
        await engine.dispose()


def main() -> int:
    parser = argparse.ArgumentParser(description="Create Tourney database tables")
    parser.add_argument(
        "--database-url",
        default=None,
        help="Async SQLAlchemy URL (defaults to DATABASE_URL / settings)",
    )
    args = parser.parse_args()

    logging.basicConfig(level=settings.log_level, format=settings.log_format)

    asyncio.run(_init(args.database_url))
    logger.info("Tables created")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
