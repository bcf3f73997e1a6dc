#!/usr/bin/env python3
"""
Run the Tourney API with uvicorn.

Usage:
    python scripts/serve.py
    python scripts/serve.py --port 9000 --reload
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

# Add src to path so this script can be run directly
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import uvicorn

from tourney.config import settings


def main() -> int:
    parser = argparse.ArgumentParser(description="Serve the Tourney API")
    parser.add_argument("--host", default=settings.api_host, help="Bind address")
    parser.add_argument("--port", type=int, default=settings.api_port, help="Bind port")
    parser.add_argument(
        "--reload",
        action="store_true",
        default=settings.api_reload,
        help="Auto-reload on code changes (development)",
    )
    args = parser.parse_args()

    logging.basicConfig(level=settings.log_level, format=settings.log_format)

    uvicorn.run(
        "tourney.web.main:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level=settings.log_level.lower(),
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
