"""
Create the session tables for the configured database.

Usage:
    PLANEXEC_DATABASE_URL=postgresql+asyncpg://... python scripts/init_db.py
"""

import asyncio

from planexec.config import get_settings
from planexec.db.session import close_db, init_db
from planexec.logging import setup_logging


async def main() -> None:
    settings = get_settings()
    setup_logging(settings.log_level, settings.log_json)
    try:
        await init_db()
    finally:
        await close_db()


if __name__ == "__main__":
    asyncio.run(main())
