"""
Initialize the database: create all tables.
Run with: python -m scripts.init_db
"""

import asyncio
import sys
from medcheck.config import get_settings
from medcheck.database import Base, make_engine
import medcheck.models  # noqa: F401  (registers tables on Base.metadata)


async def init():
    settings = get_settings()
    if not settings.database_url:
        print("DATABASE_URL is not set; nothing to initialize.")
        sys.exit(1)
    engine = make_engine(settings.database_url)
    print("Creating database tables...")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    print("All tables created successfully.")
    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(init())
