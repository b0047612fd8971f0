import os

# Point the app-wide engine at SQLite before shared.settings is imported anywhere.
os.environ.setdefault("DATABASE_URL_OVERRIDE", "sqlite+aiosqlite:///./rfq_desk_test.db")

import pytest_asyncio # noqa: E402
from typing import AsyncGenerator # noqa: E402
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession # noqa: E402

from shared.db import build_engine, build_session_factory, create_db_and_tables # noqa: E402


# Fresh database file per test, so tests never see each other's rows
@pytest_asyncio.fixture(scope="function")
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    test_engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'rfq_desk_test.db'}")
    await create_db_and_tables(test_engine)
    yield test_engine
    await test_engine.dispose()

@pytest_asyncio.fixture(scope="function")
async def session_factory(engine: AsyncEngine):
    return build_session_factory(engine)

@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session
