from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, AsyncEngine
from sqlalchemy.orm import sessionmaker
from sqlmodel import SQLModel

from shared.settings import settings
from shared.logging import get_logger

# Import the SQLModel table definitions so SQLModel.metadata knows about them.
from shared.models_db import ProductTable, RFQTable, RFQItemTable, QuoteTable # noqa

logger = get_logger(__name__)

def build_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    return create_async_engine(database_url, echo=echo, future=True)

def build_session_factory(engine: AsyncEngine) -> sessionmaker:
    return sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False, # Services keep using loaded objects after commit
        autoflush=False, # Repositories flush explicitly
    )

async_engine = build_engine(settings.DATABASE_URL, echo=settings.DB_ECHO_LOG)
AsyncSessionFactory = build_session_factory(async_engine)

async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """Dependency to get an async database session."""
    async with AsyncSessionFactory() as session:
        try:
            yield session
            # Services commit their own units of work.
        except Exception:
            await session.rollback()
            raise

async def create_db_and_tables(engine: AsyncEngine = async_engine):
    """Utility function to create all tables defined by SQLModel metadata."""
    logger.info("Initializing database and creating tables if they don't exist...")
    async with engine.begin() as conn:
        try:
            await conn.run_sync(SQLModel.metadata.create_all)
            logger.info("Database tables checked/created successfully.")
        except Exception as e:
            logger.error(f"Error creating database tables: {e}", exc_info=True)
            raise

async def close_db_connection(engine: AsyncEngine = async_engine):
    logger.info("Closing database connection pool...")
    await engine.dispose()
    logger.info("Database connection pool closed.")
