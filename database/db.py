from sqlalchemy import text
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import NullPool, StaticPool

from config.environments import current_config

DATABASE_URL = current_config.DATABASE_URL

# Determine if using SQLite or PostgreSQL
is_sqlite = 'sqlite' in DATABASE_URL


def build_engine(url: str):
    """Create an async engine tuned for the database backend"""
    if 'sqlite' in url:
        # In-memory databases must share one connection
        poolclass = StaticPool if ':memory:' in url else NullPool
        return create_async_engine(
            url,
            echo=False,  # Set to True for SQL debugging
            future=True,
            poolclass=poolclass,
            connect_args={"check_same_thread": False}
        )

    # PostgreSQL with connection pooling
    return create_async_engine(
        url,
        echo=False,
        future=True,
        pool_size=current_config.DB_POOL_SIZE,
        max_overflow=current_config.DB_MAX_OVERFLOW,
        pool_pre_ping=True,  # Verify connections before using
        pool_recycle=3600,  # Recycle connections after 1 hour
    )


engine = build_engine(DATABASE_URL)

# Async session
AsyncSessionLocal = sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False
)

# Base model
Base = declarative_base()


async def get_db():
    async with AsyncSessionLocal() as session:
        yield session


# Function to initialize the database
async def init_db():
    # Register models on the metadata
    from database import models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def ping_db() -> bool:
    async with AsyncSessionLocal() as session:
        result = await session.execute(text("SELECT 1"))
        return result.scalar() == 1


# Graceful shutdown
async def close_db():
    """Close database connections gracefully"""
    await engine.dispose()
