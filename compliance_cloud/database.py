"""
Compliance Cloud - Database Configuration

This module handles database connection setup using SQLAlchemy 2.0 async.
"""

from typing import Any, Dict, List

from sqlalchemy import MetaData, func
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase

from compliance_cloud.config import settings


# Naming convention for constraints (helps with migrations)
convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s"
}


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    metadata = MetaData(naming_convention=convention)


def _engine_options(url: str) -> Dict[str, Any]:
    if url.startswith("sqlite"):
        return {}
    return {
        "pool_pre_ping": True,   # Verify connections before use
        "pool_size": settings.database_pool_size,
        "max_overflow": settings.database_max_overflow,
    }


# Create async engine
engine = create_async_engine(
    settings.database_url_async,
    echo=settings.debug,  # Log SQL queries in debug mode
    **_engine_options(settings.database_url_async),
)

# Create async session factory
async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)


async def get_async_session() -> AsyncSession:
    """
    Dependency for getting async database session.
    Use with FastAPI's Depends().
    """
    async with async_session_maker() as session:
        try:
            yield session
        finally:
            await session.close()


def upsert_statement(
    db: AsyncSession,
    model: Any,
    values: Dict[str, Any],
    index_elements: List[str],
):
    """
    Build a single-statement INSERT ... ON CONFLICT DO UPDATE for the
    session's dialect. Every column except the conflict key is overwritten.
    """
    dialect_name = db.get_bind().dialect.name
    if dialect_name == "postgresql":
        stmt = postgresql.insert(model).values(**values)
    elif dialect_name == "sqlite":
        stmt = sqlite.insert(model).values(**values)
    else:
        raise NotImplementedError(f"Upsert is not supported on {dialect_name}")

    update_columns = {
        key: stmt.excluded[key]
        for key in values
        if key not in index_elements and key != "id"
    }
    if "updated_at" in model.__table__.c and "updated_at" not in values:
        update_columns["updated_at"] = func.now()
    return stmt.on_conflict_do_update(index_elements=index_elements, set_=update_columns)


async def init_db():
    """
    Initialize database - create all tables.
    Use this for development/testing only.
    For production, use Alembic migrations.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db():
    """Close database connections."""
    await engine.dispose()
