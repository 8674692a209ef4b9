from collections.abc import AsyncGenerator
from typing import Any

from sqlalchemy import text
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from remit.utils.config import settings


class Base(DeclarativeBase):
    pass


_INSERTS = {"postgresql": pg_insert, "sqlite": sqlite_insert}


def _to_async_database_url(url: str) -> str:
    if url.startswith("sqlite"):
        if "+aiosqlite" not in url:
            return url.replace("sqlite://", "sqlite+aiosqlite://", 1)
        return url
    if "+psycopg2" in url:
        return url.replace("+psycopg2", "+asyncpg")
    if "+psycopg" in url:
        return url.replace("+psycopg", "+asyncpg")
    if "+asyncpg" not in url:
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return url


def _engine_options(url: str) -> dict[str, Any]:
    if url.startswith("sqlite"):
        return {}
    return {
        "pool_pre_ping": False,
        "pool_size": 10,
        "max_overflow": 20,
        "pool_recycle": 1800,
        "connect_args": {"server_settings": {"timezone": "UTC"}},
    }


def build_engine(url: str, **overrides: Any) -> AsyncEngine:
    async_url = _to_async_database_url(url)
    options = _engine_options(async_url)
    options.update(overrides)
    return create_async_engine(async_url, **options)


def build_sessionmaker(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=bind, autoflush=False, expire_on_commit=False, class_=AsyncSession)


engine: AsyncEngine = build_engine(settings.database_url)
SessionLocal = build_sessionmaker(engine)


async def ensure_tables_exist() -> None:
    # checkfirst=True is the default: creates only missing objects.
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def check_db_connection() -> None:
    async with engine.connect() as conn:
        await conn.execute(text("SELECT 1"))


def dialect_insert(db: AsyncSession):
    """The `insert` construct with ON CONFLICT support for the session's dialect."""
    dialect = db.get_bind().dialect.name
    try:
        return _INSERTS[dialect]
    except KeyError:
        raise RuntimeError(f"ON CONFLICT inserts are not supported for dialect {dialect!r}") from None


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with SessionLocal() as db:
        yield db
