from datetime import datetime, timezone
from functools import lru_cache

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from scheduled_jobs.settings import settings


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


@lru_cache
def get_engine(url: str | None = None) -> AsyncEngine:
    return create_async_engine(
        url or settings.SQLALCHEMY_DATABASE_URI,
        echo=False,
        pool_pre_ping=True,
    )


def make_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


async def create_tables(engine: AsyncEngine, base: type[DeclarativeBase] = Base) -> None:
    """Creates every table registered on ``base``. Meant for tests and local dev."""
    async with engine.begin() as conn:
        await conn.run_sync(base.metadata.create_all)
