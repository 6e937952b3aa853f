from datetime import datetime, timezone

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from config import DATABASE_URL

engine = create_async_engine(DATABASE_URL, echo=False)
AsyncSessionLocal = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

Base = declarative_base()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def get_session_factory():
    """Session factory used by requests and background tasks."""
    return AsyncSessionLocal


async def get_db(session_factory=Depends(get_session_factory)):
    async with session_factory() as session:
        yield session


async def create_tables(bind=None):
    # Models register themselves on Base.metadata when imported
    from blogify.models import comment, post, social, user  # noqa: F401

    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
