"""Database engine, session factory, and declarative base.

One DeclarativeBase for every table (users, schools, onboarding sessions,
onboarding analytics).  Two ways to get a session:
  - get_db()          → FastAPI dependency, commits on success
  - async_session()   → used directly by the session store, the analytics
                        sink and the reaper so each owns its transaction
"""

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from medstint.config import settings

engine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
    pool_size=20,
    max_overflow=10,
)

async_session = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False
)


class Base(DeclarativeBase):
    pass


async def get_db() -> AsyncSession:
    """Yield a session, committing on success and rolling back on error."""
    async with async_session() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
