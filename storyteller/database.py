from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from storyteller.config import get_settings
from storyteller.models import Base


def make_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def create_tables(engine: AsyncEngine) -> None:
    """Create-if-missing; there are no migrations."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


settings = get_settings()

# echo=True will log SQL queries, helpful for debugging
engine = create_async_engine(settings.database_url, echo=False)
AsyncSessionLocal = make_session_factory(engine)


async def get_db():
    """Dependency for providing database sessions."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()
