from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from forum.config import settings
from forum.middleware import install_query_counter


class Base(DeclarativeBase):
    pass


def build_engine(url: str, **kwargs) -> AsyncEngine:
    """Create an async engine whose statements feed the per-request query counter."""
    engine = create_async_engine(url, **kwargs)
    install_query_counter(engine)
    return engine


def build_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # Loaded rows stay readable after commit; services return them afterwards.
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


engine = build_engine(settings.DATABASE_URL, echo=settings.DEBUG, pool_pre_ping=True)
async_session = build_sessionmaker(engine)


async def init_models() -> None:
    """Create any missing tables from the ORM metadata."""
    import forum.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def get_db():
    """One session per request, committed when the handler returns."""
    async with async_session() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
