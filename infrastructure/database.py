"""
Async engine and session factory

DATABASE__URL may name a sync driver (postgresql://, sqlite://); it is
rewritten to the matching async driver.
"""
from sqlalchemy.engine import URL, make_url
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine

from core.config import settings
from infrastructure.models import Base


ASYNC_DRIVERS = {
    "postgresql": "postgresql+asyncpg",
    "postgres": "postgresql+asyncpg",
    "sqlite": "sqlite+aiosqlite",
}


def to_async_url(database_url: str) -> URL:
    url = make_url(database_url)
    if "+" in url.drivername:
        return url
    try:
        return url.set(drivername=ASYNC_DRIVERS[url.drivername])
    except KeyError:
        raise ValueError(
            f"Unsupported database driver '{url.drivername}'; set DATABASE__URL to a postgresql or sqlite URL"
        ) from None


def create_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    url = to_async_url(database_url)
    options = {"echo": echo}
    if url.get_backend_name() != "sqlite":
        options.update(
            pool_size=settings.database.pool_size,
            max_overflow=settings.database.max_overflow,
            pool_pre_ping=True,
        )
    return create_async_engine(url, **options)


engine = create_engine(settings.database.url, echo=settings.database.echo)

AsyncSessionLocal = async_sessionmaker(bind=engine, expire_on_commit=False)


async def create_tables(bind: AsyncEngine = engine) -> None:
    """Create the payment tables; development and tests only, production runs alembic."""
    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
