from sqlalchemy import text
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncEngine
from sqlalchemy.orm import DeclarativeBase
from custody.config import settings

engine = create_async_engine(settings.DATABASE_URL, echo=False)
AsyncSessionLocal = async_sessionmaker(engine, expire_on_commit=False)

class Base(DeclarativeBase):
    pass

async def ping(db_engine: AsyncEngine = engine) -> None:
    """Raise if the database cannot answer a trivial query."""
    async with db_engine.connect() as conn:
        await conn.execute(text("SELECT 1"))

async def create_tables(db_engine: AsyncEngine = engine) -> None:
    import custody.models  # noqa: F401 - register all models
    async with db_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
