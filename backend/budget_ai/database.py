from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession
from sqlalchemy.orm import sessionmaker, declarative_base

from .config import DATABASE_URL

engine = create_async_engine(DATABASE_URL, echo=False, future=True)

# Request handlers and the context builder's parallel fetches each open their own session
AsyncSessionLocal = sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False
)

Base = declarative_base()


async def get_db():
    async with AsyncSessionLocal() as session:
        yield session


async def init_db():
    """Create missing tables (budget data and assistant conversations) on startup."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
