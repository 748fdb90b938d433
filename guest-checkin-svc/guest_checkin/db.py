from __future__ import annotations
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from .core.config import get_settings
from .models import Base

_engine: AsyncEngine | None = None
_session_maker: async_sessionmaker[AsyncSession] | None = None

def make_engine(url: str) -> AsyncEngine:
    kwargs = {}
    if url.startswith("sqlite"):
        # concurrent writers wait on the sqlite lock instead of failing fast
        kwargs["connect_args"] = {"timeout": 30}
    return create_async_engine(url, echo=False, future=True, **kwargs)

def get_engine() -> AsyncEngine:
    """Engine for DATABASE_URL, built on first use so device-side backends never need one."""
    global _engine
    if _engine is None:
        url = get_settings().database_url
        if not url:
            raise RuntimeError("DATABASE_URL is not set; it is required for the sql check-in backend")
        _engine = make_engine(url)
    return _engine

def get_session_maker() -> async_sessionmaker[AsyncSession]:
    global _session_maker
    if _session_maker is None:
        _session_maker = async_sessionmaker(get_engine(), class_=AsyncSession, expire_on_commit=False)
    return _session_maker

async def init_db(bind: AsyncEngine | None = None) -> None:
    async with (bind or get_engine()).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

async def close_db() -> None:
    if _engine is not None:
        await _engine.dispose()
