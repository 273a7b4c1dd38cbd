from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from flightbooker.config import settings


class Base(DeclarativeBase):
    pass


# Il database è opzionale (serve solo per la tabella api_providers):
# engine e sessionmaker vengono creati alla prima richiesta
_engine: AsyncEngine | None = None
_session_maker: async_sessionmaker[AsyncSession] | None = None


def get_engine() -> AsyncEngine:
    global _engine, _session_maker
    if _engine is None:
        if not settings.database_url:
            raise RuntimeError("DATABASE_URL non configurato")
        # echo=True used for printing during development
        _engine = create_async_engine(
            settings.database_url,
            echo=(settings.app_env == "development"),
        )
        _session_maker = async_sessionmaker(_engine, expire_on_commit=False)
    return _engine


def get_session_maker() -> async_sessionmaker[AsyncSession]:
    get_engine()
    return _session_maker


async def dispose_engine() -> None:
    global _engine, _session_maker
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_maker = None
