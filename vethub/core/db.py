# vethub/core/db.py
from collections.abc import AsyncGenerator
from datetime import datetime, timezone
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.orm import DeclarativeBase
from vethub.core.config import settings

engine = create_async_engine(settings.async_database_url, echo=False, pool_pre_ping=True)
SessionLocal = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

class Base(DeclarativeBase):
    pass

def utcnow() -> datetime:
    # las columnas DateTime guardan UTC naive
    return datetime.now(timezone.utc).replace(tzinfo=None)

async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with SessionLocal() as session:
        yield session

def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Para el WebSocket: una sesión nueva por evento en vez de una por conexión."""
    return SessionLocal
