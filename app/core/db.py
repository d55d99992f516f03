# app/core/db.py
from collections.abc import AsyncGenerator
from sqlalchemy import text
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.orm import DeclarativeBase
from app.core.config import settings

engine = create_async_engine(settings.async_database_url, echo=False, pool_pre_ping=True)
SessionLocal = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

class Base(DeclarativeBase):
    pass

async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with SessionLocal() as session:
        yield session

async def raise_lock_timeout(db: AsyncSession, seconds: int | None = None) -> None:
    """Sube el lock wait de la transacción actual (solo MySQL/InnoDB)."""
    if db.bind.dialect.name != "mysql":
        return
    secs = int(seconds or settings.BULK_LOCK_TIMEOUT_SECONDS)
    await db.execute(text(f"SET SESSION innodb_lock_wait_timeout = {secs}"))
