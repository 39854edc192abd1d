# labelflow/db.py
from __future__ import annotations

import os
import pathlib
import logging
from typing import Optional

from sqlalchemy.ext.asyncio import (
    create_async_engine,
    AsyncEngine,
    async_sessionmaker,
    AsyncSession,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import NullPool

from labelflow.config import settings

logger = logging.getLogger("uvicorn.error")

_engine: Optional[AsyncEngine] = None
_sessionmaker: Optional[async_sessionmaker[AsyncSession]] = None
_dsn_override: Optional[str] = None


class Base(DeclarativeBase):
    pass


def _resolve_dsn() -> str:
    """
    Prefer an explicit override, then settings.DATABASE_URL, then env var
    DATABASE_URL, else default to a local SQLite database under ./data/.
    """
    dsn = (
        _dsn_override
        or getattr(settings, "DATABASE_URL", None)
        or os.getenv("DATABASE_URL")
        or "sqlite+aiosqlite:///./data/labelflow.db"
    )

    # If using SQLite, make sure the folder exists so SQLAlchemy can create the file.
    if dsn.startswith("sqlite"):
        try:
            # Handle sqlite+aiosqlite:///./data/labelflow.db
            # or sqlite+aiosqlite:////code/data/labelflow.db
            sep = "///" if "///" in dsn else "//"
            path_part = dsn.split(sep, 1)[1] if sep in dsn else ""
            if path_part and path_part != ":memory:":
                path = pathlib.Path(path_part).resolve()
                path.parent.mkdir(parents=True, exist_ok=True)
        except Exception as e:
            logger.warning("[DB] Could not ensure SQLite directory exists: %s", e)

    return dsn


def get_engine() -> AsyncEngine:
    """
    Lazily create a global AsyncEngine and sessionmaker.
    """
    global _engine, _sessionmaker
    if _engine is None:
        dsn = _resolve_dsn()
        kwargs = {"echo": False, "pool_pre_ping": True}
        if dsn.startswith("sqlite"):
            # aiosqlite connections are tied to the loop that opened them
            kwargs["poolclass"] = NullPool
        _engine = create_async_engine(dsn, **kwargs)
        _sessionmaker = async_sessionmaker(_engine, expire_on_commit=False)
        logger.info("[DB] engine initialized for %s", dsn)
    return _engine


def get_sessionmaker() -> async_sessionmaker[AsyncSession]:
    """
    Get the global async session factory.
    """
    global _sessionmaker
    if _sessionmaker is None:
        get_engine()
    # _sessionmaker will be set by get_engine()
    return _sessionmaker  # type: ignore[return-value]


async def configure_database(dsn: str) -> None:
    """Point the module at another database (tests, CLI tools)."""
    global _engine, _sessionmaker, _dsn_override
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _sessionmaker = None
    _dsn_override = dsn


async def init_db() -> None:
    """
    Ensure the engine is created and every table exists.
    """
    # Register ORM models on Base.metadata
    from labelflow.models import records  # noqa: F401

    eng = get_engine()
    try:
        async with eng.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
    except Exception as e:
        logger.error("[DB] initial connect failed: %s", e)
        raise
