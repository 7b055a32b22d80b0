"""Async database engine, session factory and declarative base."""

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from config import settings


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def build_engine(url: str, **kwargs) -> AsyncEngine:
    """
    Create an async engine for the given URL.

    SQLite (aiosqlite) is used for local runs and tests. Its default deferred
    transactions deadlock when two writers upgrade their locks at once, so every
    SQLite transaction is started with BEGIN IMMEDIATE instead; the second
    writer then waits for the first to commit.
    """
    if url.startswith("sqlite"):
        kwargs.setdefault("connect_args", {"timeout": 30})
        engine = create_async_engine(url, **kwargs)

        @event.listens_for(engine.sync_engine, "connect")
        def _disable_pysqlite_begin(dbapi_connection, connection_record):
            dbapi_connection.isolation_level = None

        @event.listens_for(engine.sync_engine, "begin")
        def _begin_immediate(conn):
            conn.exec_driver_sql("BEGIN IMMEDIATE")

        return engine

    kwargs.setdefault("pool_pre_ping", True)
    return create_async_engine(url, **kwargs)


engine = build_engine(settings.DATABASE_URL)
async_session = async_sessionmaker(engine, expire_on_commit=False)


async def get_db():
    """FastAPI dependency: one session per request."""
    async with async_session() as session:
        yield session


async def create_tables(bind: AsyncEngine | None = None) -> None:
    import models  # noqa: F401  registers mappers

    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
