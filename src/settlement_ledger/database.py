"""Database connection and session management."""

from __future__ import annotations

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from settlement_ledger.models.base import Base


def get_engine(database_url: str, echo: bool = False) -> Engine:
    """Create a database engine.

    In-memory SQLite shares one connection so every session sees the
    same database.
    """
    if database_url.startswith("sqlite") and ":memory:" in database_url:
        return create_engine(
            database_url,
            echo=echo,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    if database_url.startswith("sqlite"):
        return create_engine(
            database_url, echo=echo, connect_args={"check_same_thread": False}
        )
    return create_engine(database_url, echo=echo, pool_pre_ping=True, pool_size=10, max_overflow=20)


def init_db(database_url: str, create_schema: bool = True) -> tuple[Engine, sessionmaker[Session]]:
    """Create engine and session factory, creating tables if asked."""
    engine = get_engine(database_url)
    if create_schema:
        Base.metadata.create_all(engine)
    factory = sessionmaker(engine, expire_on_commit=False, autoflush=False)
    return engine, factory
