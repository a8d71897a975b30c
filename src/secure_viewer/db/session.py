"""Engine and session factory for the nonce, audit and document tables."""

from __future__ import annotations

from typing import Any

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker
from sqlalchemy.pool import StaticPool

from secure_viewer.core.settings import settings

SQLITE_BUSY_TIMEOUT_SECONDS = 30


class Base(DeclarativeBase):
    """Declarative base shared by all ORM models."""


# Ensure model modules are imported so that metadata is populated when create_all runs.
import secure_viewer.models  # noqa: E402,F401


def build_engine(url: str, *, echo: bool = False) -> Engine:
    """Create an engine, with the thread and locking settings SQLite needs.

    Request handlers run in a thread pool, so SQLite connections must be
    shareable across threads, and writers racing on the nonce table wait on
    the file lock instead of failing immediately. An in-memory database is
    pinned to a single connection so every session sees the same data.
    """
    kwargs: dict[str, Any] = {"echo": echo, "pool_pre_ping": True}
    if url.startswith("sqlite"):
        kwargs["connect_args"] = {
            "check_same_thread": False,
            "timeout": SQLITE_BUSY_TIMEOUT_SECONDS,
        }
        if url in ("sqlite://", "sqlite:///:memory:"):
            # One shared connection: sessions share transactions, so this is single-threaded only.
            kwargs["poolclass"] = StaticPool
    return create_engine(url, **kwargs)


engine = build_engine(settings.database_url, echo=settings.sql_debug)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


def create_tables(bind: Engine | None = None) -> None:
    """Create any missing tables (deployments normally run Alembic instead)."""
    Base.metadata.create_all(bind=bind or engine)
