"""Database engine, session factory and time helpers."""

from .session import Base, SessionLocal, build_engine, create_tables

__all__ = ["Base", "SessionLocal", "build_engine", "create_tables"]
