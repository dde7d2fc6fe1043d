# src/parley/db/__init__.py
"""Database configuration and utilities."""

from .session import Base, SessionLocal, get_db
from .time import as_utc, utcnow

__all__ = ["Base", "get_db", "SessionLocal", "as_utc", "utcnow"]
