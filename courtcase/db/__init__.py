"""
Database Package - SQLAlchemy
=============================

Case store for the courtcase service (SQLite in development, PostgreSQL in production).
"""

from .models import Base, User, Case, ActivityLog, TokenBlacklist
from .session import get_db, get_db_session, init_db, get_engine, reset_engine, session_factory, SessionLocal

__all__ = [
    # Base
    "Base",
    # Models
    "User", "Case", "ActivityLog", "TokenBlacklist",
    # Session
    "get_db", "get_db_session", "init_db", "get_engine", "reset_engine", "session_factory", "SessionLocal",
]
