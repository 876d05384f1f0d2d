"""Database module for repository configuration and review tracking."""

from .db import Base, SessionLocal, engine, get_db, init_db

__all__ = ["engine", "SessionLocal", "Base", "get_db", "init_db"]
